# survey_incentives/crud/crud_enrollment_config.py
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from survey_incentives.models.enrollment_config import SINGLETON_ID, EnrollmentConfig


class CRUDEnrollmentConfig:
    """
    Single-row enrollment gate.

    Count changes are conditional UPDATEs so the ceiling holds under
    concurrent registrations. Nothing here commits.
    """

    def __init__(self, model):
        self.model = model

    def get(self, db: Session) -> EnrollmentConfig:
        return db.query(self.model).filter(self.model.id == SINGLETON_ID).first()

    def get_or_create(self, db: Session) -> EnrollmentConfig:
        """
        Get the config row, creating it with defaults (unlimited, active, 0).
        Useful on a fresh database where nobody has configured enrollment yet.
        """
        config = self.get(db)
        if config:
            return config
        try:
            with db.begin_nested():
                db.add(
                    self.model(
                        id=SINGLETON_ID,
                        max_participants=None,
                        is_enrollment_active=True,
                        current_count=0,
                        updated_by="SYSTEM",
                    )
                )
        except IntegrityError:
            # Another request created it first
            pass
        return self.get(db)

    def refresh(self, db: Session) -> EnrollmentConfig:
        return (
            db.query(self.model)
            .filter(self.model.id == SINGLETON_ID)
            .populate_existing()
            .first()
        )

    def try_increment(self, db: Session) -> bool:
        """
        Take one enrollment slot.
        Returns False if enrollment is disabled or the ceiling is reached.
        """
        result = db.execute(
            update(self.model)
            .where(
                self.model.id == SINGLETON_ID,
                self.model.is_enrollment_active.is_(True),
                or_(
                    self.model.max_participants.is_(None),
                    self.model.current_count < self.model.max_participants,
                ),
            )
            .values(current_count=self.model.current_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def decrement(self, db: Session) -> bool:
        """Give back one slot, never going below zero."""
        result = db.execute(
            update(self.model)
            .where(self.model.id == SINGLETON_ID, self.model.current_count > 0)
            .values(current_count=self.model.current_count - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def update_guarded(self, db: Session, *, values: Dict[str, Any], updated_by: str) -> bool:
        """
        Apply config changes. A new non-null `max_participants` below the
        current count matches no row and nothing changes.
        """
        clauses = [self.model.id == SINGLETON_ID]
        if values.get("max_participants") is not None:
            clauses.append(self.model.current_count <= values["max_participants"])

        result = db.execute(
            update(self.model)
            .where(*clauses)
            .values(**values, updated_by=updated_by, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


enrollment_config = CRUDEnrollmentConfig(EnrollmentConfig)

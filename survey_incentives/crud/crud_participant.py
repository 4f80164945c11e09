# survey_incentives/crud/crud_participant.py
from typing import List, Optional, Tuple

from sqlalchemy import delete, or_
from sqlalchemy.orm import Session

from survey_incentives.models.participant import Participant
from survey_incentives.schemas.participant import ParticipantCreate

from .base import CRUDBase


class CRUDParticipant(CRUDBase[Participant, ParticipantCreate, ParticipantCreate]):
    def get_by_phone(self, db: Session, *, phone: str) -> Optional[Participant]:
        return db.query(self.model).filter(self.model.phone == phone).first()

    def get_for_update(self, db: Session, *, id: str) -> Optional[Participant]:
        # Serialises link assignment per participant where the database supports row locks
        return db.query(self.model).filter(self.model.id == id).with_for_update().first()

    def search(
        self, db: Session, *, search: Optional[str] = None, skip: int = 0, limit: int = 100
    ) -> Tuple[List[Participant], int]:
        query = db.query(self.model)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    self.model.phone.ilike(pattern),
                    self.model.email.ilike(pattern),
                    self.model.name.ilike(pattern),
                )
            )
        total = query.count()
        items = query.order_by(self.model.created_at.desc()).offset(skip).limit(limit).all()
        return items, total

    def delete_by_id(self, db: Session, *, id: str) -> bool:
        """Hard delete. Does not commit; ledger FKs are nulled by the database."""
        result = db.execute(
            delete(self.model)
            .where(self.model.id == id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


participant = CRUDParticipant(Participant)

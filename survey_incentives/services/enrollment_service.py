# survey_incentives/services/enrollment_service.py
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.core.exceptions import CapacityError, ConfigError, ConflictError
from survey_incentives.models.enrollment_config import EnrollmentConfig
from survey_incentives.models.participant import Participant
from survey_incentives.utils.validators import mask_phone, normalize_phone

logger = logging.getLogger(__name__)

# Distinguishes "leave max_participants alone" from an explicit None (unlimited)
UNSET: Any = object()


class EnrollmentDecision(str, enum.Enum):
    ALLOWED = "ALLOWED"
    FULL = "FULL"
    DISABLED = "DISABLED"


class EnrollmentService:
    """
    Caps how many participants may enroll.

    The running count lives on the singleton config row and only moves through
    conditional UPDATEs, so concurrent registrations can never overshoot the
    ceiling.
    """

    def _decide(self, config: EnrollmentConfig) -> EnrollmentDecision:
        if not config.is_enrollment_active:
            return EnrollmentDecision.DISABLED
        if config.max_participants is not None and config.current_count >= config.max_participants:
            return EnrollmentDecision.FULL
        return EnrollmentDecision.ALLOWED

    def check_enrollment(self, db: Session) -> EnrollmentDecision:
        return self._decide(crud.enrollment_config.get_or_create(db))

    def get_status(self, db: Session) -> Dict[str, Any]:
        config = crud.enrollment_config.get_or_create(db)
        unlimited = config.max_participants is None
        is_full = not unlimited and config.current_count >= config.max_participants

        if not config.is_enrollment_active:
            status = "DISABLED"
        elif unlimited:
            status = "UNLIMITED"
        elif is_full:
            status = "FULL"
        else:
            status = "OPEN"

        return {
            "status": status,
            "is_full": is_full,
            "current_count": config.current_count,
            "max_participants": config.max_participants,
            "is_enrollment_active": config.is_enrollment_active,
            "remaining_spots": -1 if unlimited else max(0, config.max_participants - config.current_count),
            "updated_by": config.updated_by,
            "updated_at": config.updated_at,
        }

    def register(
        self,
        db: Session,
        *,
        phone: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
        consented: bool = True,
        acted_by: str,
    ) -> Participant:
        """
        Take an enrollment slot and create the participant in one transaction.

        Raises:
            ValidationError: phone is not a valid number
            CapacityError: enrollment is full or disabled
            ConflictError: a participant with this phone already exists
        """
        normalized = normalize_phone(phone)
        crud.enrollment_config.get_or_create(db)

        if not crud.enrollment_config.try_increment(db):
            db.rollback()
            decision = self.check_enrollment(db)
            if decision == EnrollmentDecision.ALLOWED:
                # A slot freed up between the two statements; report as full
                decision = EnrollmentDecision.FULL
            logger.info(f"Enrollment rejected ({decision.value}) for {mask_phone(normalized)}")
            message = (
                "Enrollment is currently closed"
                if decision == EnrollmentDecision.DISABLED
                else "Enrollment is full"
            )
            raise CapacityError(message, details={"decision": decision.value})

        now = datetime.now(timezone.utc)
        participant = Participant(
            phone=normalized,
            email=email,
            name=name,
            verified_at=now,
            consented_at=now if consented else None,
        )
        db.add(participant)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info(f"Duplicate registration for {mask_phone(normalized)}")
            raise ConflictError("A participant with this phone number already exists")

        db.commit()
        db.refresh(participant)
        logger.info(f"Participant {participant.id} enrolled by {acted_by}")
        return participant

    def update_config(
        self,
        db: Session,
        *,
        max_participants: Any = UNSET,
        is_enrollment_active: Optional[bool] = None,
        acted_by: str,
    ) -> Dict[str, Any]:
        """
        Change the ceiling and/or the on/off switch.

        `max_participants` left as UNSET keeps the current ceiling; None removes it.

        Raises:
            ConfigError: the new ceiling is negative or below the current count
        """
        crud.enrollment_config.get_or_create(db)

        values: Dict[str, Any] = {}
        if max_participants is not UNSET:
            if max_participants is not None and max_participants < 0:
                raise ConfigError("max_participants cannot be negative")
            values["max_participants"] = max_participants
        if is_enrollment_active is not None:
            values["is_enrollment_active"] = is_enrollment_active

        if not crud.enrollment_config.update_guarded(db, values=values, updated_by=acted_by):
            db.rollback()
            config = crud.enrollment_config.refresh(db)
            raise ConfigError(
                f"Cannot set max_participants to {max_participants}: "
                f"{config.current_count} participants are already enrolled",
                details={"current_count": config.current_count},
            )

        db.commit()
        crud.enrollment_config.refresh(db)
        logger.info(f"Enrollment config updated by {acted_by}: {values}")
        return self.get_status(db)

    def release_slot(self, db: Session) -> bool:
        """Give back one slot. Does not commit; the participant cascade owns the transaction."""
        released = crud.enrollment_config.decrement(db)
        if not released:
            logger.warning("Enrollment count already at zero; nothing to release")
        return released


enrollment_service = EnrollmentService()

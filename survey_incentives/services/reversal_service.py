# survey_incentives/services/reversal_service.py
"""
Reversal ("unsend") of gift card assignments.

A reversal writes an immutable audit record, marks the assignment UNSENT and
puts the pool card back to AVAILABLE, all in one transaction.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.core.config import settings
from survey_incentives.core.exceptions import (
    ConfirmationMismatchError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from survey_incentives.models.distribution_log import DistributionAction
from survey_incentives.models.gift_card import GiftCardAssignment, GiftCardStatus
from survey_incentives.models.unsent_audit_record import UnsentAuditRecord

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"


@dataclass
class ReversalAck:
    assignment_id: str
    already_unsent: bool = False
    pool_item_id: Optional[str] = None
    message: str = ""


@dataclass
class CascadeReversal:
    assignment_id: str
    reclaimed: bool
    orphaned: bool = False


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ReversalService:
    def validate_confirmation(self, confirmation_phrase: Any) -> None:
        """
        Raises:
            ValidationError: phrase missing or not a string
            ConfirmationMismatchError: phrase does not match exactly
        """
        if not isinstance(confirmation_phrase, str) or not confirmation_phrase.strip():
            raise ValidationError("A confirmation phrase is required to unsend a gift card")
        if confirmation_phrase != settings.UNSEND_CONFIRMATION_PHRASE:
            raise ConfirmationMismatchError(
                f'Confirmation phrase must be exactly "{settings.UNSEND_CONFIRMATION_PHRASE}"'
            )

    def _participant_snapshot(self, db: Session, assignment: GiftCardAssignment) -> Dict[str, Any]:
        participant = crud.participant.get(db, assignment.participant_id) if assignment.participant_id else None
        if not participant:
            return {"participant_id": assignment.participant_id}
        return {
            "participant_id": participant.id,
            "phone": participant.phone,
            "email": participant.email,
            "name": participant.name,
        }

    def _assignment_snapshot(self, assignment: GiftCardAssignment) -> Dict[str, Any]:
        return {
            "invitation_id": assignment.invitation_id,
            "card_type": assignment.card_type,
            "card_value": str(assignment.card_value) if assignment.card_value is not None else None,
            "delivery_method": assignment.delivery_method,
            "delivery_status": assignment.delivery_status,
            "sent_by": assignment.sent_by,
            "sent_at": _iso(assignment.sent_at),
            "delivered_at": _iso(assignment.delivered_at),
        }

    def _unsend(
        self,
        db: Session,
        assignment: GiftCardAssignment,
        *,
        acted_by: str,
        reason: Optional[str],
    ) -> bool:
        """
        Stage audit record, UNSENT transition, pool release and log row.
        Returns whether the pool card went back to AVAILABLE. Does not commit.
        """
        previous_status = assignment.status
        crud.unsent_audit.create(
            db,
            original_assignment_id=assignment.id,
            pool_item_id=assignment.pool_item_id,
            card_code=assignment.card_code,
            previous_status=previous_status,
            participant_snapshot=self._participant_snapshot(db, assignment),
            assignment_snapshot=self._assignment_snapshot(assignment),
            unsent_by=acted_by,
            reason=reason,
        )
        moved = crud.gift_card.transition(
            db,
            id=assignment.id,
            from_statuses=[previous_status],
            to_status=GiftCardStatus.UNSENT.value,
        )
        if not moved:
            raise ConflictError(f"Gift card {assignment.id} changed status during reversal")

        released = False
        if assignment.pool_item_id:
            released = crud.gift_card_pool.release(
                db, id=assignment.pool_item_id, assigned_assignment_id=assignment.id
            )
            if not released:
                # Pool row ASSIGNED to someone else or already back; the assignment still goes UNSENT
                logger.warning(
                    f"Pool card {assignment.pool_item_id} was not held by {assignment.id}; left as is"
                )

        crud.distribution_log.log(
            db,
            assignment_id=assignment.id,
            action=DistributionAction.UNSENT.value,
            performed_by=acted_by,
            details={"reason": reason, "previous_status": previous_status, "pool_released": released},
        )
        return released

    def reverse(
        self,
        db: Session,
        *,
        assignment_id: str,
        confirmation_phrase: Any,
        acted_by: str,
        reason: Optional[str] = None,
    ) -> ReversalAck:
        """
        Unsend a gift card and return its code to the pool.

        Raises:
            ValidationError / ConfirmationMismatchError: bad confirmation phrase
            NotFoundError: unknown assignment, or its pool card no longer exists
            ConflictError: the card was already redeemed
        """
        self.validate_confirmation(confirmation_phrase)

        assignment = crud.gift_card.get_for_update(db, id=assignment_id)
        if not assignment:
            raise NotFoundError(f"Gift card assignment {assignment_id} not found")

        if assignment.status == GiftCardStatus.UNSENT.value:
            db.rollback()
            return ReversalAck(
                assignment_id=assignment_id,
                already_unsent=True,
                pool_item_id=assignment.pool_item_id,
                message="Gift card was already unsent",
            )
        if assignment.status == GiftCardStatus.REDEEMED.value:
            db.rollback()
            raise ConflictError("A redeemed gift card cannot be unsent")

        pool_item = crud.gift_card_pool.get(db, assignment.pool_item_id) if assignment.pool_item_id else None
        if not pool_item:
            db.rollback()
            logger.error(f"Reversal of {assignment_id} refused: pool card {assignment.pool_item_id} missing")
            raise NotFoundError(
                "The gift card's pool entry no longer exists; nothing was changed",
                details={"pool_item_id": assignment.pool_item_id},
            )

        try:
            self._unsend(db, assignment, acted_by=acted_by, reason=reason)
        except ConflictError:
            db.rollback()
            current = crud.gift_card.get(db, assignment_id)
            if current and current.status == GiftCardStatus.UNSENT.value:
                logger.info(f"Gift card {assignment_id} was unsent by a concurrent request")
                return ReversalAck(
                    assignment_id=assignment_id,
                    already_unsent=True,
                    pool_item_id=current.pool_item_id,
                    message="Gift card was already unsent",
                )
            raise
        db.commit()
        logger.info(f"Gift card {assignment_id} unsent by {acted_by}; pool card {pool_item.id} available again")
        return ReversalAck(
            assignment_id=assignment_id,
            pool_item_id=pool_item.id,
            message="Gift card unsent and returned to the pool",
        )

    def reverse_for_cascade(self, db: Session, *, assignment_id: str) -> CascadeReversal:
        """
        Reversal on behalf of a participant deletion, attributed to SYSTEM.
        Does not commit. A missing pool card is reported as orphaned.
        """
        assignment = crud.gift_card.get_for_update(db, id=assignment_id)
        if not assignment or assignment.status in (
            GiftCardStatus.UNSENT.value,
            GiftCardStatus.REDEEMED.value,
        ):
            return CascadeReversal(assignment_id=assignment_id, reclaimed=False)

        pool_exists = (
            assignment.pool_item_id is not None
            and crud.gift_card_pool.get(db, assignment.pool_item_id) is not None
        )
        released = self._unsend(
            db, assignment, acted_by=SYSTEM_ACTOR, reason="participant deleted"
        )
        if not pool_exists:
            logger.error(f"Gift card {assignment_id} unsent but its pool card is gone")
            return CascadeReversal(assignment_id=assignment_id, reclaimed=False, orphaned=True)
        return CascadeReversal(assignment_id=assignment_id, reclaimed=released)

    def list_unsent(self, db: Session, *, skip: int = 0, limit: int = 100) -> Tuple[List[UnsentAuditRecord], int]:
        return crud.unsent_audit.get_multi(db, skip=skip, limit=limit)


reversal_service = ReversalService()

# survey_incentives/services/ledger_service.py
"""
Assignment ledger: invitations (survey links) and gift card assignments.

Every claim is committed together with the ledger row that records it.
Notifications are dispatched only after that commit; their outcome is
stored on the row but never undoes the claim.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.core.exceptions import (
    AllocationError,
    ConflictError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from survey_incentives.models import invitation as invitation_status
from survey_incentives.models.distribution_log import DistributionAction
from survey_incentives.models.gift_card import DeliveryMethod, GiftCardAssignment, GiftCardStatus
from survey_incentives.models.invitation import Invitation
from survey_incentives.models.participant import Participant
from survey_incentives.services.allocation_service import (
    NO_ITEM_AVAILABLE,
    AllocationService,
    BatchResult,
    ClaimedItem,
    PoolKind,
    _NoItemAvailable,
    allocation_service,
)
from survey_incentives.services.notification_dispatcher import (
    FAILED,
    NotificationDispatcher,
    get_notification_dispatcher,
)

logger = logging.getLogger(__name__)

POOL_SOURCE = "POOL"


@dataclass
class UncompleteResult:
    invitation: Invitation
    gift_card_warning: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _has_link(invitation: Optional[Invitation]) -> bool:
    return invitation is not None and bool(invitation.link_item_id or invitation.link_url)


def _contact(participant: Participant) -> Dict[str, Optional[str]]:
    return {"phone": participant.phone, "email": participant.email, "name": participant.name}


class LedgerService:
    def __init__(self, allocation: AllocationService = allocation_service):
        self.allocation = allocation

    # ------------------------------------------------------------------
    # Survey links
    # ------------------------------------------------------------------

    def assign_link(
        self,
        db: Session,
        *,
        participant_id: str,
        batch_label: Optional[str] = None,
        acted_by: str,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> Tuple[Invitation, Union[ClaimedItem, _NoItemAvailable, None]]:
        """
        Give the participant a survey link.

        Idempotent: a participant whose invitation already has a link gets that
        invitation back and the claim result is None. When the pool is empty an
        invitation without a link is kept (message_status "awaiting_link") and
        NO_ITEM_AVAILABLE is returned alongside it.
        """
        participant = crud.participant.get_for_update(db, id=participant_id)
        if not participant:
            db.rollback()
            raise NotFoundError(f"Participant {participant_id} not found")

        invitation = crud.invitation.get_latest_for_participant(db, participant_id=participant_id)
        if _has_link(invitation):
            db.rollback()
            return invitation, None

        claimed = self.allocation.claim(db, PoolKind.LINK, batch_label=batch_label)
        if invitation is None:
            # The claim holds the write lock; pick up an invitation committed since the first read
            invitation = crud.invitation.get_latest_for_participant(
                db, participant_id=participant_id, refresh=True
            )
            if _has_link(invitation):
                db.rollback()
                return invitation, None
        if invitation is None:
            invitation = crud.invitation.create_for_participant(db, participant_id=participant_id)

        if claimed is NO_ITEM_AVAILABLE:
            db.commit()
            db.refresh(invitation)
            logger.warning(
                f"No survey link for participant {participant_id}; invitation {invitation.id} awaiting link"
            )
            return invitation, NO_ITEM_AVAILABLE

        if not self._attach_link(db, invitation.id, claimed):
            # Linked elsewhere in the meantime; rolling back returns the claimed link
            db.rollback()
            db.refresh(invitation)
            logger.info(f"Invitation {invitation.id} was linked concurrently; link {claimed.item_id} released")
            return invitation, None
        db.commit()
        db.refresh(invitation)
        logger.info(f"Link {claimed.item_id} assigned to participant {participant_id} by {acted_by}")

        self._dispatch_link(db, invitation, participant, dispatcher)
        return invitation, claimed

    def _attach_link(self, db: Session, invitation_id: str, claimed: ClaimedItem) -> bool:
        return crud.invitation.attach_link(
            db,
            id=invitation_id,
            link_item_id=claimed.item_id,
            link_url=claimed.url,
            short_link_url=claimed.short_url,
        )

    def _dispatch_link(
        self,
        db: Session,
        invitation: Invitation,
        participant: Participant,
        dispatcher: Optional[NotificationDispatcher],
    ) -> None:
        dispatcher = dispatcher or get_notification_dispatcher()
        payload = {
            "type": "survey_link",
            "invitation_id": invitation.id,
            "url": invitation.short_link_url or invitation.link_url,
        }
        result = dispatcher.dispatch(_contact(participant), payload, DeliveryMethod.SMS.value)
        invitation.message_sid = result.message_sid
        invitation.message_status = result.status
        if result.status == FAILED:
            invitation.failed_at = _utcnow()
            invitation.error_code = result.error
        else:
            invitation.queued_at = _utcnow()
        db.commit()
        db.refresh(invitation)

    def fill_pending_invitations(
        self,
        db: Session,
        *,
        acted_by: str,
        batch_label: Optional[str] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> Dict[str, int]:
        """Claim links for invitations created while the pool was empty. Each row commits on its own."""
        waiting = crud.invitation.get_awaiting_link(db)
        filled = 0
        linked_elsewhere = 0
        for invitation in waiting:
            claimed = self.allocation.claim(db, PoolKind.LINK, batch_label=batch_label)
            if claimed is NO_ITEM_AVAILABLE:
                db.rollback()
                break
            if not self._attach_link(db, invitation.id, claimed):
                db.rollback()
                linked_elsewhere += 1
                continue
            db.commit()
            db.refresh(invitation)
            filled += 1
            participant = crud.participant.get(db, invitation.participant_id)
            if participant:
                self._dispatch_link(db, invitation, participant, dispatcher)

        still_waiting = len(waiting) - filled - linked_elsewhere
        logger.info(f"Filled {filled} pending invitations ({still_waiting} still waiting), by {acted_by}")
        return {"filled": filled, "still_waiting": still_waiting}

    # ------------------------------------------------------------------
    # Survey completion
    # ------------------------------------------------------------------

    def _get_invitation(self, db: Session, invitation_id: str) -> Invitation:
        invitation = crud.invitation.get(db, invitation_id)
        if not invitation:
            raise NotFoundError(f"Invitation {invitation_id} not found")
        return invitation

    def mark_survey_completed(self, db: Session, invitation_id: str) -> Invitation:
        """Set completed_at once; repeated completions keep the first timestamp."""
        invitation = self._get_invitation(db, invitation_id)
        if crud.invitation.mark_completed(db, id=invitation_id):
            logger.info(f"Invitation {invitation_id} marked completed")
        db.commit()
        db.refresh(invitation)
        return invitation

    def mark_survey_completed_by_url(self, db: Session, url: str) -> Invitation:
        invitation = crud.invitation.get_latest_by_url(db, url=url.strip())
        if not invitation:
            raise NotFoundError("No invitation found for this survey link")
        return self.mark_survey_completed(db, invitation.id)

    def mark_survey_uncompleted(self, db: Session, invitation_id: str) -> UncompleteResult:
        """
        Clear the completion flag. Gift cards are left alone; the result warns
        when the participant already holds one.
        """
        invitation = self._get_invitation(db, invitation_id)
        crud.invitation.mark_uncompleted(db, id=invitation_id)
        db.commit()
        db.refresh(invitation)

        warning = False
        if invitation.participant_id:
            warning = crud.gift_card.get_active_for_participant(
                db, participant_id=invitation.participant_id
            ) is not None
        if warning:
            logger.warning(
                f"Invitation {invitation_id} uncompleted but participant "
                f"{invitation.participant_id} still holds a gift card"
            )
        return UncompleteResult(invitation=invitation, gift_card_warning=warning)

    def bulk_mark_completed(self, db: Session, invitation_ids: Iterable[str]) -> int:
        changed = sum(1 for invitation_id in invitation_ids if crud.invitation.mark_completed(db, id=invitation_id))
        db.commit()
        return changed

    def bulk_mark_uncompleted(self, db: Session, invitation_ids: Iterable[str]) -> int:
        changed = sum(1 for invitation_id in invitation_ids if crud.invitation.mark_uncompleted(db, id=invitation_id))
        db.commit()
        return changed

    # ------------------------------------------------------------------
    # Gift cards
    # ------------------------------------------------------------------

    def _check_delivery_method(self, participant: Participant, delivery_method: str) -> None:
        needs_email = delivery_method in (DeliveryMethod.EMAIL.value, DeliveryMethod.BOTH.value)
        needs_phone = delivery_method in (DeliveryMethod.SMS.value, DeliveryMethod.BOTH.value)
        if needs_email and not participant.email:
            raise ValidationError(
                f"Participant has no email address for delivery method {delivery_method}"
            )
        if needs_phone and not participant.phone:
            raise ValidationError(
                f"Participant has no phone number for delivery method {delivery_method}"
            )

    def send_gift_card(
        self,
        db: Session,
        *,
        participant_id: str,
        invitation_id: Optional[str] = None,
        delivery_method: str = DeliveryMethod.EMAIL.value,
        notes: Optional[str] = None,
        card_type: Optional[str] = None,
        acted_by: str,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> Union[GiftCardAssignment, _NoItemAvailable]:
        """
        Claim a gift card for an eligible participant and record the assignment.

        Returns the new assignment, or NO_ITEM_AVAILABLE when the pool is empty.

        Raises:
            NotFoundError: participant or invitation unknown
            NotEligibleError: survey not completed, or a live card already held
            ValidationError: delivery method not satisfiable by contact data
        """
        delivery_method = DeliveryMethod(delivery_method).value
        completed = self.allocation.check_gift_card_eligibility(db, participant_id)
        participant = crud.participant.get(db, participant_id)
        self._check_delivery_method(participant, delivery_method)

        if invitation_id:
            invitation = crud.invitation.get(db, invitation_id)
            if not invitation or invitation.participant_id != participant_id:
                raise NotFoundError(f"Invitation {invitation_id} not found for participant {participant_id}")
        else:
            invitation = completed

        assignment_id = f"gca_{uuid.uuid4().hex[:12]}"
        claimed = self.allocation.claim(
            db, PoolKind.GIFT_CARD, card_type=card_type, assignment_id=assignment_id
        )
        if claimed is NO_ITEM_AVAILABLE:
            db.rollback()
            return NO_ITEM_AVAILABLE

        now = _utcnow()
        assignment = GiftCardAssignment(
            id=assignment_id,
            participant_id=participant_id,
            invitation_id=invitation.id,
            pool_item_id=claimed.item_id,
            card_code=claimed.card_code,
            card_type=claimed.card_type,
            card_value=claimed.card_value,
            redemption_url=claimed.redemption_url,
            redemption_instructions=claimed.redemption_instructions,
            expires_at=claimed.expires_at,
            status=GiftCardStatus.SENT.value,
            delivery_method=delivery_method,
            sent_by=acted_by,
            sent_at=now,
            notes=notes,
            source=POOL_SOURCE,
            created_at=now,
        )
        db.add(assignment)
        try:
            db.flush()
        except IntegrityError:
            # Lost a race with a concurrent send for the same participant
            db.rollback()
            raise NotEligibleError(
                "Participant already has a gift card",
                details={"participant_id": participant_id, "reason": "already_has_gift_card"},
            )

        crud.distribution_log.log(
            db,
            assignment_id=assignment_id,
            action=DistributionAction.SENT.value,
            performed_by=acted_by,
            details={"pool_item_id": claimed.item_id, "delivery_method": delivery_method},
        )
        db.commit()
        db.refresh(assignment)
        logger.info(
            f"Gift card {claimed.item_id} assigned to participant {participant_id} "
            f"as {assignment_id} by {acted_by}"
        )

        self._dispatch_gift_card(db, assignment, participant, acted_by, dispatcher)
        return assignment

    def _dispatch_gift_card(
        self,
        db: Session,
        assignment: GiftCardAssignment,
        participant: Participant,
        acted_by: str,
        dispatcher: Optional[NotificationDispatcher],
    ) -> None:
        dispatcher = dispatcher or get_notification_dispatcher()
        payload = {
            "type": "gift_card",
            "assignment_id": assignment.id,
            "card_code": assignment.card_code,
            "card_type": assignment.card_type,
            "card_value": assignment.card_value,
            "redemption_url": assignment.redemption_url,
            "redemption_instructions": assignment.redemption_instructions,
            "expires_at": assignment.expires_at,
        }
        result = dispatcher.dispatch(_contact(participant), payload, assignment.delivery_method)
        assignment.message_sid = result.message_sid
        assignment.delivery_status = result.status
        if result.status == FAILED:
            logger.warning(f"Gift card {assignment.id} notification failed: {result.error}")
            crud.distribution_log.log(
                db,
                assignment_id=assignment.id,
                action=DistributionAction.FAILED.value,
                performed_by=acted_by,
                details={"error": result.error},
            )
        db.commit()
        db.refresh(assignment)

    def batch_send_gift_cards(
        self,
        db: Session,
        *,
        requests: List[Dict[str, Any]],
        delivery_method: str = DeliveryMethod.EMAIL.value,
        card_type: Optional[str] = None,
        notes: Optional[str] = None,
        acted_by: str,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> BatchResult:
        """
        Send to many participants. Each request is independent: a failure is
        recorded and the batch moves on; earlier successes stay committed.
        """
        result = BatchResult(total_requested=len(requests))
        for request in requests:
            participant_id = request["participant_id"]
            try:
                assignment = self.send_gift_card(
                    db,
                    participant_id=participant_id,
                    invitation_id=request.get("invitation_id"),
                    delivery_method=delivery_method,
                    notes=notes,
                    card_type=card_type,
                    acted_by=acted_by,
                    dispatcher=dispatcher,
                )
            except AllocationError as e:
                db.rollback()
                result.failures.append({"participant_id": participant_id, "reason": e.message})
                continue

            if assignment is NO_ITEM_AVAILABLE:
                result.failures.append({"participant_id": participant_id, "reason": "No gift cards available"})
            else:
                result.successes.append(assignment)

        logger.info(
            f"Batch send by {acted_by}: {result.total_sent} sent, {result.total_failed} failed "
            f"of {result.total_requested}"
        )
        return result

    def _get_assignment(self, db: Session, assignment_id: str) -> GiftCardAssignment:
        assignment = crud.gift_card.get(db, assignment_id)
        if not assignment:
            raise NotFoundError(f"Gift card assignment {assignment_id} not found")
        return assignment

    def _forward(
        self,
        db: Session,
        assignment_id: str,
        *,
        from_statuses: List[str],
        to_status: str,
        timestamp_field: str,
        action: DistributionAction,
        acted_by: str,
    ) -> GiftCardAssignment:
        assignment = self._get_assignment(db, assignment_id)
        if assignment.status == to_status:
            return assignment

        moved = crud.gift_card.transition(
            db,
            id=assignment_id,
            from_statuses=from_statuses,
            to_status=to_status,
            values={timestamp_field: _utcnow()},
        )
        if not moved:
            db.rollback()
            current = crud.gift_card.get(db, assignment_id)
            if current.status == to_status:
                return current
            raise ConflictError(
                f"Cannot move gift card {assignment_id} from {current.status} to {to_status}",
                details={"status": current.status},
            )

        crud.distribution_log.log(
            db, assignment_id=assignment_id, action=action.value, performed_by=acted_by
        )
        db.commit()
        db.refresh(assignment)
        logger.info(f"Gift card {assignment_id} -> {to_status} by {acted_by}")
        return assignment

    def mark_delivered(self, db: Session, assignment_id: str, acted_by: str = "SYSTEM") -> GiftCardAssignment:
        return self._forward(
            db,
            assignment_id,
            from_statuses=[GiftCardStatus.SENT.value],
            to_status=GiftCardStatus.DELIVERED.value,
            timestamp_field="delivered_at",
            action=DistributionAction.DELIVERED,
            acted_by=acted_by,
        )

    def mark_redeemed(self, db: Session, assignment_id: str, acted_by: str) -> GiftCardAssignment:
        return self._forward(
            db,
            assignment_id,
            from_statuses=[GiftCardStatus.SENT.value, GiftCardStatus.DELIVERED.value],
            to_status=GiftCardStatus.REDEEMED.value,
            timestamp_field="redeemed_at",
            action=DistributionAction.REDEEMED,
            acted_by=acted_by,
        )

    def record_delivery_status(
        self,
        db: Session,
        *,
        status: str,
        assignment_id: Optional[str] = None,
        invitation_id: Optional[str] = None,
        message_sid: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> Union[GiftCardAssignment, Invitation]:
        """
        Store a dispatcher status callback verbatim on the matching row.
        A "delivered" callback for a gift card also moves it to DELIVERED.
        """
        status = status.strip().lower()
        assignment = None
        invitation = None
        if assignment_id:
            assignment = self._get_assignment(db, assignment_id)
        elif invitation_id:
            invitation = self._get_invitation(db, invitation_id)
        elif message_sid:
            assignment = crud.gift_card.get_by_message_sid(db, message_sid=message_sid)
            if assignment is None:
                invitation = crud.invitation.get_by_message_sid(db, message_sid=message_sid)
        else:
            raise ValidationError("One of assignment_id, invitation_id or message_sid is required")

        if assignment is not None:
            crud.gift_card.set_fields(db, id=assignment.id, values={"delivery_status": status})
            if status == FAILED:
                crud.distribution_log.log(
                    db,
                    assignment_id=assignment.id,
                    action=DistributionAction.FAILED.value,
                    performed_by="SYSTEM",
                    details={"error_code": error_code},
                )
            db.commit()
            if status == "delivered" and assignment.status == GiftCardStatus.SENT.value:
                return self.mark_delivered(db, assignment.id)
            db.refresh(assignment)
            return assignment

        if invitation is None:
            raise NotFoundError(f"No notification found for message {message_sid}")

        now = _utcnow()
        if invitation.completed_at is None:
            invitation.message_status = status
        if status == "sent":
            invitation.sent_at = now
        elif status == "delivered":
            invitation.delivered_at = now
        elif status == FAILED:
            invitation.failed_at = now
            invitation.error_code = error_code
        db.commit()
        db.refresh(invitation)
        return invitation

    def resend_gift_card(
        self,
        db: Session,
        assignment_id: str,
        acted_by: str,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> GiftCardAssignment:
        """Dispatch the same code again. Only live, unredeemed cards can be resent."""
        assignment = self._get_assignment(db, assignment_id)
        if assignment.status not in (GiftCardStatus.SENT.value, GiftCardStatus.DELIVERED.value):
            raise ConflictError(f"Cannot resend a gift card in status {assignment.status}")
        participant = crud.participant.get(db, assignment.participant_id) if assignment.participant_id else None
        if not participant:
            raise NotFoundError(f"Participant for gift card {assignment_id} no longer exists")
        self._check_delivery_method(participant, assignment.delivery_method)

        crud.distribution_log.log(
            db,
            assignment_id=assignment_id,
            action=DistributionAction.RESENT.value,
            performed_by=acted_by,
        )
        db.commit()
        logger.info(f"Gift card {assignment_id} resent by {acted_by}")
        self._dispatch_gift_card(db, assignment, participant, acted_by, dispatcher)
        return assignment

    def add_notes(self, db: Session, assignment_id: str, notes: str, acted_by: str) -> GiftCardAssignment:
        assignment = self._get_assignment(db, assignment_id)
        crud.gift_card.set_fields(db, id=assignment_id, values={"notes": notes})
        crud.distribution_log.log(
            db,
            assignment_id=assignment_id,
            action=DistributionAction.NOTES.value,
            performed_by=acted_by,
            details={"notes": notes},
        )
        db.commit()
        db.refresh(assignment)
        return assignment


ledger_service = LedgerService()

# survey_incentives/services/participant_service.py
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.core.config import settings
from survey_incentives.core.exceptions import CascadeBlockedError, NotFoundError
from survey_incentives.models.participant import Participant
from survey_incentives.services.allocation_service import PoolKind
from survey_incentives.services.enrollment_service import EnrollmentService, enrollment_service
from survey_incentives.services.reversal_service import ReversalService, reversal_service

logger = logging.getLogger(__name__)


class ParticipantService:
    """
    Participant reads and the deletion cascade.

    Deleting a participant puts their resources back into circulation before
    the row goes away, all in one transaction:
    1. live (SENT/DELIVERED) gift cards are unsent and their codes returned
    2. survey links from invitations that were never completed are released
    3. the enrollment slot is given back
    Ledger rows are kept; their participant reference becomes NULL.
    """

    def __init__(
        self,
        reversal: ReversalService = reversal_service,
        enrollment: EnrollmentService = enrollment_service,
    ):
        self.reversal = reversal
        self.enrollment = enrollment

    def get_participant(self, db: Session, participant_id: str) -> Participant:
        participant = crud.participant.get(db, participant_id)
        if not participant:
            raise NotFoundError(f"Participant {participant_id} not found")
        return participant

    def list_participants(
        self, db: Session, *, search: Optional[str] = None, skip: int = 0, limit: int = 100
    ) -> Tuple[List[Participant], int]:
        return crud.participant.search(db, search=search, skip=skip, limit=limit)

    def delete_participant(self, db: Session, *, participant_id: str, acted_by: str) -> Dict[str, Any]:
        self.get_participant(db, participant_id)

        cards_reclaimed = 0
        orphaned: List[str] = []
        for assignment in crud.gift_card.get_reclaimable_for_participant(db, participant_id=participant_id):
            outcome = self.reversal.reverse_for_cascade(db, assignment_id=assignment.id)
            if outcome.orphaned:
                orphaned.append(outcome.assignment_id)
            elif outcome.reclaimed:
                cards_reclaimed += 1

        links_released = 0
        if settings.RELEASE_LINKS_ON_PARTICIPANT_DELETE:
            for invitation in crud.invitation.get_for_participant(db, participant_id=participant_id):
                if invitation.completed_at is None and invitation.link_item_id:
                    if crud.survey_link.release(db, id=invitation.link_item_id):
                        links_released += 1

        self.enrollment.release_slot(db)
        crud.participant.delete_by_id(db, id=participant_id)
        db.commit()
        # Relationship collections still point at the deleted row
        db.expire_all()

        if orphaned:
            message = (
                f"Participant deleted. {cards_reclaimed} gift card(s) returned to the pool; "
                f"{len(orphaned)} assignment(s) had no pool card to return"
            )
            logger.warning(f"Cascade for {participant_id} left orphaned assignments: {orphaned}")
        else:
            message = (
                f"Participant deleted. {cards_reclaimed} gift card(s) and "
                f"{links_released} survey link(s) returned to the pool"
            )

        logger.info(
            f"Participant {participant_id} deleted by {acted_by}: "
            f"{cards_reclaimed} cards reclaimed, {links_released} links released"
        )
        return {
            "participant_id": participant_id,
            "cards_reclaimed": cards_reclaimed,
            "links_released": links_released,
            "orphaned_assignments": orphaned,
            "message": message,
        }

    def delete_pool_item(self, db: Session, pool_kind: PoolKind, item_id: str, acted_by: str) -> None:
        """
        Raises:
            NotFoundError: no such item
            CascadeBlockedError: the item is currently ASSIGNED
        """
        store = crud.survey_link if pool_kind == PoolKind.LINK else crud.gift_card_pool
        if store.delete_unassigned(db, id=item_id):
            db.commit()
            logger.info(f"{pool_kind.value} item {item_id} deleted by {acted_by}")
            return

        db.rollback()
        if store.get(db, item_id) is None:
            raise NotFoundError(f"{pool_kind.value} item {item_id} not found")
        raise CascadeBlockedError(
            f"{pool_kind.value} item {item_id} is assigned; unsend it before deleting",
            details={"item_id": item_id},
        )


participant_service = ParticipantService()

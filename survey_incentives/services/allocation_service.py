# survey_incentives/services/allocation_service.py
"""
One claim algorithm for both resource pools.

A claim flips the oldest eligible AVAILABLE item to ASSIGNED with a single
conditional UPDATE and never commits. The caller records the claim in the
ledger and commits both together, so a failure in between rolls the claim
back and the item is never stranded.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import exists
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.core.config import settings
from survey_incentives.core.exceptions import NotEligibleError, NotFoundError
from survey_incentives.crud.pool_base import CRUDPoolBase
from survey_incentives.models.gift_card import GiftCardAssignment, GiftCardStatus
from survey_incentives.models.invitation import Invitation
from survey_incentives.models.participant import Participant

logger = logging.getLogger(__name__)


class PoolKind(str, enum.Enum):
    LINK = "LINK"
    GIFT_CARD = "GIFT_CARD"


class _NoItemAvailable:
    """Sentinel returned when the pool has nothing to hand out."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_ITEM_AVAILABLE"


NO_ITEM_AVAILABLE = _NoItemAvailable()


@dataclass
class ClaimedItem:
    pool_kind: PoolKind
    item_id: str
    # Links
    url: Optional[str] = None
    short_url: Optional[str] = None
    # Gift cards
    card_code: Optional[str] = None
    card_type: Optional[str] = None
    card_value: Optional[Decimal] = None
    redemption_url: Optional[str] = None
    redemption_instructions: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass
class BatchResult:
    successes: List[Any] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)
    total_requested: int = 0

    @property
    def total_sent(self) -> int:
        return len(self.successes)

    @property
    def total_failed(self) -> int:
        return len(self.failures)


ClaimResult = Union[ClaimedItem, _NoItemAvailable]


class AllocationService:
    def _store(self, pool_kind: PoolKind) -> CRUDPoolBase:
        if pool_kind == PoolKind.LINK:
            return crud.survey_link
        return crud.gift_card_pool

    def claim(
        self,
        db: Session,
        pool_kind: PoolKind,
        *,
        batch_label: Optional[str] = None,
        card_type: Optional[str] = None,
        assignment_id: Optional[str] = None,
    ) -> ClaimResult:
        """
        Claim the oldest eligible AVAILABLE item of `pool_kind`.

        Returns a ClaimedItem, or NO_ITEM_AVAILABLE when the pool has no
        candidate. Never waits for items to appear and never commits.
        """
        store = self._store(pool_kind)
        filters = {"batch_label": batch_label}
        if pool_kind == PoolKind.GIFT_CARD:
            filters["card_type"] = card_type
            filters["assignment_id"] = assignment_id

        for attempt in range(1, settings.CLAIM_MAX_ATTEMPTS + 1):
            item_id = store.try_claim_next(db, **filters)
            if item_id:
                item = db.get(store.model, item_id, populate_existing=True)
                logger.info(f"Claimed {pool_kind.value} item {item_id} (attempt {attempt})")
                return self._snapshot(pool_kind, item)

            if not store.has_candidate(db, **filters):
                break
            # Lost the race for the row we picked; another candidate exists
            logger.debug(f"{pool_kind.value} claim attempt {attempt} lost a race, retrying")

        logger.warning(f"{pool_kind.value} pool exhausted (batch={batch_label}, card_type={card_type})")
        return NO_ITEM_AVAILABLE

    def _snapshot(self, pool_kind: PoolKind, item) -> ClaimedItem:
        if pool_kind == PoolKind.LINK:
            return ClaimedItem(
                pool_kind=pool_kind,
                item_id=item.id,
                url=item.long_url,
                short_url=item.short_url,
            )
        return ClaimedItem(
            pool_kind=pool_kind,
            item_id=item.id,
            card_code=item.card_code,
            card_type=item.card_type,
            card_value=item.card_value,
            redemption_url=item.redemption_url or settings.DEFAULT_REDEMPTION_URL,
            redemption_instructions=item.redemption_instructions,
            expires_at=item.expires_at,
        )

    def check_gift_card_eligibility(self, db: Session, participant_id: str):
        """
        A participant may receive a gift card once they have completed the
        survey and hold no live (non-UNSENT) card.

        Returns the completed Invitation on success.
        """
        participant = crud.participant.get(db, participant_id)
        if not participant:
            raise NotFoundError(f"Participant {participant_id} not found")

        completed = crud.invitation.get_completed_for_participant(db, participant_id=participant_id)
        if not completed:
            raise NotEligibleError(
                "Participant has not completed the survey",
                details={"participant_id": participant_id, "reason": "survey_not_completed"},
            )

        active = crud.gift_card.get_active_for_participant(db, participant_id=participant_id)
        if active:
            raise NotEligibleError(
                "Participant already has a gift card",
                details={
                    "participant_id": participant_id,
                    "reason": "already_has_gift_card",
                    "assignment_id": active.id,
                },
            )
        return completed

    def list_eligible_participants(self, db: Session, *, skip: int = 0, limit: int = 100):
        """Participants with a completed survey and no live gift card. Returns (rows, total)."""
        has_live_card = exists().where(
            GiftCardAssignment.participant_id == Participant.id,
            GiftCardAssignment.status != GiftCardStatus.UNSENT.value,
        )
        query = (
            db.query(Participant, Invitation)
            .join(Invitation, Invitation.participant_id == Participant.id)
            .filter(Invitation.completed_at.is_not(None), ~has_live_card)
        )
        total = query.count()
        rows = (
            query.order_by(Invitation.completed_at.asc(), Invitation.id.asc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return [
            {
                "participant_id": participant.id,
                "phone": participant.phone,
                "email": participant.email,
                "name": participant.name,
                "invitation_id": invitation.id,
                "link_url": invitation.link_url,
                "completed_at": invitation.completed_at,
                "verified_at": participant.verified_at,
            }
            for participant, invitation in rows
        ], total


allocation_service = AllocationService()

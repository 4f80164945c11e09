# survey_incentives/crud/crud_gift_card.py
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from survey_incentives.models.gift_card import GiftCardAssignment, GiftCardStatus

from .base import CRUDBase


class CRUDGiftCard(CRUDBase[GiftCardAssignment, GiftCardAssignment, GiftCardAssignment]):
    """
    Gift card assignments. Rows are never deleted; status only moves through
    `transition`, a conditional UPDATE on the expected current statuses.
    """

    def get_for_update(self, db: Session, *, id: str) -> Optional[GiftCardAssignment]:
        # Use SELECT FOR UPDATE to lock the row
        return (
            db.query(self.model)
            .filter(self.model.id == id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def get_by_message_sid(self, db: Session, *, message_sid: str) -> Optional[GiftCardAssignment]:
        return db.query(self.model).filter(self.model.message_sid == message_sid).first()

    def get_active_for_participant(self, db: Session, *, participant_id: str) -> Optional[GiftCardAssignment]:
        return (
            db.query(self.model)
            .filter(
                self.model.participant_id == participant_id,
                self.model.status != GiftCardStatus.UNSENT.value,
            )
            .first()
        )

    def get_reclaimable_for_participant(self, db: Session, *, participant_id: str) -> List[GiftCardAssignment]:
        """Live cards that a participant cascade puts back in the pool."""
        return (
            db.query(self.model)
            .filter(
                self.model.participant_id == participant_id,
                self.model.status.in_([GiftCardStatus.SENT.value, GiftCardStatus.DELIVERED.value]),
            )
            .all()
        )

    def get_multi_filtered(
        self,
        db: Session,
        *,
        status: Optional[str] = None,
        participant_id: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[GiftCardAssignment], int]:
        query = db.query(self.model)
        if status:
            query = query.filter(self.model.status == status)
        if participant_id:
            query = query.filter(self.model.participant_id == participant_id)
        if search:
            query = query.filter(self.model.card_code.ilike(f"%{search}%"))
        total = query.count()
        items = (
            query.order_by(self.model.created_at.desc(), self.model.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total

    def transition(
        self,
        db: Session,
        *,
        id: str,
        from_statuses: Iterable[str],
        to_status: str,
        values: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Move `id` to `to_status` only if it is in one of `from_statuses`. Does not commit."""
        update_values = {"status": to_status, "updated_at": datetime.now(timezone.utc)}
        if values:
            update_values.update(values)
        result = db.execute(
            update(self.model)
            .where(self.model.id == id, self.model.status.in_(list(from_statuses)))
            .values(**update_values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def set_fields(self, db: Session, *, id: str, values: Dict[str, Any]) -> None:
        values = dict(values, updated_at=datetime.now(timezone.utc))
        db.execute(
            update(self.model)
            .where(self.model.id == id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )


gift_card = CRUDGiftCard(GiftCardAssignment)

# survey_incentives/crud/crud_gift_card_pool.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from survey_incentives.core.exceptions import ConflictError
from survey_incentives.models.gift_card import GiftCardAssignment, GiftCardStatus
from survey_incentives.models.gift_card_pool import GiftCardPoolItem, PoolStatus
from survey_incentives.schemas.gift_card_pool import GiftCardPoolCreate, GiftCardPoolUpdate

from .pool_base import CRUDPoolBase

logger = logging.getLogger(__name__)


class CRUDGiftCardPool(CRUDPoolBase[GiftCardPoolItem, GiftCardPoolCreate, GiftCardPoolUpdate]):
    search_columns = ("card_code", "card_type", "batch_label")

    def _claim_filters(self, now: datetime, **filters: Any) -> list:
        clauses = super()._claim_filters(now, **filters)
        # Overdue cards are never handed out, even before the expiry sweep runs
        clauses.append(or_(self.model.expires_at.is_(None), self.model.expires_at > now))
        card_type = filters.get("card_type")
        if card_type:
            clauses.append(self.model.card_type == card_type)
        return clauses

    def _claim_values(self, now: datetime, **filters: Any) -> Dict[str, Any]:
        values = super()._claim_values(now, **filters)
        if filters.get("assignment_id"):
            values["assigned_assignment_id"] = filters["assignment_id"]
        return values

    def _release_values(self) -> Dict[str, Any]:
        values = super()._release_values()
        values["assigned_assignment_id"] = None
        return values

    def get_by_code(self, db: Session, *, card_code: str) -> Optional[GiftCardPoolItem]:
        return db.query(self.model).filter(self.model.card_code == card_code.upper()).first()

    def add(
        self,
        db: Session,
        *,
        card_code: str,
        card_type: Optional[str] = None,
        card_value=None,
        redemption_url: Optional[str] = None,
        redemption_instructions: Optional[str] = None,
        batch_label: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        uploaded_by: Optional[str] = None,
    ) -> GiftCardPoolItem:
        """Stage a new AVAILABLE card. Flushes so a duplicate code fails here."""
        db_obj = GiftCardPoolItem(
            card_code=card_code,
            card_type=card_type,
            card_value=card_value,
            redemption_url=redemption_url,
            redemption_instructions=redemption_instructions,
            batch_label=batch_label,
            expires_at=expires_at,
            uploaded_by=uploaded_by,
            status=PoolStatus.AVAILABLE.value,
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def update_unassigned(
        self, db: Session, *, id: str, obj_in: GiftCardPoolUpdate
    ) -> Optional[GiftCardPoolItem]:
        """
        Edit card details while the card is not handed out.
        Returns None if the card is ASSIGNED at the time of the update.
        """
        values = obj_in.model_dump(exclude_unset=True)
        if "card_code" in values and values["card_code"]:
            values["card_code"] = values["card_code"].upper()
        if not values:
            return self.get(db, id)

        try:
            result = db.execute(
                update(self.model)
                .where(self.model.id == id, self.model.status != PoolStatus.ASSIGNED.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            db.rollback()
            raise ConflictError(f"Gift card code {values.get('card_code')} already exists")
        if result.rowcount != 1:
            db.rollback()
            return None
        db.commit()
        return db.get(self.model, id, populate_existing=True)

    def invalidate(self, db: Session, *, id: str) -> bool:
        """AVAILABLE|EXPIRED -> INVALID. Commits."""
        result = db.execute(
            update(self.model)
            .where(
                self.model.id == id,
                self.model.status.in_([PoolStatus.AVAILABLE.value, PoolStatus.EXPIRED.value]),
            )
            .values(status=PoolStatus.INVALID.value)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def expire_overdue(self, db: Session, *, now: Optional[datetime] = None) -> int:
        """AVAILABLE cards past `expires_at` -> EXPIRED. Commits and returns the count."""
        now = now or datetime.now(timezone.utc)
        result = db.execute(
            update(self.model)
            .where(
                self.model.status == PoolStatus.AVAILABLE.value,
                self.model.expires_at.is_not(None),
                self.model.expires_at <= now,
            )
            .values(status=PoolStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount

    def find_orphaned_ids(self, db: Session) -> List[str]:
        """ASSIGNED cards that no live assignment points at."""
        live = exists().where(
            GiftCardAssignment.pool_item_id == self.model.id,
            GiftCardAssignment.status != GiftCardStatus.UNSENT.value,
        )
        stmt = select(self.model.id).where(self.model.status == PoolStatus.ASSIGNED.value, ~live)
        return list(db.execute(stmt).scalars().all())

    def reset_orphaned(self, db: Session) -> Dict[str, int]:
        """Return orphaned ASSIGNED cards to AVAILABLE. Commits."""
        orphan_ids = self.find_orphaned_ids(db)
        reset = 0
        for item_id in orphan_ids:
            live = exists().where(
                GiftCardAssignment.pool_item_id == item_id,
                GiftCardAssignment.status != GiftCardStatus.UNSENT.value,
            )
            result = db.execute(
                update(self.model)
                .where(self.model.id == item_id, self.model.status == PoolStatus.ASSIGNED.value, ~live)
                .values(**self._release_values())
                .execution_options(synchronize_session=False)
            )
            reset += result.rowcount
        db.commit()
        if orphan_ids:
            logger.warning(f"Reset {reset} of {len(orphan_ids)} orphaned gift cards to AVAILABLE")
        return {"orphaned_cards_found": len(orphan_ids), "cards_reset": reset}

    def get_pool_status(self, db: Session) -> Dict[str, int]:
        counts = self.count_by_status(db)
        return {
            "total_cards": sum(counts.values()),
            "available_cards": counts.get(PoolStatus.AVAILABLE.value, 0),
            "assigned_cards": counts.get(PoolStatus.ASSIGNED.value, 0),
            "expired_cards": counts.get(PoolStatus.EXPIRED.value, 0),
            "invalid_cards": counts.get(PoolStatus.INVALID.value, 0),
        }


gift_card_pool = CRUDGiftCardPool(GiftCardPoolItem)

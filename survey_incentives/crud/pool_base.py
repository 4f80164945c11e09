# survey_incentives/crud/pool_base.py
"""
Shared claim/release/delete logic for the two resource pools.

Every status transition here is a single conditional statement, so two
concurrent callers can never both move the same row. None of these methods
commit: the claim and the ledger row that records it are committed together
by the caller.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, Tuple

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.orm import Session

from .base import CRUDBase, CreateSchemaType, ModelType, UpdateSchemaType


AVAILABLE = "AVAILABLE"
ASSIGNED = "ASSIGNED"


class CRUDPoolBase(CRUDBase[ModelType, CreateSchemaType, UpdateSchemaType], Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    # Columns that a free-text search runs against
    search_columns: Tuple[str, ...] = ()

    def _claim_filters(self, now: datetime, **filters: Any) -> list:
        """Extra WHERE clauses beyond status = AVAILABLE; overridden per pool."""
        clauses = []
        batch_label = filters.get("batch_label")
        if batch_label:
            clauses.append(self.model.batch_label == batch_label)
        return clauses

    def _claim_values(self, now: datetime, **filters: Any) -> Dict[str, Any]:
        return {"status": ASSIGNED, "assigned_at": now}

    def has_candidate(self, db: Session, **filters: Any) -> bool:
        now = datetime.now(timezone.utc)
        stmt = select(
            exists().where(self.model.status == AVAILABLE, *self._claim_filters(now, **filters))
        )
        return bool(db.execute(stmt).scalar())

    def try_claim_next(self, db: Session, **filters: Any) -> Optional[str]:
        """
        Flip the oldest AVAILABLE row to ASSIGNED and return its id.

        The sub-select locks its row with SKIP LOCKED on PostgreSQL so
        concurrent claimers move on to the next candidate; the outer
        `status = AVAILABLE` guard makes the transition conditional on every
        backend. Returns None when this attempt won nothing.
        """
        now = datetime.now(timezone.utc)
        candidate = (
            select(self.model.id)
            .where(self.model.status == AVAILABLE, *self._claim_filters(now, **filters))
            .order_by(self.model.uploaded_at.asc(), self.model.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(self.model)
            .where(self.model.id == candidate, self.model.status == AVAILABLE)
            .values(**self._claim_values(now, **filters))
            .returning(self.model.id)
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).scalar_one_or_none()

    def release(self, db: Session, *, id: str, **guards: Any) -> bool:
        """ASSIGNED -> AVAILABLE. Returns False when the row was not ASSIGNED."""
        clauses = [self.model.id == id, self.model.status == ASSIGNED]
        for column, value in guards.items():
            clauses.append(getattr(self.model, column) == value)
        stmt = (
            update(self.model)
            .where(*clauses)
            .values(**self._release_values())
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount == 1

    def _release_values(self) -> Dict[str, Any]:
        return {"status": AVAILABLE, "assigned_at": None}

    def delete_unassigned(self, db: Session, *, id: str) -> bool:
        """Delete the row unless it is ASSIGNED. Returns whether a row was removed."""
        stmt = (
            delete(self.model)
            .where(self.model.id == id, self.model.status != ASSIGNED)
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount == 1

    def count_by_status(self, db: Session) -> Dict[str, int]:
        rows = (
            db.query(self.model.status, func.count(self.model.id))
            .group_by(self.model.status)
            .all()
        )
        return {status: count for status, count in rows}

    def get_multi_filtered(
        self,
        db: Session,
        *,
        status: Optional[str] = None,
        batch_label: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[ModelType], int]:
        """List pool rows newest first with optional filters. Returns (items, total)."""
        query = db.query(self.model)
        if status:
            query = query.filter(self.model.status == status)
        if batch_label:
            query = query.filter(self.model.batch_label == batch_label)
        if search and self.search_columns:
            pattern = f"%{search}%"
            query = query.filter(
                or_(*[getattr(self.model, column).ilike(pattern) for column in self.search_columns])
            )

        total = query.count()
        items = (
            query.order_by(self.model.uploaded_at.desc(), self.model.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total

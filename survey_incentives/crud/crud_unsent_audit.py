# survey_incentives/crud/crud_unsent_audit.py
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from survey_incentives.models.unsent_audit_record import UnsentAuditRecord


class CRUDUnsentAudit:
    """
    CRUD operations for UnsentAuditRecord.

    Note: This is a special CRUD class that only allows create and read operations.
    Audit records are immutable and cannot be updated or deleted.
    """

    def __init__(self, model):
        self.model = model

    def get(self, db: Session, *, id: str) -> Optional[UnsentAuditRecord]:
        return db.query(self.model).filter(self.model.id == id).first()

    def create(
        self,
        db: Session,
        *,
        original_assignment_id: str,
        pool_item_id: Optional[str],
        card_code: str,
        previous_status: str,
        participant_snapshot: Dict[str, Any],
        assignment_snapshot: Optional[Dict[str, Any]],
        unsent_by: str,
        reason: Optional[str] = None,
    ) -> UnsentAuditRecord:
        """Stage a new audit record. Does not commit; it joins the reversal transaction."""
        db_obj = UnsentAuditRecord(
            original_assignment_id=original_assignment_id,
            pool_item_id=pool_item_id,
            card_code=card_code,
            previous_status=previous_status,
            participant_snapshot=participant_snapshot,
            assignment_snapshot=assignment_snapshot,
            unsent_by=unsent_by,
            reason=reason,
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def get_for_assignment(self, db: Session, *, assignment_id: str) -> List[UnsentAuditRecord]:
        return (
            db.query(self.model)
            .filter(self.model.original_assignment_id == assignment_id)
            .order_by(self.model.unsent_at.asc())
            .all()
        )

    def get_multi(
        self, db: Session, *, skip: int = 0, limit: int = 100
    ) -> Tuple[List[UnsentAuditRecord], int]:
        query = db.query(self.model)
        total = query.count()
        items = (
            query.order_by(self.model.unsent_at.desc(), self.model.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total


unsent_audit = CRUDUnsentAudit(UnsentAuditRecord)

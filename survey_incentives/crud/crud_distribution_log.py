# survey_incentives/crud/crud_distribution_log.py
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from survey_incentives.models.distribution_log import GiftCardDistributionLog


class CRUDDistributionLog:
    """Append-only: create and read."""

    def __init__(self, model):
        self.model = model

    def log(
        self,
        db: Session,
        *,
        assignment_id: str,
        action: str,
        performed_by: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> GiftCardDistributionLog:
        """Stage a log row in the caller's transaction."""
        db_obj = GiftCardDistributionLog(
            assignment_id=assignment_id,
            action=action,
            performed_by=performed_by,
            details=details,
        )
        db.add(db_obj)
        return db_obj

    def get_for_assignment(self, db: Session, *, assignment_id: str) -> List[GiftCardDistributionLog]:
        return (
            db.query(self.model)
            .filter(self.model.assignment_id == assignment_id)
            .order_by(self.model.created_at.asc(), self.model.id.asc())
            .all()
        )


distribution_log = CRUDDistributionLog(GiftCardDistributionLog)

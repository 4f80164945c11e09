# survey_incentives/crud/crud_survey_link.py
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from survey_incentives.models.survey_link import LinkStatus, SurveyLink
from survey_incentives.schemas.survey_link import SurveyLinkCreate

from .pool_base import CRUDPoolBase


class CRUDSurveyLink(CRUDPoolBase[SurveyLink, SurveyLinkCreate, SurveyLinkCreate]):
    search_columns = ("long_url", "short_url", "batch_label")

    def get_by_url(self, db: Session, *, long_url: str) -> Optional[SurveyLink]:
        return db.query(self.model).filter(self.model.long_url == long_url).first()

    def add(
        self,
        db: Session,
        *,
        long_url: str,
        short_url: Optional[str] = None,
        batch_label: Optional[str] = None,
        uploaded_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SurveyLink:
        """Stage a new AVAILABLE link. Flushes so a duplicate URL fails here."""
        db_obj = SurveyLink(
            long_url=long_url,
            short_url=short_url,
            batch_label=batch_label,
            uploaded_by=uploaded_by,
            notes=notes,
            status=LinkStatus.AVAILABLE.value,
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def get_pool_status(self, db: Session) -> Dict:
        counts = self.count_by_status(db)
        available = counts.get(LinkStatus.AVAILABLE.value, 0)
        assigned = counts.get(LinkStatus.ASSIGNED.value, 0)

        by_batch: Dict[str, Dict[str, int]] = {}
        rows = (
            db.query(self.model.batch_label, self.model.status, func.count(self.model.id))
            .group_by(self.model.batch_label, self.model.status)
            .all()
        )
        for batch_label, status, count in rows:
            bucket = by_batch.setdefault(batch_label or "unlabelled", {"available": 0, "assigned": 0})
            bucket[status.lower()] = count

        return {
            "total_links": available + assigned,
            "available_links": available,
            "assigned_links": assigned,
            "by_batch": by_batch,
        }


survey_link = CRUDSurveyLink(SurveyLink)

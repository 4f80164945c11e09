# survey_incentives/models/unsent_audit_record.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, JSON, func
from sqlalchemy.dialects.postgresql import JSONB

from survey_incentives.db.base_class import Base


class UnsentAuditRecord(Base):
    """
    Append-only record of a reversed gift card.

    Everything is copied by value (no FKs) so the record survives deletion of
    the participant or the pool item.
    """
    __tablename__ = "gift_card_unsent_audit"

    id = Column(String, primary_key=True, default=lambda: f"uar_{uuid.uuid4().hex[:12]}")
    original_assignment_id = Column(String, nullable=False, index=True)
    pool_item_id = Column(String, nullable=True)
    card_code = Column(String(64), nullable=False)
    previous_status = Column(String(20), nullable=False)
    participant_snapshot = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    assignment_snapshot = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    unsent_by = Column(String, nullable=False)
    unsent_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), server_default=func.now())
    reason = Column(Text, nullable=True)

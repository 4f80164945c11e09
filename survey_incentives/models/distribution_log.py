# survey_incentives/models/distribution_log.py
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from survey_incentives.db.base_class import Base


class DistributionAction(str, enum.Enum):
    SENT = "SENT"
    RESENT = "RESENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    REDEEMED = "REDEEMED"
    NOTES = "NOTES"
    UNSENT = "UNSENT"


class GiftCardDistributionLog(Base):
    """Append-only history of everything that happened to a gift card assignment."""
    __tablename__ = "gift_card_distribution_logs"

    id = Column(String, primary_key=True, default=lambda: f"gcl_{uuid.uuid4().hex[:12]}")
    assignment_id = Column(String, ForeignKey("gift_card_assignments.id"), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    performed_by = Column(String, nullable=False)
    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), server_default=func.now())

    assignment = relationship("GiftCardAssignment", back_populates="logs")

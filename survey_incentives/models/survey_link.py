# survey_incentives/models/survey_link.py
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, Index
from sqlalchemy.orm import relationship

from survey_incentives.db.base_class import Base


class LinkStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    ASSIGNED = "ASSIGNED"


class SurveyLink(Base):
    """
    One survey URL in the link pool.

    A link is handed to exactly one participant at a time; `status` is the
    single authoritative record of that and is only flipped by conditional
    updates in the link CRUD.
    """
    __tablename__ = "survey_link_pool"

    id = Column(String, primary_key=True, default=lambda: f"lnk_{uuid.uuid4().hex[:12]}")
    long_url = Column(Text, nullable=False, unique=True)
    short_url = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=LinkStatus.AVAILABLE.value, server_default="AVAILABLE")

    batch_label = Column(String(100), nullable=True, index=True)
    uploaded_by = Column(String, nullable=True)
    # Stamped in Python so FIFO ordering has sub-second resolution
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    invitations = relationship("Invitation", back_populates="link")

    __table_args__ = (
        Index("ix_survey_link_pool_claim_order", "status", "uploaded_at", "id"),
    )

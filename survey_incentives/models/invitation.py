# survey_incentives/models/invitation.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship

from survey_incentives.db.base_class import Base

# Invitation.message_status values owned by the ledger. Dispatcher statuses
# (queued, sent, delivered, failed) are stored verbatim alongside these.
AWAITING_LINK = "awaiting_link"
PENDING = "pending"
COMPLETED = "completed"
DELIVERED = "delivered"


class Invitation(Base):
    """
    Survey invitation for a participant.

    `link_item_id` stays NULL while the link pool is exhausted; such rows form
    the queue of participants verified without a survey link.
    """
    __tablename__ = "survey_invitations"

    id = Column(String, primary_key=True, default=lambda: f"inv_{uuid.uuid4().hex[:12]}")
    participant_id = Column(String, ForeignKey("participants.id", ondelete="SET NULL"), nullable=True, index=True)
    link_item_id = Column(String, ForeignKey("survey_link_pool.id", ondelete="SET NULL"), nullable=True, index=True)

    # Snapshot of the link at claim time
    link_url = Column(Text, nullable=True, index=True)
    short_link_url = Column(Text, nullable=True)

    message_status = Column(String(30), nullable=False, server_default=PENDING)
    message_sid = Column(String(100), nullable=True, index=True)
    error_code = Column(String(100), nullable=True)
    queued_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), server_default=func.now())

    participant = relationship("Participant", back_populates="invitations")
    link = relationship("SurveyLink", back_populates="invitations")
    gift_cards = relationship("GiftCardAssignment", back_populates="invitation")

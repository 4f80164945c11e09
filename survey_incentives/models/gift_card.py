# survey_incentives/models/gift_card.py
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, Numeric, ForeignKey, Index, func, text
from sqlalchemy.orm import relationship

from survey_incentives.db.base_class import Base


class GiftCardStatus(str, enum.Enum):
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    REDEEMED = "REDEEMED"
    UNSENT = "UNSENT"


class DeliveryMethod(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    BOTH = "BOTH"


class GiftCardAssignment(Base):
    """
    Ledger row for one gift card handed to one participant.

    Card details are snapshotted from the pool item so later pool edits do not
    rewrite history. Rows are never deleted; reversal moves them to UNSENT.
    """
    __tablename__ = "gift_card_assignments"

    id = Column(String, primary_key=True, default=lambda: f"gca_{uuid.uuid4().hex[:12]}")
    participant_id = Column(String, ForeignKey("participants.id", ondelete="SET NULL"), nullable=True, index=True)
    invitation_id = Column(String, ForeignKey("survey_invitations.id", ondelete="SET NULL"), nullable=True, index=True)
    pool_item_id = Column(String, ForeignKey("gift_card_pool.id", ondelete="SET NULL"), nullable=True, index=True)

    card_code = Column(String(64), nullable=False)
    card_type = Column(String(30), nullable=True)
    card_value = Column(Numeric(10, 2), nullable=True)
    redemption_url = Column(Text, nullable=True)
    redemption_instructions = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(String(20), nullable=False, default=GiftCardStatus.SENT.value, server_default="SENT")
    delivery_method = Column(String(10), nullable=False, server_default="EMAIL")
    delivery_status = Column(String(30), nullable=True)  # dispatcher status, stored verbatim
    message_sid = Column(String(100), nullable=True, index=True)

    sent_by = Column(String, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    source = Column(String(20), nullable=False, server_default="POOL")

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    participant = relationship("Participant", back_populates="gift_cards")
    invitation = relationship("Invitation", back_populates="gift_cards")
    pool_item = relationship("GiftCardPoolItem")
    logs = relationship("GiftCardDistributionLog", back_populates="assignment")

    __table_args__ = (
        # One live gift card per participant, one live holder per pool item
        Index(
            "uq_gift_card_assignments_active_participant",
            "participant_id",
            unique=True,
            postgresql_where=text("status <> 'UNSENT'"),
            sqlite_where=text("status <> 'UNSENT'"),
        ),
        Index(
            "uq_gift_card_assignments_active_pool_item",
            "pool_item_id",
            unique=True,
            postgresql_where=text("status <> 'UNSENT'"),
            sqlite_where=text("status <> 'UNSENT'"),
        ),
    )

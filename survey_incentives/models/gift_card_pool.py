# survey_incentives/models/gift_card_pool.py
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, Numeric, Index

from survey_incentives.db.base_class import Base


class PoolStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    ASSIGNED = "ASSIGNED"
    EXPIRED = "EXPIRED"
    INVALID = "INVALID"


class GiftCardPoolItem(Base):
    """
    An uploaded gift card waiting to be (or already) handed out.

    Status transitions:
    - AVAILABLE -> ASSIGNED   only by a claim
    - ASSIGNED  -> AVAILABLE  only by a reversal or a participant cascade
    - AVAILABLE -> EXPIRED / INVALID by the expiry sweep or an admin
    """
    __tablename__ = "gift_card_pool"

    id = Column(String, primary_key=True, default=lambda: f"gcp_{uuid.uuid4().hex[:12]}")
    card_code = Column(String(64), nullable=False, unique=True)
    card_type = Column(String(30), nullable=True)  # AMAZON, VISA, ... NULL for code-only uploads
    card_value = Column(Numeric(10, 2), nullable=True)
    redemption_url = Column(Text, nullable=True)
    redemption_instructions = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=PoolStatus.AVAILABLE.value, server_default="AVAILABLE")

    batch_label = Column(String(100), nullable=True, index=True)
    uploaded_by = Column(String, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=True)

    assigned_at = Column(DateTime(timezone=True), nullable=True)
    # No FK: the assignment row is written after the claim in the same transaction
    assigned_assignment_id = Column(String, nullable=True, index=True)

    __table_args__ = (
        Index("ix_gift_card_pool_claim_order", "status", "uploaded_at", "id"),
    )

# survey_incentives/schemas/gift_card.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from survey_incentives.models.gift_card import DeliveryMethod, GiftCardStatus


class SendGiftCardRequest(BaseModel):
    invitation_id: Optional[str] = None
    delivery_method: DeliveryMethod = DeliveryMethod.EMAIL
    card_type: Optional[str] = None
    notes: Optional[str] = None


class BatchSendItem(BaseModel):
    participant_id: str
    invitation_id: Optional[str] = None


class BatchSendGiftCardRequest(BaseModel):
    participants: List[BatchSendItem] = Field(..., min_length=1)
    delivery_method: DeliveryMethod = DeliveryMethod.EMAIL
    card_type: Optional[str] = None
    notes: Optional[str] = None


class GiftCardAssignment(BaseModel):
    id: str
    participant_id: Optional[str] = None
    invitation_id: Optional[str] = None
    pool_item_id: Optional[str] = None
    card_code: str
    card_type: Optional[str] = None
    card_value: Optional[Decimal] = None
    redemption_url: Optional[str] = None
    redemption_instructions: Optional[str] = None
    expires_at: Optional[datetime] = None
    status: GiftCardStatus
    delivery_method: DeliveryMethod
    delivery_status: Optional[str] = None
    sent_by: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    notes: Optional[str] = None
    source: str

    model_config = {"from_attributes": True}


class BatchSendFailure(BaseModel):
    participant_id: str
    reason: str


class BatchSendGiftCardResult(BaseModel):
    total_requested: int
    total_sent: int
    total_failed: int
    successes: List[GiftCardAssignment] = Field(default_factory=list)
    failures: List[BatchSendFailure] = Field(default_factory=list)


class UnsendRequest(BaseModel):
    confirmation_phrase: Optional[str] = None
    reason: Optional[str] = None


class UnsendAck(BaseModel):
    assignment_id: str
    already_unsent: bool = False
    pool_item_id: Optional[str] = None
    message: str


class AddNotesRequest(BaseModel):
    notes: str = Field(..., min_length=1)


class UnsentAuditRecord(BaseModel):
    id: str
    original_assignment_id: str
    pool_item_id: Optional[str] = None
    card_code: str
    previous_status: str
    participant_snapshot: Dict[str, Any]
    unsent_by: str
    unsent_at: datetime
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


class DistributionLog(BaseModel):
    id: str
    assignment_id: str
    action: str
    performed_by: str
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CleanupResult(BaseModel):
    orphaned_cards_found: int
    cards_reset: int

# survey_incentives/schemas/gift_card_pool.py
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from survey_incentives.models.gift_card_pool import PoolStatus


class GiftCardPoolCreate(BaseModel):
    card_code: str = Field(..., json_schema_extra={"example": "ABCD-123456-WXYZ"})
    card_type: Optional[str] = Field(None, json_schema_extra={"example": "AMAZON"})
    card_value: Optional[Decimal] = Field(None, ge=0, json_schema_extra={"example": 25})
    redemption_url: Optional[str] = None
    redemption_instructions: Optional[str] = None
    batch_label: Optional[str] = None
    expires_at: Optional[datetime] = None


class GiftCardPoolUpdate(BaseModel):
    card_code: Optional[str] = None
    card_type: Optional[str] = None
    card_value: Optional[Decimal] = Field(None, ge=0)
    redemption_url: Optional[str] = None
    redemption_instructions: Optional[str] = None
    batch_label: Optional[str] = None
    expires_at: Optional[datetime] = None


class GiftCardPoolItem(BaseModel):
    id: str
    card_code: str
    card_type: Optional[str] = None
    card_value: Optional[Decimal] = None
    redemption_url: Optional[str] = None
    redemption_instructions: Optional[str] = None
    status: PoolStatus
    batch_label: Optional[str] = None
    uploaded_by: Optional[str] = None
    uploaded_at: datetime
    expires_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    assigned_assignment_id: Optional[str] = None

    model_config = {"from_attributes": True}


class GiftCardPoolStatus(BaseModel):
    total_cards: int
    available_cards: int
    assigned_cards: int
    expired_cards: int
    invalid_cards: int

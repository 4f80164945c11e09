# survey_incentives/schemas/invitation.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class AssignLinkRequest(BaseModel):
    batch_label: Optional[str] = None


class Invitation(BaseModel):
    id: str
    participant_id: Optional[str] = None
    link_item_id: Optional[str] = None
    link_url: Optional[str] = None
    short_link_url: Optional[str] = None
    message_status: str
    message_sid: Optional[str] = None
    queued_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AssignLinkResponse(BaseModel):
    assigned: bool
    invitation: Invitation
    message: Optional[str] = None


class UncompleteResponse(BaseModel):
    invitation: Invitation
    gift_card_warning: bool = False
    message: Optional[str] = None


class BulkInvitationRequest(BaseModel):
    invitation_ids: List[str] = Field(..., min_length=1)


class BulkInvitationResponse(BaseModel):
    requested: int
    changed: int


class FillPendingResponse(BaseModel):
    filled: int
    still_waiting: int


class SurveyCompletionWebhook(BaseModel):
    url: str


class DeliveryStatusWebhook(BaseModel):
    message_sid: str
    status: str  # queued, sent, delivered, failed
    error_code: Optional[str] = None

# survey_incentives/schemas/participant.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class ParticipantCreate(BaseModel):
    phone: str = Field(..., json_schema_extra={"example": "+12025550143"})
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    consented: bool = True


class Participant(BaseModel):
    id: str
    phone: str
    email: Optional[str] = None
    name: Optional[str] = None
    verified_at: Optional[datetime] = None
    consented_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EligibleParticipant(BaseModel):
    participant_id: str
    phone: str
    email: Optional[str] = None
    name: Optional[str] = None
    invitation_id: str
    link_url: Optional[str] = None
    completed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None


class CascadeReport(BaseModel):
    participant_id: str
    cards_reclaimed: int
    links_released: int
    orphaned_assignments: List[str] = Field(default_factory=list)
    message: str

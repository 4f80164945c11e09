# survey_incentives/schemas/survey_link.py
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from survey_incentives.models.survey_link import LinkStatus


class SurveyLinkCreate(BaseModel):
    long_url: str = Field(..., json_schema_extra={"example": "https://survey.example.com/s/abc123"})
    short_url: Optional[str] = Field(None, json_schema_extra={"example": "https://bit.ly/xyz"})
    batch_label: Optional[str] = None
    notes: Optional[str] = None


class SurveyLink(BaseModel):
    id: str
    long_url: str
    short_url: Optional[str] = None
    status: LinkStatus
    batch_label: Optional[str] = None
    uploaded_by: Optional[str] = None
    uploaded_at: datetime
    assigned_at: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class LinkPoolStatus(BaseModel):
    total_links: int
    available_links: int
    assigned_links: int
    by_batch: Dict[str, Dict[str, int]] = Field(default_factory=dict)

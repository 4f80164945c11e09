# survey_incentives/schemas/enrollment.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class EnrollmentStatus(BaseModel):
    status: str  # OPEN, FULL, DISABLED, UNLIMITED
    is_full: bool
    current_count: int
    max_participants: Optional[int] = None
    is_enrollment_active: bool
    remaining_spots: int = Field(..., description="-1 means unlimited")


class EnrollmentConfig(EnrollmentStatus):
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


class EnrollmentConfigUpdate(BaseModel):
    """
    Omit `max_participants` to leave it unchanged; send `null` to remove the limit.
    """
    max_participants: Optional[int] = Field(None, ge=0)
    is_enrollment_active: Optional[bool] = None

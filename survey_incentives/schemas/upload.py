# survey_incentives/schemas/upload.py
from typing import List, Optional

from pydantic import BaseModel, Field


class UploadRowError(BaseModel):
    line: int
    value: str
    reason: str  # "duplicate" or "invalid_format"
    message: str


class UploadResult(BaseModel):
    total_rows: int
    successful_uploads: int
    failed_uploads: int
    errors: List[UploadRowError] = Field(default_factory=list)
    batch_label: Optional[str] = None
    uploaded_by: Optional[str] = None

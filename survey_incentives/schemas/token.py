# survey_incentives/schemas/token.py
from pydantic import BaseModel


class TokenPayload(BaseModel):
    sub: str  # "sub" is the standard claim for subject (admin username / user ID)
    exp: int  # Standard claim for expiration time

    model_config = {"from_attributes": True}

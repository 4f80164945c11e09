from jose import jwt

from survey_incentives.core.config import settings
from survey_incentives.schemas.token import TokenPayload


def get_admin_headers(user_id: str = "admin_test") -> dict[str, str]:
    """
    Generates a valid JWT token and authentication headers for a test admin.
    """
    payload = TokenPayload(sub=user_id, exp=9999999999)  # High expiration for tests
    token = jwt.encode(payload.model_dump(), settings.JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def get_internal_headers() -> dict[str, str]:
    return {"X-Internal-Api-Key": settings.INTERNAL_API_KEY}

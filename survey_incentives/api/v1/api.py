# survey_incentives/api/v1/api.py

from fastapi import APIRouter
from survey_incentives.api.v1.endpoints import (
    enrollment,
    participants,
    invitations,
    webhooks,
    links,
    gift_cards,
)

# This is the main router for the v1 API.
# It will include all the specific endpoint routers.
api_router = APIRouter()

api_router.include_router(enrollment.router)
api_router.include_router(participants.router)
api_router.include_router(invitations.router)
api_router.include_router(webhooks.router)
api_router.include_router(links.router)
api_router.include_router(gift_cards.router)

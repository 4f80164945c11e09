# survey_incentives/api/v1/endpoints/webhooks.py
import logging
from typing import Union

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from survey_incentives.api import deps
from survey_incentives.models.invitation import Invitation as InvitationModel
from survey_incentives.schemas.gift_card import GiftCardAssignment
from survey_incentives.schemas.invitation import DeliveryStatusWebhook, Invitation, SurveyCompletionWebhook
from survey_incentives.services.ledger_service import ledger_service

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)


@router.post("/survey-completed", response_model=Invitation)
def survey_completed(
    payload: SurveyCompletionWebhook,
    db: Session = Depends(deps.get_db),
    api_key: str = Depends(deps.get_internal_api_key),
):
    """
    Called by the survey platform when a respondent finishes. Resolves the
    most recent invitation for the link; repeated calls are harmless.
    """
    return ledger_service.mark_survey_completed_by_url(db, payload.url)


@router.post("/delivery-status")
def delivery_status(
    payload: DeliveryStatusWebhook,
    db: Session = Depends(deps.get_db),
    api_key: str = Depends(deps.get_internal_api_key),
) -> Union[Invitation, GiftCardAssignment]:
    """Status callback from the messaging gateway, keyed by message id."""
    target = ledger_service.record_delivery_status(
        db,
        message_sid=payload.message_sid,
        status=payload.status,
        error_code=payload.error_code,
    )
    if isinstance(target, InvitationModel):
        return Invitation.model_validate(target)
    return GiftCardAssignment.model_validate(target)

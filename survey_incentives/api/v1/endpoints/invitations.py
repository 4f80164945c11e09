# survey_incentives/api/v1/endpoints/invitations.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from survey_incentives.api import deps
from survey_incentives.schemas.invitation import (
    BulkInvitationRequest,
    BulkInvitationResponse,
    FillPendingResponse,
    Invitation,
    UncompleteResponse,
)
from survey_incentives.schemas.token import TokenPayload
from survey_incentives.services.ledger_service import ledger_service
from survey_incentives.services.notification_dispatcher import NotificationDispatcher

router = APIRouter(prefix="/admin/invitations", tags=["Admin - Invitations"])


@router.post("/fill-pending", response_model=FillPendingResponse)
def fill_pending_invitations(
    batch_label: Optional[str] = Query(None),
    db: Session = Depends(deps.get_db),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Hand out links to participants queued while the link pool was empty.
    """
    return ledger_service.fill_pending_invitations(
        db, acted_by=current_user.sub, batch_label=batch_label, dispatcher=dispatcher
    )


@router.post("/bulk-complete", response_model=BulkInvitationResponse)
def bulk_mark_completed(
    bulk_in: BulkInvitationRequest,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    changed = ledger_service.bulk_mark_completed(db, bulk_in.invitation_ids)
    return {"requested": len(bulk_in.invitation_ids), "changed": changed}


@router.post("/bulk-uncomplete", response_model=BulkInvitationResponse)
def bulk_mark_uncompleted(
    bulk_in: BulkInvitationRequest,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    changed = ledger_service.bulk_mark_uncompleted(db, bulk_in.invitation_ids)
    return {"requested": len(bulk_in.invitation_ids), "changed": changed}


@router.post("/{invitation_id}/complete", response_model=Invitation)
def mark_completed(
    invitation_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return ledger_service.mark_survey_completed(db, invitation_id)


@router.post("/{invitation_id}/uncomplete", response_model=UncompleteResponse)
def mark_uncompleted(
    invitation_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Clear the completion flag. An already-sent gift card is not
    touched; `gift_card_warning` says whether one exists.
    """
    result = ledger_service.mark_survey_uncompleted(db, invitation_id)
    return {
        "invitation": result.invitation,
        "gift_card_warning": result.gift_card_warning,
        "message": (
            "Participant still holds a gift card; unsend it separately if needed"
            if result.gift_card_warning
            else None
        ),
    }

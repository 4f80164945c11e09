# survey_incentives/api/v1/endpoints/participants.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from survey_incentives.api import deps
from survey_incentives.core.exceptions import NoItemAvailableError
from survey_incentives.core.limiter import limiter
from survey_incentives.schemas.common import Page
from survey_incentives.schemas.invitation import AssignLinkRequest, AssignLinkResponse
from survey_incentives.schemas.participant import CascadeReport, Participant, ParticipantCreate
from survey_incentives.schemas.token import TokenPayload
from survey_incentives.services.allocation_service import NO_ITEM_AVAILABLE
from survey_incentives.services.enrollment_service import enrollment_service
from survey_incentives.services.ledger_service import ledger_service
from survey_incentives.services.notification_dispatcher import NotificationDispatcher
from survey_incentives.services.participant_service import participant_service

router = APIRouter(prefix="/participants", tags=["Participants"])
logger = logging.getLogger(__name__)


@router.post("", response_model=Participant, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def register_participant(
    request: Request,
    participant_in: ParticipantCreate,
    db: Session = Depends(deps.get_db),
):
    """
    Public sign-up. Takes an enrollment slot or fails with 403 when
    enrollment is full or closed.
    """
    return enrollment_service.register(
        db,
        phone=participant_in.phone,
        email=participant_in.email,
        name=participant_in.name,
        consented=participant_in.consented,
        acted_by="PUBLIC",
    )


@router.get("", response_model=Page[Participant])
def list_participants(
    search: Optional[str] = Query(None, description="Match on phone, email or name"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    items, total = participant_service.list_participants(db, search=search, skip=skip, limit=limit)
    return {"items": items, "total": total, "skip": skip, "limit": limit}


@router.get("/{participant_id}", response_model=Participant)
def get_participant(
    participant_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return participant_service.get_participant(db, participant_id)


@router.delete("/{participant_id}", response_model=CascadeReport)
@limiter.limit("20/minute")
def delete_participant(
    request: Request,
    participant_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Delete a participant and return their gift card and unused
    survey link to the pools.
    """
    return participant_service.delete_participant(
        db, participant_id=participant_id, acted_by=current_user.sub
    )


@router.post("/{participant_id}/invitation", response_model=AssignLinkResponse)
def assign_survey_link(
    participant_id: str,
    assign_in: Optional[AssignLinkRequest] = None,
    db: Session = Depends(deps.get_db),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Give the participant a survey link. Calling it again returns the same
    invitation. When the link pool is empty the participant is queued and
    the call fails with 409.
    """
    invitation, claimed = ledger_service.assign_link(
        db,
        participant_id=participant_id,
        batch_label=assign_in.batch_label if assign_in else None,
        acted_by=current_user.sub,
        dispatcher=dispatcher,
    )
    if claimed is NO_ITEM_AVAILABLE:
        raise NoItemAvailableError(
            "No survey links available; the participant is queued for the next upload",
            details={"invitation_id": invitation.id, "message_status": invitation.message_status},
        )
    return {
        "assigned": True,
        "invitation": invitation,
        "message": None if claimed else "Participant already has a survey link",
    }

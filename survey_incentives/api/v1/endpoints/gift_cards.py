# survey_incentives/api/v1/endpoints/gift_cards.py
"""
Admin endpoints for the gift card pool and gift card distribution.

These endpoints allow admins to:
- Upload, edit, invalidate and delete pool cards
- Send gift cards to eligible participants, singly or in batches
- Track delivery and redemption
- Unsend a card, returning its code to the pool
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.api import deps
from survey_incentives.api.v1.endpoints.links import read_upload
from survey_incentives.core.exceptions import (
    ConflictError,
    NoItemAvailableError,
    NotFoundError,
)
from survey_incentives.core.limiter import limiter
from survey_incentives.models.gift_card import GiftCardStatus
from survey_incentives.models.gift_card_pool import PoolStatus
from survey_incentives.schemas.common import Page
from survey_incentives.schemas.gift_card import (
    AddNotesRequest,
    BatchSendGiftCardRequest,
    BatchSendGiftCardResult,
    CleanupResult,
    DistributionLog,
    GiftCardAssignment,
    SendGiftCardRequest,
    UnsendAck,
    UnsendRequest,
    UnsentAuditRecord,
)
from survey_incentives.schemas.gift_card_pool import (
    GiftCardPoolCreate,
    GiftCardPoolItem,
    GiftCardPoolStatus,
    GiftCardPoolUpdate,
)
from survey_incentives.schemas.participant import EligibleParticipant
from survey_incentives.schemas.token import TokenPayload
from survey_incentives.schemas.upload import UploadResult
from survey_incentives.services import ingestion
from survey_incentives.services.allocation_service import NO_ITEM_AVAILABLE, PoolKind, allocation_service
from survey_incentives.services.ledger_service import ledger_service
from survey_incentives.services.notification_dispatcher import NotificationDispatcher
from survey_incentives.services.participant_service import participant_service
from survey_incentives.services.reversal_service import reversal_service
from survey_incentives.utils.validators import normalize_gift_card_code

router = APIRouter(prefix="/admin/gift-cards", tags=["Admin - Gift Cards"])
logger = logging.getLogger(__name__)


# ==================== Pool ====================

@router.post("/pool/upload", response_model=UploadResult)
@limiter.limit("10/minute")
def upload_gift_cards(
    request: Request,
    file: UploadFile = File(...),
    batch_label: Optional[str] = Form(None),
    card_type: Optional[str] = Form(None),
    card_value: Optional[Decimal] = Form(None),
    redemption_url: Optional[str] = Form(None),
    redemption_instructions: Optional[str] = Form(None),
    expires_at: Optional[datetime] = Form(None),
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Bulk upload gift card codes (XXXX-XXXXXX-XXXX), one per line.
    The form fields apply to every card in the file.
    """
    return ingestion.ingest_gift_cards(
        db,
        read_upload(file),
        uploaded_by=current_user.sub,
        batch_label=batch_label,
        card_type=card_type,
        card_value=card_value,
        redemption_url=redemption_url,
        redemption_instructions=redemption_instructions,
        expires_at=expires_at,
    )


@router.post("/pool", response_model=GiftCardPoolItem, status_code=status.HTTP_201_CREATED)
def add_pool_card(
    card_in: GiftCardPoolCreate,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return ingestion.add_gift_card(db, obj_in=card_in, uploaded_by=current_user.sub)


@router.get("/pool", response_model=Page[GiftCardPoolItem])
def list_pool_cards(
    status: Optional[PoolStatus] = Query(None),
    batch_label: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Match on code, card type or batch"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    items, total = crud.gift_card_pool.get_multi_filtered(
        db,
        status=status.value if status else None,
        batch_label=batch_label,
        search=search,
        skip=skip,
        limit=limit,
    )
    return {"items": items, "total": total, "skip": skip, "limit": limit}


@router.get("/pool/status", response_model=GiftCardPoolStatus)
def get_pool_status(
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return crud.gift_card_pool.get_pool_status(db)


@router.post("/pool/cleanup-orphaned", response_model=CleanupResult)
@limiter.limit("5/minute")
def cleanup_orphaned_cards(
    request: Request,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Return ASSIGNED pool cards that no live assignment holds to AVAILABLE.
    """
    logger.info(f"Orphaned card cleanup requested by {current_user.sub}")
    return crud.gift_card_pool.reset_orphaned(db)


@router.put("/pool/{item_id}", response_model=GiftCardPoolItem)
def update_pool_card(
    item_id: str,
    card_in: GiftCardPoolUpdate,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """**[ADMIN]** Edit a card that is not currently assigned."""
    if card_in.card_code is not None:
        card_in.card_code = normalize_gift_card_code(card_in.card_code)
    if not crud.gift_card_pool.get(db, item_id):
        raise NotFoundError(f"Gift card {item_id} not found")
    item = crud.gift_card_pool.update_unassigned(db, id=item_id, obj_in=card_in)
    if item is None:
        raise ConflictError("An assigned gift card cannot be edited")
    return item


@router.post("/pool/{item_id}/invalidate", response_model=GiftCardPoolItem)
def invalidate_pool_card(
    item_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    item = crud.gift_card_pool.get(db, item_id)
    if not item:
        raise NotFoundError(f"Gift card {item_id} not found")
    if not crud.gift_card_pool.invalidate(db, id=item_id):
        raise ConflictError(f"Gift card in status {item.status} cannot be invalidated")
    db.refresh(item)
    logger.info(f"Gift card {item_id} invalidated by {current_user.sub}")
    return item


@router.delete("/pool/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
def delete_pool_card(
    request: Request,
    item_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """**[ADMIN]** Delete an unassigned card. Assigned cards are refused with 409."""
    participant_service.delete_pool_item(db, PoolKind.GIFT_CARD, item_id, current_user.sub)


# ==================== Distribution ====================

@router.get("/eligible", response_model=Page[EligibleParticipant])
def list_eligible_participants(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    items, total = allocation_service.list_eligible_participants(db, skip=skip, limit=limit)
    return {"items": items, "total": total, "skip": skip, "limit": limit}


@router.post("/send/{participant_id}", response_model=GiftCardAssignment, status_code=status.HTTP_201_CREATED)
def send_gift_card(
    participant_id: str,
    send_in: SendGiftCardRequest,
    db: Session = Depends(deps.get_db),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Send the next available gift card to an eligible participant.
    Responds 409 when the pool is empty.
    """
    assignment = ledger_service.send_gift_card(
        db,
        participant_id=participant_id,
        invitation_id=send_in.invitation_id,
        delivery_method=send_in.delivery_method.value,
        notes=send_in.notes,
        card_type=send_in.card_type,
        acted_by=current_user.sub,
        dispatcher=dispatcher,
    )
    if assignment is NO_ITEM_AVAILABLE:
        raise NoItemAvailableError("No gift cards available in the pool")
    return assignment


@router.post("/batch-send", response_model=BatchSendGiftCardResult)
@limiter.limit("10/minute")
def batch_send_gift_cards(
    request: Request,
    batch_in: BatchSendGiftCardRequest,
    db: Session = Depends(deps.get_db),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    result = ledger_service.batch_send_gift_cards(
        db,
        requests=[item.model_dump() for item in batch_in.participants],
        delivery_method=batch_in.delivery_method.value,
        card_type=batch_in.card_type,
        notes=batch_in.notes,
        acted_by=current_user.sub,
        dispatcher=dispatcher,
    )
    return {
        "total_requested": result.total_requested,
        "total_sent": result.total_sent,
        "total_failed": result.total_failed,
        "successes": result.successes,
        "failures": result.failures,
    }


@router.get("", response_model=Page[GiftCardAssignment])
def list_gift_cards(
    status: Optional[GiftCardStatus] = Query(None),
    participant_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Match on card code"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    items, total = crud.gift_card.get_multi_filtered(
        db,
        status=status.value if status else None,
        participant_id=participant_id,
        search=search,
        skip=skip,
        limit=limit,
    )
    return {"items": items, "total": total, "skip": skip, "limit": limit}


@router.get("/unsent", response_model=Page[UnsentAuditRecord])
def list_unsent_history(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    items, total = reversal_service.list_unsent(db, skip=skip, limit=limit)
    return {"items": items, "total": total, "skip": skip, "limit": limit}


@router.get("/{assignment_id}", response_model=GiftCardAssignment)
def get_gift_card(
    assignment_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    assignment = crud.gift_card.get(db, assignment_id)
    if not assignment:
        raise NotFoundError(f"Gift card assignment {assignment_id} not found")
    return assignment


@router.get("/{assignment_id}/logs", response_model=List[DistributionLog])
def get_gift_card_logs(
    assignment_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    if not crud.gift_card.get(db, assignment_id):
        raise NotFoundError(f"Gift card assignment {assignment_id} not found")
    return crud.distribution_log.get_for_assignment(db, assignment_id=assignment_id)


@router.post("/{assignment_id}/resend", response_model=GiftCardAssignment)
@limiter.limit("20/minute")
def resend_gift_card(
    request: Request,
    assignment_id: str,
    db: Session = Depends(deps.get_db),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return ledger_service.resend_gift_card(db, assignment_id, current_user.sub, dispatcher=dispatcher)


@router.put("/{assignment_id}/notes", response_model=GiftCardAssignment)
def add_gift_card_notes(
    assignment_id: str,
    notes_in: AddNotesRequest,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return ledger_service.add_notes(db, assignment_id, notes_in.notes, current_user.sub)


@router.post("/{assignment_id}/delivered", response_model=GiftCardAssignment)
def mark_gift_card_delivered(
    assignment_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return ledger_service.mark_delivered(db, assignment_id, acted_by=current_user.sub)


@router.post("/{assignment_id}/redeemed", response_model=GiftCardAssignment)
def mark_gift_card_redeemed(
    assignment_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return ledger_service.mark_redeemed(db, assignment_id, current_user.sub)


@router.post("/{assignment_id}/unsend", response_model=UnsendAck)
@limiter.limit("20/minute")
def unsend_gift_card(
    request: Request,
    assignment_id: str,
    unsend_in: UnsendRequest,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Unsend a gift card and return its code to the pool.

    The request must carry the confirmation phrase exactly (default `UNSEND`).
    Unsending an already-unsent card is acknowledged without a new audit entry.
    Redeemed cards cannot be unsent.
    """
    ack = reversal_service.reverse(
        db,
        assignment_id=assignment_id,
        confirmation_phrase=unsend_in.confirmation_phrase,
        acted_by=current_user.sub,
        reason=unsend_in.reason,
    )
    return {
        "assignment_id": ack.assignment_id,
        "already_unsent": ack.already_unsent,
        "pool_item_id": ack.pool_item_id,
        "message": ack.message,
    }

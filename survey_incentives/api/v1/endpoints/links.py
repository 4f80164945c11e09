# survey_incentives/api/v1/endpoints/links.py
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.api import deps
from survey_incentives.core.exceptions import ValidationError
from survey_incentives.core.limiter import limiter
from survey_incentives.models.survey_link import LinkStatus
from survey_incentives.schemas.common import Page
from survey_incentives.schemas.survey_link import LinkPoolStatus, SurveyLink, SurveyLinkCreate
from survey_incentives.schemas.token import TokenPayload
from survey_incentives.schemas.upload import UploadResult
from survey_incentives.services import ingestion
from survey_incentives.services.allocation_service import PoolKind
from survey_incentives.services.participant_service import participant_service

router = APIRouter(prefix="/admin/links", tags=["Admin - Survey Links"])

MAX_UPLOAD_BYTES = 5 * 1024 * 1024  # 5MB


def read_upload(file: UploadFile) -> str:
    content = file.file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError("Upload is larger than 5MB")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("Upload must be UTF-8 text or CSV")


@router.post("/upload", response_model=UploadResult)
@limiter.limit("10/minute")
def upload_links(
    request: Request,
    file: UploadFile = File(...),
    batch_label: Optional[str] = Form(None),
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Bulk upload survey links, one URL per line (first CSV column).
    Duplicates and malformed rows are reported per line; the rest are added.
    """
    return ingestion.ingest_links(
        db, read_upload(file), uploaded_by=current_user.sub, batch_label=batch_label
    )


@router.post("", response_model=SurveyLink, status_code=status.HTTP_201_CREATED)
def add_link(
    link_in: SurveyLinkCreate,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return ingestion.add_link(db, obj_in=link_in, uploaded_by=current_user.sub)


@router.get("", response_model=Page[SurveyLink])
def list_links(
    status: Optional[LinkStatus] = Query(None),
    batch_label: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    items, total = crud.survey_link.get_multi_filtered(
        db,
        status=status.value if status else None,
        batch_label=batch_label,
        search=search,
        skip=skip,
        limit=limit,
    )
    return {"items": items, "total": total, "skip": skip, "limit": limit}


@router.get("/status", response_model=LinkPoolStatus)
def get_link_pool_status(
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return crud.survey_link.get_pool_status(db)


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
def delete_link(
    request: Request,
    link_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Delete an unassigned link. Assigned links are refused with 409.
    """
    participant_service.delete_pool_item(db, PoolKind.LINK, link_id, current_user.sub)

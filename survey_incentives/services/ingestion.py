# survey_incentives/services/ingestion.py
"""
Bulk upload of survey links and gift card codes.

Uploads are plain text or CSV, one item per line. Each row is inserted in its
own savepoint so one bad row never discards the rest of the file.
"""

import csv
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.core.exceptions import ConflictError
from survey_incentives.models.gift_card_pool import GiftCardPoolItem
from survey_incentives.models.survey_link import SurveyLink
from survey_incentives.utils.validators import (
    is_valid_gift_card_code,
    is_valid_url,
    normalize_gift_card_code,
    validate_url,
)

logger = logging.getLogger(__name__)

HEADER_VALUES = {"code", "card_code", "gift_card_code", "url", "link"}

DUPLICATE = "duplicate"
INVALID_FORMAT = "invalid_format"


def parse_upload_lines(raw: str) -> List[Tuple[int, str]]:
    """
    Extract (line_number, value) pairs from an upload.

    Blank lines and `#` comments are skipped, as is a header row whose first
    column is one of the known column names. Only the first CSV column is
    used and surrounding quotes are stripped.
    """
    rows: List[Tuple[int, str]] = []
    for line_number, line in enumerate(raw.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        first_column = next(csv.reader([stripped]), [""])
        value = first_column[0].strip().strip('"').strip("'").strip() if first_column else ""
        if not value:
            continue
        if not rows and value.lower() in HEADER_VALUES:
            continue
        rows.append((line_number, value))
    return rows


def _result(
    total_rows: int,
    errors: List[Dict[str, Any]],
    batch_label: Optional[str],
    uploaded_by: str,
) -> Dict[str, Any]:
    return {
        "total_rows": total_rows,
        "successful_uploads": total_rows - len(errors),
        "failed_uploads": len(errors),
        "errors": errors,
        "batch_label": batch_label,
        "uploaded_by": uploaded_by,
    }


def _error(line: int, value: str, reason: str, message: str) -> Dict[str, Any]:
    return {"line": line, "value": value, "reason": reason, "message": message}


def ingest_gift_cards(
    db: Session,
    raw: str,
    *,
    uploaded_by: str,
    batch_label: Optional[str] = None,
    card_type: Optional[str] = None,
    card_value: Optional[Decimal] = None,
    redemption_url: Optional[str] = None,
    redemption_instructions: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    rows = parse_upload_lines(raw)
    errors: List[Dict[str, Any]] = []
    seen = set()

    for line, value in rows:
        if not is_valid_gift_card_code(value):
            errors.append(_error(line, value, INVALID_FORMAT, "Expected format XXXX-XXXXXX-XXXX"))
            continue

        code = normalize_gift_card_code(value)
        if code in seen:
            errors.append(_error(line, value, DUPLICATE, "Code appears more than once in this upload"))
            continue
        seen.add(code)

        try:
            with db.begin_nested():
                crud.gift_card_pool.add(
                    db,
                    card_code=code,
                    card_type=card_type,
                    card_value=card_value,
                    redemption_url=redemption_url,
                    redemption_instructions=redemption_instructions,
                    batch_label=batch_label,
                    expires_at=expires_at,
                    uploaded_by=uploaded_by,
                )
        except IntegrityError:
            errors.append(_error(line, value, DUPLICATE, "Code already exists in the pool"))

    db.commit()
    logger.info(
        f"Gift card upload by {uploaded_by}: {len(rows) - len(errors)} added, "
        f"{len(errors)} rejected (batch={batch_label})"
    )
    return _result(len(rows), errors, batch_label, uploaded_by)


def ingest_links(
    db: Session,
    raw: str,
    *,
    uploaded_by: str,
    batch_label: Optional[str] = None,
) -> Dict[str, Any]:
    rows = parse_upload_lines(raw)
    errors: List[Dict[str, Any]] = []
    seen = set()

    for line, value in rows:
        if not is_valid_url(value):
            errors.append(_error(line, value, INVALID_FORMAT, "Expected an http(s) URL"))
            continue
        if value in seen:
            errors.append(_error(line, value, DUPLICATE, "URL appears more than once in this upload"))
            continue
        seen.add(value)

        try:
            with db.begin_nested():
                crud.survey_link.add(db, long_url=value, batch_label=batch_label, uploaded_by=uploaded_by)
        except IntegrityError:
            errors.append(_error(line, value, DUPLICATE, "URL already exists in the pool"))

    db.commit()
    logger.info(
        f"Survey link upload by {uploaded_by}: {len(rows) - len(errors)} added, "
        f"{len(errors)} rejected (batch={batch_label})"
    )
    return _result(len(rows), errors, batch_label, uploaded_by)


def add_gift_card(db: Session, *, obj_in, uploaded_by: str) -> GiftCardPoolItem:
    """
    Add a single card.

    Raises:
        ValidationError: malformed code
        ConflictError: code already in the pool
    """
    code = normalize_gift_card_code(obj_in.card_code)
    if obj_in.redemption_url:
        validate_url(obj_in.redemption_url)
    try:
        item = crud.gift_card_pool.add(
            db,
            card_code=code,
            card_type=obj_in.card_type,
            card_value=obj_in.card_value,
            redemption_url=obj_in.redemption_url,
            redemption_instructions=obj_in.redemption_instructions,
            batch_label=obj_in.batch_label,
            expires_at=obj_in.expires_at,
            uploaded_by=uploaded_by,
        )
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Gift card code {code} already exists")
    db.commit()
    db.refresh(item)
    logger.info(f"Gift card {item.id} added by {uploaded_by}")
    return item


def add_link(db: Session, *, obj_in, uploaded_by: str) -> SurveyLink:
    long_url = validate_url(obj_in.long_url)
    short_url = validate_url(obj_in.short_url) if obj_in.short_url else None
    try:
        item = crud.survey_link.add(
            db,
            long_url=long_url,
            short_url=short_url,
            batch_label=obj_in.batch_label,
            uploaded_by=uploaded_by,
            notes=obj_in.notes,
        )
    except IntegrityError:
        db.rollback()
        raise ConflictError("This survey link already exists")
    db.commit()
    db.refresh(item)
    logger.info(f"Survey link {item.id} added by {uploaded_by}")
    return item

# survey_incentives/background_tasks/pool_tasks.py
"""
Periodic pool maintenance.

Tasks include:
- Marking AVAILABLE gift cards past their expiry date as EXPIRED
- Returning ASSIGNED gift cards that no live assignment holds to AVAILABLE
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from survey_incentives.crud.crud_gift_card_pool import gift_card_pool
from survey_incentives.db.session import SessionLocal

logger = logging.getLogger(__name__)


def expire_overdue_gift_cards() -> int:
    """
    Claims already skip overdue cards; this keeps the pool counts honest.
    Failures propagate to the scheduler's error listener.
    """
    db = SessionLocal()
    try:
        expired = gift_card_pool.expire_overdue(db)
        if expired:
            logger.info(f"Expired {expired} overdue gift cards")
        return expired
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


def cleanup_orphaned_pool_cards() -> dict:
    db = SessionLocal()
    try:
        logger.info("Starting orphaned gift card cleanup...")
        result = gift_card_pool.reset_orphaned(db)
        logger.info(
            f"Orphaned gift card cleanup done: {result['orphaned_cards_found']} found, "
            f"{result['cards_reset']} reset"
        )
        return result
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()

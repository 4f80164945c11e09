from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives import scheduler as scheduler_module
from survey_incentives.background_tasks import pool_tasks
from tests.utils.factories import create_gift_cards


@pytest.fixture
def task_sessions(monkeypatch, session_factory):
    monkeypatch.setattr(pool_tasks, "SessionLocal", session_factory)


def test_expire_overdue_gift_cards(db_session: Session, task_sessions):
    create_gift_cards(db_session, 2, expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))
    create_gift_cards(db_session, 1)

    assert pool_tasks.expire_overdue_gift_cards() == 2

    status = crud.gift_card_pool.get_pool_status(db_session)
    assert status["expired_cards"] == 2
    assert status["available_cards"] == 1


def test_cleanup_orphaned_pool_cards(db_session: Session, task_sessions):
    create_gift_cards(db_session, 1)
    crud.gift_card_pool.try_claim_next(db_session)
    db_session.commit()

    assert pool_tasks.cleanup_orphaned_pool_cards() == {"orphaned_cards_found": 1, "cards_reset": 1}


def test_scheduler_registers_jobs():
    scheduler_module.init_scheduler(start=False)
    try:
        status = scheduler_module.get_scheduler_status()
        assert status["status"] == "stopped"
        assert {job["id"] for job in status["jobs"]} == {
            "expire_overdue_gift_cards",
            "cleanup_orphaned_pool_cards",
        }
    finally:
        scheduler_module.shutdown_scheduler()

    assert scheduler_module.get_scheduler_status()["status"] == "not_initialized"

from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.models.gift_card_pool import PoolStatus
from tests.utils.factories import create_gift_cards


def test_try_claim_next_takes_oldest_available(db_session: Session):
    first, second, third = create_gift_cards(db_session, 3)

    claimed_id = crud.gift_card_pool.try_claim_next(db_session)
    db_session.commit()

    assert claimed_id == first.id
    db_session.refresh(first)
    db_session.refresh(second)
    assert first.status == PoolStatus.ASSIGNED.value
    assert first.assigned_at is not None
    assert second.status == PoolStatus.AVAILABLE.value


def test_try_claim_next_skips_overdue_cards(db_session: Session):
    past = datetime.now(timezone.utc) - timedelta(days=1)
    future = datetime.now(timezone.utc) + timedelta(days=30)
    create_gift_cards(db_session, 1, expires_at=past)
    valid = create_gift_cards(db_session, 1, expires_at=future)[0]

    assert crud.gift_card_pool.try_claim_next(db_session) == valid.id
    assert crud.gift_card_pool.try_claim_next(db_session) is None


def test_try_claim_next_filters_by_card_type(db_session: Session):
    create_gift_cards(db_session, 1, card_type="AMAZON")
    visa = create_gift_cards(db_session, 1, card_type="VISA")[0]

    assert crud.gift_card_pool.try_claim_next(db_session, card_type="VISA") == visa.id
    assert crud.gift_card_pool.try_claim_next(db_session, card_type="VISA") is None


def test_release_only_moves_assigned_rows(db_session: Session):
    card = create_gift_cards(db_session, 1)[0]

    # Not assigned yet: nothing to release
    assert crud.gift_card_pool.release(db_session, id=card.id) is False

    crud.gift_card_pool.try_claim_next(db_session, assignment_id="gca_holder")
    db_session.commit()

    # Wrong holder is refused
    assert crud.gift_card_pool.release(db_session, id=card.id, assigned_assignment_id="gca_other") is False
    assert crud.gift_card_pool.release(db_session, id=card.id, assigned_assignment_id="gca_holder") is True
    db_session.commit()

    db_session.refresh(card)
    assert card.status == PoolStatus.AVAILABLE.value
    assert card.assigned_assignment_id is None
    assert card.assigned_at is None


def test_delete_unassigned_refuses_assigned_card(db_session: Session):
    assigned, available = create_gift_cards(db_session, 2)
    crud.gift_card_pool.try_claim_next(db_session)
    db_session.commit()

    assert crud.gift_card_pool.delete_unassigned(db_session, id=assigned.id) is False
    assert crud.gift_card_pool.delete_unassigned(db_session, id=available.id) is True
    db_session.commit()

    remaining = db_session.execute(text("SELECT id FROM gift_card_pool")).scalars().all()
    assert remaining == [assigned.id]


def test_expire_overdue_only_touches_available_cards(db_session: Session):
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    overdue_available, overdue_assigned = create_gift_cards(db_session, 2, expires_at=past)
    fresh = create_gift_cards(db_session, 1)[0]
    db_session.execute(
        text("UPDATE gift_card_pool SET status = 'ASSIGNED' WHERE id = :id"), {"id": overdue_assigned.id}
    )
    db_session.commit()

    assert crud.gift_card_pool.expire_overdue(db_session) == 1

    statuses = dict(db_session.execute(text("SELECT id, status FROM gift_card_pool")).all())
    assert statuses[overdue_available.id] == PoolStatus.EXPIRED.value
    assert statuses[overdue_assigned.id] == PoolStatus.ASSIGNED.value
    assert statuses[fresh.id] == PoolStatus.AVAILABLE.value


def test_reset_orphaned_returns_unheld_assigned_cards(db_session: Session):
    create_gift_cards(db_session, 2)
    crud.gift_card_pool.try_claim_next(db_session)
    db_session.commit()

    result = crud.gift_card_pool.reset_orphaned(db_session)

    assert result == {"orphaned_cards_found": 1, "cards_reset": 1}
    assert crud.gift_card_pool.get_pool_status(db_session)["available_cards"] == 2


def test_get_pool_status_counts_every_status(db_session: Session):
    cards = create_gift_cards(db_session, 4)
    crud.gift_card_pool.try_claim_next(db_session)
    db_session.commit()
    crud.gift_card_pool.invalidate(db_session, id=cards[3].id)

    assert crud.gift_card_pool.get_pool_status(db_session) == {
        "total_cards": 4,
        "available_cards": 2,
        "assigned_cards": 1,
        "expired_cards": 0,
        "invalid_cards": 1,
    }


def test_search_matches_code(db_session: Session):
    cards = create_gift_cards(db_session, 3)
    code_fragment = cards[1].card_code[5:11]

    items, total = crud.gift_card_pool.get_multi_filtered(db_session, search=code_fragment)

    assert total == 1
    assert items[0].id == cards[1].id

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.core.exceptions import (
    ConfirmationMismatchError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from survey_incentives.models.distribution_log import DistributionAction
from survey_incentives.models.gift_card import GiftCardStatus
from survey_incentives.models.gift_card_pool import PoolStatus
from survey_incentives.services.ledger_service import ledger_service
from survey_incentives.services.reversal_service import reversal_service
from tests.utils.factories import create_completed_participant, create_gift_cards


@pytest.fixture
def sent_card(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher, name="Ada Example")
    card = create_gift_cards(db_session, 1)[0]
    assignment = ledger_service.send_gift_card(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
    )
    return participant, card, assignment


def _unsend(db, assignment_id, phrase="UNSEND", reason="sent to wrong person"):
    return reversal_service.reverse(
        db, assignment_id=assignment_id, confirmation_phrase=phrase, acted_by="admin", reason=reason
    )


@pytest.mark.parametrize("phrase, error", [
    (None, ValidationError),
    ("   ", ValidationError),
    ("unsend", ConfirmationMismatchError),
    ("UNSEND ", ConfirmationMismatchError),
])
def test_confirmation_phrase_must_match_exactly(db_session: Session, sent_card, phrase, error):
    _, _, assignment = sent_card

    with pytest.raises(error):
        _unsend(db_session, assignment.id, phrase=phrase)

    assert crud.gift_card.get(db_session, assignment.id).status == GiftCardStatus.SENT.value
    assert crud.unsent_audit.get_for_assignment(db_session, assignment_id=assignment.id) == []


def test_reverse_returns_card_to_pool_with_audit(db_session: Session, sent_card):
    participant, card, assignment = sent_card

    ack = _unsend(db_session, assignment.id)

    assert ack.already_unsent is False
    assert ack.pool_item_id == card.id
    db_session.refresh(card)
    assert card.status == PoolStatus.AVAILABLE.value
    assert card.assigned_assignment_id is None
    assert crud.gift_card.get(db_session, assignment.id).status == GiftCardStatus.UNSENT.value

    records = crud.unsent_audit.get_for_assignment(db_session, assignment_id=assignment.id)
    assert len(records) == 1
    record = records[0]
    assert record.previous_status == GiftCardStatus.SENT.value
    assert record.card_code == card.card_code
    assert record.unsent_by == "admin"
    assert record.reason == "sent to wrong person"
    assert record.participant_snapshot["name"] == "Ada Example"
    assert record.participant_snapshot["phone"] == participant.phone

    actions = [row.action for row in crud.distribution_log.get_for_assignment(db_session, assignment_id=assignment.id)]
    assert actions[-1] == DistributionAction.UNSENT.value


def test_reverse_twice_is_acknowledged(db_session: Session, sent_card):
    _, _, assignment = sent_card
    _unsend(db_session, assignment.id)

    ack = _unsend(db_session, assignment.id)

    assert ack.already_unsent is True
    assert len(crud.unsent_audit.get_for_assignment(db_session, assignment_id=assignment.id)) == 1


def test_concurrent_reverse_is_acknowledged(db_session: Session, session_factory, sent_card, monkeypatch):
    _, card, assignment = sent_card
    assignment_id, card_id = assignment.id, card.id
    original_get_for_update = crud.gift_card.get_for_update
    raced = []

    def get_then_unsend_elsewhere(db, *, id):
        row = original_get_for_update(db, id=id)
        if not raced:
            raced.append(id)
            other = session_factory()
            try:
                _unsend(other, id, reason="first request")
            finally:
                other.close()
        return row

    monkeypatch.setattr(crud.gift_card, "get_for_update", get_then_unsend_elsewhere)

    ack = _unsend(db_session, assignment_id, reason="second request")

    assert ack.already_unsent is True
    audit = crud.unsent_audit.get_for_assignment(db_session, assignment_id=assignment_id)
    assert [record.reason for record in audit] == ["first request"]
    assert crud.gift_card_pool.get(db_session, card_id).status == PoolStatus.AVAILABLE.value


def test_reversed_card_can_be_sent_again(db_session: Session, sent_card, dispatcher):
    participant, card, assignment = sent_card
    _unsend(db_session, assignment.id)

    reissued = ledger_service.send_gift_card(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
    )

    assert reissued.id != assignment.id
    assert reissued.pool_item_id == card.id
    assert reissued.status == GiftCardStatus.SENT.value


def test_delivered_card_can_be_reversed(db_session: Session, sent_card):
    _, _, assignment = sent_card
    ledger_service.mark_delivered(db_session, assignment.id)

    _unsend(db_session, assignment.id)

    record = crud.unsent_audit.get_for_assignment(db_session, assignment_id=assignment.id)[0]
    assert record.previous_status == GiftCardStatus.DELIVERED.value


def test_redeemed_card_cannot_be_reversed(db_session: Session, sent_card):
    _, card, assignment = sent_card
    ledger_service.mark_redeemed(db_session, assignment.id, acted_by="admin")

    with pytest.raises(ConflictError):
        _unsend(db_session, assignment.id)

    db_session.refresh(card)
    assert card.status == PoolStatus.ASSIGNED.value


def test_reverse_unknown_assignment(db_session: Session):
    with pytest.raises(NotFoundError):
        _unsend(db_session, "gca_missing")


def test_reverse_refused_when_pool_card_is_gone(db_session: Session, sent_card):
    _, card, assignment = sent_card
    db_session.execute(text("DELETE FROM gift_card_pool WHERE id = :id"), {"id": card.id})
    db_session.commit()

    with pytest.raises(NotFoundError):
        _unsend(db_session, assignment.id)

    assert crud.gift_card.get(db_session, assignment.id).status == GiftCardStatus.SENT.value
    assert crud.unsent_audit.get_for_assignment(db_session, assignment_id=assignment.id) == []


def test_list_unsent_newest_first(db_session: Session, dispatcher):
    assignments = []
    create_gift_cards(db_session, 2)
    for _ in range(2):
        participant = create_completed_participant(db_session, dispatcher)
        assignments.append(
            ledger_service.send_gift_card(
                db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
            )
        )
    for assignment in assignments:
        _unsend(db_session, assignment.id)

    records, total = reversal_service.list_unsent(db_session)

    assert total == 2
    assert [r.original_assignment_id for r in records] == [assignments[1].id, assignments[0].id]

import pytest
from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.core.exceptions import (
    ConflictError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from survey_incentives.models import invitation as invitation_status
from survey_incentives.models.distribution_log import DistributionAction
from survey_incentives.models.gift_card import GiftCardStatus
from survey_incentives.models.gift_card_pool import PoolStatus
from survey_incentives.models.survey_link import LinkStatus, SurveyLink
from survey_incentives.services.allocation_service import NO_ITEM_AVAILABLE
from survey_incentives.services.ledger_service import ledger_service
from tests.conftest import RecordingDispatcher
from tests.utils.factories import (
    create_completed_participant,
    create_gift_cards,
    create_links,
    create_participant,
)


def _send(db, participant, dispatcher, **kwargs):
    return ledger_service.send_gift_card(
        db, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher, **kwargs
    )


def _actions(db, assignment_id):
    return [row.action for row in crud.distribution_log.get_for_assignment(db, assignment_id=assignment_id)]


# --- Survey links ---

def test_assign_link_claims_and_dispatches(db_session: Session, dispatcher):
    participant = create_participant(db_session)
    link = create_links(db_session, 1)[0]

    invitation, claimed = ledger_service.assign_link(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
    )

    assert claimed.item_id == link.id
    assert invitation.link_item_id == link.id
    assert invitation.link_url == link.long_url
    assert invitation.message_status == "queued"
    assert invitation.message_sid == "msg_test_1"
    assert dispatcher.sent[0]["payload"]["url"] == link.short_url
    assert dispatcher.sent[0]["delivery_method"] == "SMS"


def test_assign_link_is_idempotent(db_session: Session, dispatcher):
    participant = create_participant(db_session)
    create_links(db_session, 2)

    first, _ = ledger_service.assign_link(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
    )
    second, claimed = ledger_service.assign_link(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
    )

    assert claimed is None
    assert second.id == first.id
    assert crud.survey_link.get_pool_status(db_session)["assigned_links"] == 1
    assert len(dispatcher.sent) == 1


def test_assign_link_when_pool_empty_keeps_invitation_waiting(db_session: Session, dispatcher):
    participant = create_participant(db_session)

    invitation, claimed = ledger_service.assign_link(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
    )

    assert claimed is NO_ITEM_AVAILABLE
    assert invitation.link_item_id is None
    assert invitation.message_status == invitation_status.AWAITING_LINK
    assert dispatcher.sent == []

    # Retrying after a refill reuses the waiting invitation
    create_links(db_session, 1)
    again, claimed = ledger_service.assign_link(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
    )
    assert again.id == invitation.id
    assert claimed is not None
    assert again.link_item_id is not None


def test_assign_link_unknown_participant(db_session: Session, dispatcher):
    with pytest.raises(NotFoundError):
        ledger_service.assign_link(db_session, participant_id="par_missing", acted_by="admin", dispatcher=dispatcher)


def test_failed_dispatch_keeps_the_claim(db_session: Session):
    failing = RecordingDispatcher(status="failed")
    participant = create_participant(db_session)
    create_links(db_session, 1)

    invitation, _ = ledger_service.assign_link(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=failing
    )

    assert invitation.message_status == "failed"
    assert invitation.error_code == "broker down"
    assert invitation.failed_at is not None
    assert crud.survey_link.get_pool_status(db_session)["assigned_links"] == 1


def test_fill_pending_invitations_oldest_first(db_session: Session, dispatcher):
    early = create_participant(db_session)
    late = create_participant(db_session)
    for participant in (early, late):
        ledger_service.assign_link(
            db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
        )
    create_links(db_session, 1)

    result = ledger_service.fill_pending_invitations(db_session, acted_by="admin", dispatcher=dispatcher)

    assert result == {"filled": 1, "still_waiting": 1}
    assert crud.invitation.get_latest_for_participant(db_session, participant_id=early.id).link_item_id
    assert crud.invitation.get_latest_for_participant(db_session, participant_id=late.id).link_item_id is None


def _assigned_link_ids(db):
    return {
        row.id for row in db.query(SurveyLink).filter(SurveyLink.status == LinkStatus.ASSIGNED.value).all()
    }


def _invitation_link_ids(db, participants):
    return {
        crud.invitation.get_latest_for_participant(db, participant_id=p.id, refresh=True).link_item_id
        for p in participants
    }


def test_fill_pending_skips_invitation_linked_meanwhile(db_session: Session, session_factory, dispatcher):
    first = create_participant(db_session)
    second = create_participant(db_session)
    for participant in (first, second):
        ledger_service.assign_link(
            db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
        )
    create_links(db_session, 3)
    second_id = second.id

    class AssignWhileDispatching(RecordingDispatcher):
        def dispatch(self, contact, payload, delivery_method):
            if not self.sent:
                other = session_factory()
                try:
                    ledger_service.assign_link(
                        other, participant_id=second_id, acted_by="admin", dispatcher=RecordingDispatcher()
                    )
                finally:
                    other.close()
            return super().dispatch(contact, payload, delivery_method)

    result = ledger_service.fill_pending_invitations(
        db_session, acted_by="admin", dispatcher=AssignWhileDispatching()
    )

    assert result == {"filled": 1, "still_waiting": 0}
    assert crud.survey_link.get_pool_status(db_session)["assigned_links"] == 2
    assert _assigned_link_ids(db_session) == _invitation_link_ids(db_session, [first, second])


@pytest.mark.parametrize("already_waiting", [True, False])
def test_assign_link_racing_itself_claims_one_link(
    db_session: Session, session_factory, dispatcher, monkeypatch, already_waiting
):
    participant = create_participant(db_session)
    if already_waiting:
        ledger_service.assign_link(
            db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
        )
    create_links(db_session, 2)
    participant_id = participant.id

    allocation = ledger_service.allocation
    original_claim = allocation.claim
    raced = []

    def claim_after_other_request(db, pool_kind, **kwargs):
        if not raced:
            raced.append(True)
            other = session_factory()
            try:
                ledger_service.assign_link(
                    other, participant_id=participant_id, acted_by="admin", dispatcher=RecordingDispatcher()
                )
            finally:
                other.close()
        return original_claim(db, pool_kind, **kwargs)

    monkeypatch.setattr(allocation, "claim", claim_after_other_request)

    invitation, claimed = ledger_service.assign_link(
        db_session, participant_id=participant_id, acted_by="admin", dispatcher=dispatcher
    )

    assert claimed is None
    assert invitation.link_item_id is not None
    assert len(crud.invitation.get_for_participant(db_session, participant_id=participant_id)) == 1
    assert _assigned_link_ids(db_session) == {invitation.link_item_id}
    assert dispatcher.sent == []


# --- Completion ---

def test_mark_completed_keeps_first_timestamp(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher)
    invitation = crud.invitation.get_latest_for_participant(db_session, participant_id=participant.id)
    first_completed_at = invitation.completed_at

    again = ledger_service.mark_survey_completed(db_session, invitation.id)

    assert again.completed_at == first_completed_at
    assert again.message_status == invitation_status.COMPLETED


def test_mark_completed_by_short_url(db_session: Session, dispatcher):
    participant = create_participant(db_session)
    create_links(db_session, 1)
    invitation, _ = ledger_service.assign_link(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
    )

    completed = ledger_service.mark_survey_completed_by_url(db_session, f"  {invitation.short_link_url} ")

    assert completed.id == invitation.id
    assert completed.completed_at is not None


def test_mark_completed_by_unknown_url(db_session: Session):
    with pytest.raises(NotFoundError):
        ledger_service.mark_survey_completed_by_url(db_session, "https://survey.example.com/nope")


def test_uncomplete_warns_when_card_already_sent(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher)
    create_gift_cards(db_session, 1)
    assignment = _send(db_session, participant, dispatcher)

    result = ledger_service.mark_survey_uncompleted(db_session, assignment.invitation_id)

    assert result.gift_card_warning is True
    assert result.invitation.completed_at is None
    assert result.invitation.message_status == invitation_status.DELIVERED
    # The card itself is untouched
    assert crud.gift_card.get(db_session, assignment.id).status == GiftCardStatus.SENT.value


def test_bulk_completion_counts_changed_rows(db_session: Session, dispatcher):
    participants = [create_participant(db_session) for _ in range(2)]
    create_links(db_session, 2)
    invitation_ids = []
    for participant in participants:
        invitation, _ = ledger_service.assign_link(
            db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
        )
        invitation_ids.append(invitation.id)

    assert ledger_service.bulk_mark_completed(db_session, invitation_ids + ["inv_missing"]) == 2
    assert ledger_service.bulk_mark_completed(db_session, invitation_ids) == 0
    assert ledger_service.bulk_mark_uncompleted(db_session, invitation_ids[:1]) == 1


# --- Gift cards ---

def test_send_gift_card_records_assignment(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher)
    card = create_gift_cards(db_session, 1)[0]

    assignment = _send(db_session, participant, dispatcher, notes="thanks")

    assert assignment.status == GiftCardStatus.SENT.value
    assert assignment.pool_item_id == card.id
    assert assignment.card_code == card.card_code
    assert assignment.sent_by == "admin"
    assert assignment.notes == "thanks"
    assert assignment.delivery_status == "queued"
    assert assignment.message_sid is not None
    db_session.refresh(card)
    assert card.status == PoolStatus.ASSIGNED.value
    assert card.assigned_assignment_id == assignment.id
    assert _actions(db_session, assignment.id) == [DistributionAction.SENT.value]
    assert dispatcher.sent[-1]["payload"]["card_code"] == card.card_code


def test_send_gift_card_requires_completion(db_session: Session, dispatcher):
    participant = create_participant(db_session)
    create_gift_cards(db_session, 1)

    with pytest.raises(NotEligibleError):
        _send(db_session, participant, dispatcher)

    assert crud.gift_card_pool.get_pool_status(db_session)["available_cards"] == 1


def test_send_gift_card_only_once(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher)
    create_gift_cards(db_session, 2)
    _send(db_session, participant, dispatcher)

    with pytest.raises(NotEligibleError):
        _send(db_session, participant, dispatcher)

    assert crud.gift_card_pool.get_pool_status(db_session)["assigned_cards"] == 1


def test_send_gift_card_pool_exhausted(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher)

    result = _send(db_session, participant, dispatcher)

    assert result is NO_ITEM_AVAILABLE
    assert crud.gift_card.get_active_for_participant(db_session, participant_id=participant.id) is None


def test_send_gift_card_by_email_needs_an_email(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher, email=None)
    create_gift_cards(db_session, 1)

    with pytest.raises(ValidationError):
        _send(db_session, participant, dispatcher, delivery_method="EMAIL")

    assignment = _send(db_session, participant, dispatcher, delivery_method="SMS")
    assert assignment.delivery_method == "SMS"


def test_send_gift_card_failed_dispatch_is_logged(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher)
    create_gift_cards(db_session, 1)

    assignment = _send(db_session, participant, RecordingDispatcher(status="failed"))

    assert assignment.status == GiftCardStatus.SENT.value
    assert assignment.delivery_status == "failed"
    assert _actions(db_session, assignment.id) == [DistributionAction.SENT.value, DistributionAction.FAILED.value]


def test_batch_send_reports_each_outcome(db_session: Session, dispatcher):
    completed = [create_completed_participant(db_session, dispatcher) for _ in range(3)]
    not_completed = create_participant(db_session)
    create_gift_cards(db_session, 2)
    requests = [{"participant_id": p.id} for p in completed + [not_completed]]

    result = ledger_service.batch_send_gift_cards(
        db_session, requests=requests, acted_by="admin", dispatcher=dispatcher
    )

    assert result.total_requested == 4
    assert result.total_sent == 2
    assert result.total_failed == 2
    assert len({assignment.pool_item_id for assignment in result.successes}) == result.total_sent
    reasons = {failure["participant_id"]: failure["reason"] for failure in result.failures}
    assert reasons[completed[2].id] == "No gift cards available"
    assert reasons[not_completed.id] == "Participant has not completed the survey"


def test_status_moves_forward_only(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher)
    create_gift_cards(db_session, 1)
    assignment = _send(db_session, participant, dispatcher)

    delivered = ledger_service.mark_delivered(db_session, assignment.id)
    assert delivered.status == GiftCardStatus.DELIVERED.value
    assert delivered.delivered_at is not None

    # Repeating a transition is a no-op
    assert ledger_service.mark_delivered(db_session, assignment.id).status == GiftCardStatus.DELIVERED.value

    redeemed = ledger_service.mark_redeemed(db_session, assignment.id, acted_by="admin")
    assert redeemed.status == GiftCardStatus.REDEEMED.value

    with pytest.raises(ConflictError):
        ledger_service.mark_delivered(db_session, assignment.id)

    assert _actions(db_session, assignment.id) == [
        DistributionAction.SENT.value,
        DistributionAction.DELIVERED.value,
        DistributionAction.REDEEMED.value,
    ]


def test_delivery_callback_by_message_sid(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher)
    create_gift_cards(db_session, 1)
    assignment = _send(db_session, participant, dispatcher)

    updated = ledger_service.record_delivery_status(
        db_session, status="DELIVERED", message_sid=assignment.message_sid
    )

    assert updated.id == assignment.id
    assert updated.status == GiftCardStatus.DELIVERED.value
    assert updated.delivery_status == "delivered"


def test_delivery_callback_for_invitation(db_session: Session, dispatcher):
    participant = create_participant(db_session)
    create_links(db_session, 1)
    invitation, _ = ledger_service.assign_link(
        db_session, participant_id=participant.id, acted_by="admin", dispatcher=dispatcher
    )

    updated = ledger_service.record_delivery_status(
        db_session, status="failed", message_sid=invitation.message_sid, error_code="30003"
    )

    assert updated.id == invitation.id
    assert updated.message_status == "failed"
    assert updated.error_code == "30003"


def test_delivery_callback_needs_a_reference(db_session: Session):
    with pytest.raises(ValidationError):
        ledger_service.record_delivery_status(db_session, status="delivered")


def test_resend_and_notes_are_logged(db_session: Session, dispatcher):
    participant = create_completed_participant(db_session, dispatcher)
    create_gift_cards(db_session, 1)
    assignment = _send(db_session, participant, dispatcher)
    sent_before = len(dispatcher.sent)

    ledger_service.resend_gift_card(db_session, assignment.id, acted_by="admin", dispatcher=dispatcher)
    noted = ledger_service.add_notes(db_session, assignment.id, "called participant", acted_by="admin")

    assert len(dispatcher.sent) == sent_before + 1
    assert noted.notes == "called participant"
    assert _actions(db_session, assignment.id) == [
        DistributionAction.SENT.value,
        DistributionAction.RESENT.value,
        DistributionAction.NOTES.value,
    ]

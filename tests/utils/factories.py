from datetime import datetime, timedelta, timezone
from itertools import count
from typing import List, Optional

from sqlalchemy.orm import Session

from survey_incentives import crud
from survey_incentives.models.gift_card_pool import GiftCardPoolItem
from survey_incentives.models.participant import Participant
from survey_incentives.models.survey_link import SurveyLink
from survey_incentives.services.enrollment_service import enrollment_service
from survey_incentives.services.ledger_service import ledger_service

_phone_seq = count(1)
_item_seq = count(1)

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def random_phone() -> str:
    return f"+1202555{next(_phone_seq):04d}"


def gift_card_code(n: int) -> str:
    """Deterministic code in XXXX-XXXXXX-XXXX format."""
    return f"CARD-{n:06d}-TEST"


def create_participant(
    db: Session, *, email: Optional[str] = "participant@example.com", name: str = "Test Participant"
) -> Participant:
    return enrollment_service.register(
        db, phone=random_phone(), email=email, name=name, acted_by="test"
    )


def create_links(db: Session, n: int, *, batch_label: Optional[str] = None) -> List[SurveyLink]:
    """Adds `n` AVAILABLE links with strictly increasing upload times."""
    links = []
    for _ in range(n):
        seq = next(_item_seq)
        link = crud.survey_link.add(
            db,
            long_url=f"https://survey.example.com/s/{seq}",
            short_url=f"https://sho.rt/{seq}",
            batch_label=batch_label,
            uploaded_by="test",
        )
        link.uploaded_at = BASE_TIME + timedelta(seconds=seq)
        links.append(link)
    db.commit()
    return links


def create_gift_cards(
    db: Session,
    n: int,
    *,
    card_type: Optional[str] = "AMAZON",
    batch_label: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> List[GiftCardPoolItem]:
    """Adds `n` AVAILABLE cards with strictly increasing upload times."""
    cards = []
    for _ in range(n):
        seq = next(_item_seq)
        card = crud.gift_card_pool.add(
            db,
            card_code=gift_card_code(seq),
            card_type=card_type,
            card_value=25,
            batch_label=batch_label,
            expires_at=expires_at,
            uploaded_by="test",
        )
        card.uploaded_at = BASE_TIME + timedelta(seconds=seq)
        cards.append(card)
    db.commit()
    return cards


def create_completed_participant(db: Session, dispatcher, **kwargs) -> Participant:
    """A participant who received a survey link and finished the survey."""
    participant = create_participant(db, **kwargs)
    create_links(db, 1)
    invitation, _ = ledger_service.assign_link(
        db, participant_id=participant.id, acted_by="test", dispatcher=dispatcher
    )
    ledger_service.mark_survey_completed(db, invitation.id)
    return participant

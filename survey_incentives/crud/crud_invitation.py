# survey_incentives/crud/crud_invitation.py
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from survey_incentives.models import invitation as invitation_status
from survey_incentives.models.invitation import Invitation

from .base import CRUDBase


class CRUDInvitation(CRUDBase[Invitation, Invitation, Invitation]):
    def get_latest_for_participant(
        self, db: Session, *, participant_id: str, refresh: bool = False
    ) -> Optional[Invitation]:
        query = db.query(self.model).filter(self.model.participant_id == participant_id)
        if refresh:
            query = query.populate_existing()
        return query.order_by(self.model.created_at.desc(), self.model.id.desc()).first()

    def get_for_participant(self, db: Session, *, participant_id: str) -> List[Invitation]:
        return db.query(self.model).filter(self.model.participant_id == participant_id).all()

    def get_completed_for_participant(self, db: Session, *, participant_id: str) -> Optional[Invitation]:
        return (
            db.query(self.model)
            .filter(
                self.model.participant_id == participant_id,
                self.model.completed_at.is_not(None),
            )
            .order_by(self.model.completed_at.desc())
            .first()
        )

    def get_latest_by_url(self, db: Session, *, url: str) -> Optional[Invitation]:
        """Most recent invitation that carries this link (long or short form)."""
        return (
            db.query(self.model)
            .filter((self.model.link_url == url) | (self.model.short_link_url == url))
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .first()
        )

    def get_by_message_sid(self, db: Session, *, message_sid: str) -> Optional[Invitation]:
        return db.query(self.model).filter(self.model.message_sid == message_sid).first()

    def get_awaiting_link(self, db: Session, *, limit: int = 500) -> List[Invitation]:
        """Invitations created while the link pool was empty, oldest first."""
        return (
            db.query(self.model)
            .filter(
                self.model.link_item_id.is_(None),
                self.model.link_url.is_(None),
                self.model.participant_id.is_not(None),
            )
            .order_by(self.model.created_at.asc(), self.model.id.asc())
            .limit(limit)
            .all()
        )

    def create_for_participant(self, db: Session, *, participant_id: str) -> Invitation:
        """Stage an invitation with no link yet. Does not commit."""
        db_obj = Invitation(
            participant_id=participant_id,
            message_status=invitation_status.AWAITING_LINK,
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def attach_link(
        self,
        db: Session,
        *,
        id: str,
        link_item_id: str,
        link_url: str,
        short_link_url: Optional[str],
    ) -> bool:
        """
        Give a link to an invitation that has none. Returns whether the row
        changed; False means it was linked by someone else. Does not commit.
        """
        result = db.execute(
            update(self.model)
            .where(
                self.model.id == id,
                self.model.link_item_id.is_(None),
                self.model.link_url.is_(None),
            )
            .values(
                link_item_id=link_item_id,
                link_url=link_url,
                short_link_url=short_link_url,
                message_status=invitation_status.PENDING,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_completed(self, db: Session, *, id: str) -> bool:
        """Set completed_at only if it is not already set. Returns whether the row changed."""
        result = db.execute(
            update(self.model)
            .where(self.model.id == id, self.model.completed_at.is_(None))
            .values(
                completed_at=datetime.now(timezone.utc),
                message_status=invitation_status.COMPLETED,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_uncompleted(self, db: Session, *, id: str) -> bool:
        result = db.execute(
            update(self.model)
            .where(self.model.id == id, self.model.completed_at.is_not(None))
            .values(completed_at=None, message_status=invitation_status.DELIVERED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


invitation = CRUDInvitation(Invitation)

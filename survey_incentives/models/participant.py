# survey_incentives/models/participant.py
import uuid

from sqlalchemy import Column, String, DateTime, func
from sqlalchemy.orm import relationship

from survey_incentives.db.base_class import Base


class Participant(Base):
    __tablename__ = "participants"

    id = Column(String, primary_key=True, default=lambda: f"par_{uuid.uuid4().hex[:12]}")
    phone = Column(String(20), nullable=False, unique=True)  # E.164
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    consented_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Ledger rows outlive the participant (FK is nulled on delete)
    invitations = relationship("Invitation", back_populates="participant")
    gift_cards = relationship("GiftCardAssignment", back_populates="participant")

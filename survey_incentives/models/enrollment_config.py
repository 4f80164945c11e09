# survey_incentives/models/enrollment_config.py
from sqlalchemy import Column, Integer, Boolean, String, DateTime, CheckConstraint, func, true

from survey_incentives.db.base_class import Base

SINGLETON_ID = 1


class EnrollmentConfig(Base):
    """
    Singleton enrollment gate.

    Features:
    - Optional participant ceiling (NULL = unlimited)
    - Global on/off switch
    - Running participant count, kept in step with participant inserts/deletes
    """
    __tablename__ = "survey_enrollment_config"

    id = Column(Integer, primary_key=True, default=SINGLETON_ID)
    max_participants = Column(Integer, nullable=True)
    is_enrollment_active = Column(Boolean, nullable=False, server_default=true())
    current_count = Column(Integer, nullable=False, server_default="0")
    updated_by = Column(String, nullable=False, server_default="SYSTEM")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("current_count >= 0", name="check_current_count_positive"),
        CheckConstraint(
            "max_participants IS NULL OR current_count <= max_participants",
            name="check_count_lte_max",
        ),
    )

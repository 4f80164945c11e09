# survey_incentives/models/__init__.py
# Import all models so SQLAlchemy can resolve relationships and
# Base.metadata knows every table.

from survey_incentives.db.base_class import Base
from survey_incentives.models.participant import Participant
from survey_incentives.models.survey_link import SurveyLink, LinkStatus
from survey_incentives.models.gift_card_pool import GiftCardPoolItem, PoolStatus
from survey_incentives.models.invitation import Invitation
from survey_incentives.models.gift_card import GiftCardAssignment, GiftCardStatus, DeliveryMethod
from survey_incentives.models.distribution_log import GiftCardDistributionLog, DistributionAction
from survey_incentives.models.unsent_audit_record import UnsentAuditRecord
from survey_incentives.models.enrollment_config import EnrollmentConfig

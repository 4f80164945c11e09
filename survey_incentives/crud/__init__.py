# survey_incentives/crud/__init__.py

from .crud_distribution_log import distribution_log
from .crud_enrollment_config import enrollment_config
from .crud_gift_card import gift_card
from .crud_gift_card_pool import gift_card_pool
from .crud_invitation import invitation
from .crud_participant import participant
from .crud_survey_link import survey_link
from .crud_unsent_audit import unsent_audit

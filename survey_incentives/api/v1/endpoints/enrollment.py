# survey_incentives/api/v1/endpoints/enrollment.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from survey_incentives.api import deps
from survey_incentives.schemas.enrollment import EnrollmentConfig, EnrollmentConfigUpdate, EnrollmentStatus
from survey_incentives.schemas.token import TokenPayload
from survey_incentives.services.enrollment_service import UNSET, enrollment_service

router = APIRouter(tags=["Enrollment"])


@router.get("/enrollment/status", response_model=EnrollmentStatus)
def get_enrollment_status(db: Session = Depends(deps.get_db)):
    """
    Public enrollment status, shown before a participant signs up.
    """
    status = enrollment_service.get_status(db)
    db.commit()
    return status


@router.get("/admin/enrollment/config", response_model=EnrollmentConfig)
def get_enrollment_config(
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return enrollment_service.get_status(db)


@router.put("/admin/enrollment/config", response_model=EnrollmentConfig)
def update_enrollment_config(
    config_in: EnrollmentConfigUpdate,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    **[ADMIN]** Change the participant ceiling or switch enrollment on/off.

    Omit `max_participants` to keep the current ceiling, send `null` to make
    enrollment unlimited. A ceiling below the current count is rejected.
    """
    provided = config_in.model_fields_set
    return enrollment_service.update_config(
        db,
        max_participants=config_in.max_participants if "max_participants" in provided else UNSET,
        is_enrollment_active=config_in.is_enrollment_active,
        acted_by=current_user.sub,
    )

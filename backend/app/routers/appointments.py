from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import ensure_clinic_access, get_current_user, get_rollout_gate
from app.models.appointment import AppointmentStatus
from app.models.user import User
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentCreateOut,
    AppointmentData,
    AppointmentFilters,
    AppointmentOut,
)
from app.services.federation.dual_write import (
    create_appointment,
    find_appointments,
    serialize_appointment,
)
from app.services.federation.rollout import RolloutGate

router = APIRouter(prefix="/clinics/{clinic_id}/appointments", tags=["appointments"])


@router.get("", response_model=list[AppointmentOut])
def list_appointments(
    clinic_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gate: RolloutGate = Depends(get_rollout_gate),
    doctor_id: int | None = Query(default=None),
    status_filter: AppointmentStatus | None = Query(default=None, alias="status"),
    from_dt: datetime | None = Query(default=None, alias="from"),
    to_dt: datetime | None = Query(default=None, alias="to"),
):
    ensure_clinic_access(user, clinic_id)
    filters = AppointmentFilters(
        doctor_user_id=doctor_id,
        status=status_filter,
        starts_from=from_dt,
        starts_to=to_dt,
    )
    return find_appointments(db, gate, clinic_id, filters)


@router.post("", response_model=AppointmentCreateOut, status_code=status.HTTP_201_CREATED)
def create_clinic_appointment(
    clinic_id: int,
    payload: AppointmentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gate: RolloutGate = Depends(get_rollout_gate),
):
    ensure_clinic_access(user, clinic_id)
    data = AppointmentData.model_validate(
        payload.model_dump(exclude={"doctor_id", "patient_id"})
    )
    result = create_appointment(
        db,
        gate,
        clinic_id=clinic_id,
        legacy_doctor_id=payload.doctor_id,
        legacy_patient_id=payload.patient_id,
        data=data,
        acting_user_id=user.id,
    )
    return {
        "appointment": serialize_appointment(result.primary, federated=False),
        "enrichment": result.enrichment.as_dict(),
    }

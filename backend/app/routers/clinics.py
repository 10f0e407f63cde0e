from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import ensure_clinic_access, get_current_user, get_rollout_gate
from app.models.user import User
from app.schemas.directory import ClinicDoctorOut, ClinicPatientOut
from app.services.federation.directory import list_clinic_doctors, list_clinic_patients
from app.services.federation.rollout import RolloutGate

router = APIRouter(prefix="/clinics/{clinic_id}", tags=["clinics"])


@router.get("/doctors", response_model=list[ClinicDoctorOut])
def get_clinic_doctors(
    clinic_id: int,
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gate: RolloutGate = Depends(get_rollout_gate),
):
    ensure_clinic_access(user, clinic_id)
    return list_clinic_doctors(db, gate, clinic_id, include_inactive=include_inactive)


@router.get("/patients", response_model=list[ClinicPatientOut])
def get_clinic_patients(
    clinic_id: int,
    q: str | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gate: RolloutGate = Depends(get_rollout_gate),
):
    ensure_clinic_access(user, clinic_id)
    return list_clinic_patients(db, gate, clinic_id, search=q, include_inactive=include_inactive)

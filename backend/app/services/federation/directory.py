from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.models.clinic import Clinic
from app.models.clinic_profile import ClinicDoctor, ClinicPatient, ProfileStatus
from app.models.global_identity import GlobalDoctor
from app.models.patient import Patient, PatientStatus
from app.models.user import Role, User, UserStatus
from app.services.federation.errors import NotFound
from app.services.federation.rollout import (
    FEDERATED_DOCTOR_LOOKUP,
    FEDERATED_PATIENT_LOOKUP,
    RolloutGate,
)


def _require_clinic(session: Session, clinic_id: int) -> None:
    if session.get(Clinic, clinic_id) is None:
        raise NotFound("Clinic", clinic_id)


def _legacy_doctors(session: Session, clinic_id: int, include_inactive: bool) -> list[dict]:
    stmt = select(User).where(User.role == Role.doctor, User.clinic_id == clinic_id)
    if not include_inactive:
        stmt = stmt.where(User.status == UserStatus.active)
    rows = []
    for user in session.scalars(stmt).unique():
        rows.append(
            {
                "user_id": user.id,
                "clinic_id": clinic_id,
                "name": user.name,
                "email": user.email,
                "phone": user.phone,
                "specialization": user.specialization,
                "license_number": user.license_number,
                "experience_years": user.experience_years,
                "is_active": user.status == UserStatus.active,
            }
        )
    return rows


def _federated_doctors(session: Session, clinic_id: int, include_inactive: bool) -> list[dict]:
    stmt = (
        select(ClinicDoctor)
        .join(GlobalDoctor, GlobalDoctor.id == ClinicDoctor.global_doctor_id)
        .where(ClinicDoctor.clinic_id == clinic_id)
    )
    if not include_inactive:
        stmt = stmt.where(ClinicDoctor.status == ProfileStatus.active)
    rows = []
    for profile in session.scalars(stmt).unique():
        user = profile.global_person.user
        rows.append(
            {
                "user_id": user.id if user is not None else None,
                "clinic_id": clinic_id,
                "name": user.name if user is not None else "",
                "email": profile.email or (user.email if user is not None else None),
                "phone": profile.phone,
                "specialization": profile.specialization,
                "license_number": profile.license_number,
                "experience_years": profile.experience_years,
                "is_active": profile.status == ProfileStatus.active,
            }
        )
    return rows


def list_clinic_doctors(
    session: Session,
    gate: RolloutGate,
    clinic_id: int,
    include_inactive: bool = False,
) -> list[dict]:
    _require_clinic(session, clinic_id)
    if gate.is_enabled(FEDERATED_DOCTOR_LOOKUP, clinic_id=clinic_id):
        rows = _federated_doctors(session, clinic_id, include_inactive)
    else:
        rows = _legacy_doctors(session, clinic_id, include_inactive)
    return sorted(rows, key=lambda row: (row["name"].lower(), row["user_id"] or 0))


def _search_filter(model, search: str | None):
    if not search or not search.strip():
        return None
    pattern = f"%{search.strip().lower()}%"
    return or_(
        func.lower(model.name).like(pattern),
        func.lower(func.coalesce(model.email, "")).like(pattern),
        func.coalesce(model.phone, "").like(pattern),
    )


def list_clinic_patients(
    session: Session,
    gate: RolloutGate,
    clinic_id: int,
    search: str | None = None,
    include_inactive: bool = False,
) -> list[dict]:
    _require_clinic(session, clinic_id)
    if gate.is_enabled(FEDERATED_PATIENT_LOOKUP, clinic_id=clinic_id):
        model = ClinicPatient
        stmt = select(ClinicPatient).where(ClinicPatient.clinic_id == clinic_id)
        if not include_inactive:
            stmt = stmt.where(ClinicPatient.status == ProfileStatus.active)
        inactive = ProfileStatus.inactive
    else:
        model = Patient
        stmt = select(Patient).where(Patient.clinic_id == clinic_id)
        if not include_inactive:
            stmt = stmt.where(Patient.status != PatientStatus.inactive)
        inactive = PatientStatus.inactive

    condition = _search_filter(model, search)
    if condition is not None:
        stmt = stmt.where(condition)
    stmt = stmt.order_by(func.lower(model.name).asc(), model.id.asc())
    return [
        {
            "clinic_id": row.clinic_id,
            "name": row.name,
            "phone": row.phone,
            "email": row.email,
            "date_of_birth": row.date_of_birth,
            "gender": row.gender,
            "is_active": row.status != inactive,
        }
        for row in session.scalars(stmt).unique()
    ]

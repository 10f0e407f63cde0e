"""Bridge between legacy records and their federated counterparts.

Both the live dual-write path and the backfill migrator locate clinic
profiles for legacy users/patients through these helpers, so the two paths
converge on the same rows.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.clinic_profile import ClinicDoctor, ClinicPatient
from app.models.patient import Patient, PatientStatus
from app.models.user import User, UserStatus
from app.services.federation.errors import CrossTenantViolation
from app.services.federation.identity import find_global_person, resolve_global_person
from app.services.federation.profiles import (
    ensure_clinic_profile,
    find_clinic_doctor_for_user,
    find_clinic_profile,
)
from app.services.federation.types import (
    DoctorProfileData,
    MatchHints,
    PatientProfileData,
    PersonKind,
)

logger = logging.getLogger(__name__)


def doctor_hints(user: User) -> MatchHints:
    return MatchHints(phone=user.phone, email=user.email)


def patient_hints(patient: Patient) -> MatchHints:
    return MatchHints(
        phone=patient.phone,
        email=patient.email,
        date_of_birth=patient.date_of_birth,
    )


def doctor_profile_data(user: User) -> DoctorProfileData:
    return DoctorProfileData(
        specialization=user.specialization,
        license_number=user.license_number,
        experience_years=user.experience_years,
        phone=user.phone,
        email=user.email,
        status="inactive" if user.status == UserStatus.inactive else "active",
    )


def patient_profile_data(patient: Patient) -> PatientProfileData:
    return PatientProfileData(
        legacy_patient_id=patient.id,
        name=patient.name,
        phone=patient.phone,
        email=patient.email,
        date_of_birth=patient.date_of_birth,
        gender=patient.gender,
        notes=patient.notes,
        status="inactive" if patient.status == PatientStatus.inactive else "active",
    )


def find_clinic_doctor_for_legacy(
    session: Session,
    user: User,
    clinic_id: int,
) -> ClinicDoctor | None:
    return find_clinic_doctor_for_user(session, user.id, clinic_id)


def ensure_clinic_doctor_for_legacy(
    session: Session,
    user: User,
    clinic_id: int,
) -> tuple[ClinicDoctor, bool]:
    """Return the doctor's profile in clinic_id, creating it from the legacy user.

    A profile is only created in the doctor's own legacy clinic; asking for
    any other clinic without an existing profile is a tenant violation.
    """
    existing = find_clinic_doctor_for_legacy(session, user, clinic_id)
    if existing is not None:
        return existing, False
    if user.clinic_id != clinic_id:
        raise CrossTenantViolation(clinic_id, doctor_clinic_id=user.clinic_id)
    person = resolve_global_person(
        session, PersonKind.doctor, login_account_id=user.id, hints=doctor_hints(user)
    ).person
    return ensure_clinic_profile(
        session,
        PersonKind.doctor,
        clinic_id,
        person.id,
        profile_data=doctor_profile_data(user),
        merge=False,
    )


def find_clinic_patient_for_legacy(
    session: Session,
    patient: Patient,
) -> ClinicPatient | None:
    linked = session.scalar(
        select(ClinicPatient)
        .where(
            ClinicPatient.legacy_patient_id == patient.id,
            ClinicPatient.clinic_id == patient.clinic_id,
        )
        .order_by(ClinicPatient.id.asc())
        .limit(1)
    )
    if linked is not None:
        return linked
    found = find_global_person(session, PersonKind.patient, hints=patient_hints(patient))
    if found is None:
        return None
    return find_clinic_profile(session, PersonKind.patient, patient.clinic_id, found.person.id)


def ensure_clinic_patient_for_legacy(
    session: Session,
    patient: Patient,
    global_patient_id: int | None = None,
    merge: bool = True,
) -> tuple[ClinicPatient, bool]:
    existing = find_clinic_patient_for_legacy(session, patient)
    if existing is not None:
        if merge:
            ensure_clinic_profile(
                session,
                PersonKind.patient,
                existing.clinic_id,
                existing.global_patient_id,
                profile_data=patient_profile_data(patient),
                merge=True,
            )
        return existing, False
    # One savepoint for identity and profile: a writer that loses the race on
    # the legacy link leaves no orphan identity behind.
    try:
        with session.begin_nested():
            if global_patient_id is None:
                global_patient_id = resolve_global_person(
                    session, PersonKind.patient, hints=patient_hints(patient)
                ).person.id
            return ensure_clinic_profile(
                session,
                PersonKind.patient,
                patient.clinic_id,
                global_patient_id,
                profile_data=patient_profile_data(patient),
                merge=merge,
            )
    except IntegrityError:
        winner = find_clinic_patient_for_legacy(session, patient)
        if winner is None:
            raise
        logger.info(
            "Legacy patient linked concurrently; using existing profile",
            extra={"patient_id": patient.id, "profile_id": winner.id},
        )
        return winner, False

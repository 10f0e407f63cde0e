from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.clinic import Clinic
from app.models.clinic_profile import ClinicDoctor, ClinicPatient, ProfileStatus
from app.models.global_identity import GlobalDoctor
from app.services.federation.errors import InvalidClinic, NotFound
from app.services.federation.identity import GLOBAL_MODELS, PROFILE_MODELS
from app.services.federation.types import (
    DoctorProfileData,
    PatientProfileData,
    PersonKind,
    ProfileData,
    normalize_email,
    normalize_phone,
)

logger = logging.getLogger(__name__)

ClinicProfile = ClinicDoctor | ClinicPatient

_GLOBAL_FK_NAMES = {
    PersonKind.doctor: "global_doctor_id",
    PersonKind.patient: "global_patient_id",
}
_DATA_MODELS = {
    PersonKind.doctor: DoctorProfileData,
    PersonKind.patient: PatientProfileData,
}


def _clean_text(value):
    if not isinstance(value, str):
        return value
    cleaned = value.strip()
    return cleaned or None


def _coerce_status(value: str | ProfileStatus | None) -> ProfileStatus | None:
    if value is None:
        return None
    if isinstance(value, ProfileStatus):
        return value
    text = str(getattr(value, "value", value)).strip().lower()
    if not text:
        return None
    return ProfileStatus.inactive if text == "inactive" else ProfileStatus.active


def _profile_values(kind: PersonKind, data: ProfileData | None) -> dict[str, object]:
    if data is None:
        data = _DATA_MODELS[kind]()
    values = {field: _clean_text(value) for field, value in data.model_dump().items()}
    values["phone"] = normalize_phone(values.get("phone"))
    values["email"] = normalize_email(values.get("email"))
    values["status"] = _coerce_status(values.get("status"))
    return values


_CREATE_ONLY_FIELDS = frozenset({"legacy_patient_id"})


def _merge_values(profile: ClinicProfile, values: dict[str, object]) -> bool:
    changed = False
    for field, value in values.items():
        # Empty input never clears a stored value.
        if value is None:
            continue
        if field in _CREATE_ONLY_FIELDS and getattr(profile, field) is not None:
            continue
        if getattr(profile, field) != value:
            setattr(profile, field, value)
            changed = True
    return changed


def find_clinic_profile(
    session: Session,
    kind: PersonKind,
    clinic_id: int,
    global_person_id: int,
) -> ClinicProfile | None:
    model = PROFILE_MODELS[kind]
    return session.scalar(
        select(model).where(
            model.clinic_id == clinic_id,
            getattr(model, _GLOBAL_FK_NAMES[kind]) == global_person_id,
        )
    )


def ensure_clinic_profile(
    session: Session,
    kind: PersonKind,
    clinic_id: int,
    global_person_id: int,
    profile_data: ProfileData | None = None,
    merge: bool = True,
) -> tuple[ClinicProfile, bool]:
    """Find or create the profile for (clinic, global person); returns (profile, created)."""
    if clinic_id is None or session.get(Clinic, clinic_id) is None:
        raise InvalidClinic(clinic_id)
    if session.get(GLOBAL_MODELS[kind], global_person_id) is None:
        raise NotFound(GLOBAL_MODELS[kind].__name__, global_person_id)

    values = _profile_values(kind, profile_data)
    existing = find_clinic_profile(session, kind, clinic_id, global_person_id)
    if existing is not None:
        if merge:
            _merge_values(existing, values)
        return existing, False

    create_values = {field: value for field, value in values.items() if value is not None}
    if kind == PersonKind.patient:
        create_values.setdefault("name", "")
    profile = PROFILE_MODELS[kind](
        clinic_id=clinic_id,
        **{_GLOBAL_FK_NAMES[kind]: global_person_id},
        **create_values,
    )
    try:
        with session.begin_nested():
            session.add(profile)
    except IntegrityError:
        existing = find_clinic_profile(session, kind, clinic_id, global_person_id)
        if existing is None:
            raise
        logger.info(
            "Clinic profile already created concurrently; using existing record",
            extra={
                "kind": kind.value,
                "clinic_id": clinic_id,
                "global_id": global_person_id,
                "profile_id": existing.id,
            },
        )
        if merge:
            _merge_values(existing, values)
        return existing, False
    logger.info(
        "Clinic profile created",
        extra={
            "kind": kind.value,
            "clinic_id": clinic_id,
            "global_id": global_person_id,
            "profile_id": profile.id,
        },
    )
    return profile, True


def find_or_create_clinic_profile(
    session: Session,
    kind: PersonKind,
    clinic_id: int,
    global_person_id: int,
    profile_data: ProfileData | None = None,
    merge: bool = True,
) -> ClinicProfile:
    profile, _ = ensure_clinic_profile(
        session, kind, clinic_id, global_person_id, profile_data=profile_data, merge=merge
    )
    return profile


def find_clinic_doctor_for_user(
    session: Session,
    user_id: int,
    clinic_id: int,
) -> ClinicDoctor | None:
    return session.scalar(
        select(ClinicDoctor)
        .join(GlobalDoctor, GlobalDoctor.id == ClinicDoctor.global_doctor_id)
        .where(GlobalDoctor.user_id == user_id, ClinicDoctor.clinic_id == clinic_id)
    )


def list_clinics_for_doctor(session: Session, global_doctor_id: int) -> list[ClinicDoctor]:
    stmt = (
        select(ClinicDoctor)
        .where(
            ClinicDoctor.global_doctor_id == global_doctor_id,
            ClinicDoctor.status == ProfileStatus.active,
        )
        .order_by(ClinicDoctor.created_at.desc(), ClinicDoctor.id.desc())
    )
    return list(session.scalars(stmt))


def deactivate_clinic_profile(
    session: Session,
    kind: PersonKind,
    clinic_id: int,
    profile_id: int,
) -> ClinicProfile:
    model = PROFILE_MODELS[kind]
    profile = session.scalar(
        select(model).where(model.id == profile_id, model.clinic_id == clinic_id)
    )
    if profile is None:
        raise NotFound(model.__name__, profile_id)
    profile.status = ProfileStatus.inactive
    return profile

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.appointment import Appointment
from app.models.clinic import Clinic
from app.models.clinic_profile import ClinicDoctor, ClinicPatient
from app.models.patient import Patient
from app.models.user import Role, User
from app.schemas.appointment import AppointmentData, AppointmentFilters
from app.services.federation.errors import (
    CrossTenantViolation,
    NotFound,
    classify_exception,
    reason_for,
)
from app.services.federation.legacy import (
    ensure_clinic_doctor_for_legacy,
    ensure_clinic_patient_for_legacy,
    find_clinic_doctor_for_legacy,
    find_clinic_patient_for_legacy,
)
from app.services.federation.rollout import (
    FEDERATED_APPOINTMENT_READ,
    FEDERATED_APPOINTMENT_WRITE,
    RolloutGate,
)

logger = logging.getLogger(__name__)

ENRICHMENT_LINKED = "linked"
ENRICHMENT_DISABLED = "disabled"
ENRICHMENT_FAILED = "failed"


@dataclass(frozen=True)
class FederatedLinks:
    clinic_doctor_id: int
    clinic_patient_id: int


@dataclass(frozen=True)
class EnrichmentError:
    reason: str
    message: str
    retryable: bool = False

    @classmethod
    def from_exception(cls, exc: Exception) -> "EnrichmentError":
        return cls(
            reason=reason_for(exc),
            message=str(exc),
            retryable=bool(getattr(exc, "retryable", False)),
        )


@dataclass(frozen=True)
class EnrichmentResult:
    status: str
    links: FederatedLinks | None = None
    error: EnrichmentError | None = None

    @property
    def ok(self) -> bool:
        return self.status == ENRICHMENT_LINKED

    def as_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "clinic_doctor_id": self.links.clinic_doctor_id if self.links else None,
            "clinic_patient_id": self.links.clinic_patient_id if self.links else None,
            "reason": self.error.reason if self.error else None,
        }


@dataclass(frozen=True)
class AppointmentWriteResult:
    primary: Appointment
    enrichment: EnrichmentResult


def _load_legacy_refs(
    session: Session,
    clinic_id: int,
    legacy_doctor_id: int,
    legacy_patient_id: int,
    acting_user_id: int | None,
) -> tuple[User, Patient]:
    if session.get(Clinic, clinic_id) is None:
        raise NotFound("Clinic", clinic_id)
    doctor = session.get(User, legacy_doctor_id)
    if doctor is None or doctor.role != Role.doctor:
        raise NotFound("Doctor", legacy_doctor_id)
    patient = session.get(Patient, legacy_patient_id)
    if patient is None:
        raise NotFound("Patient", legacy_patient_id)
    if acting_user_id is not None and session.get(User, acting_user_id) is None:
        raise NotFound("User", acting_user_id)
    return doctor, patient


def resolve_federated_links(
    session: Session,
    appointment: Appointment,
    create: bool = True,
) -> FederatedLinks:
    """Resolve the clinic doctor/patient profiles an appointment should point at.

    Both profiles must belong to the appointment's clinic. With create=False
    nothing is written and NotFound names the side that could not be resolved.
    """
    doctor = appointment.doctor
    patient = appointment.patient
    if patient.clinic_id != appointment.clinic_id:
        raise CrossTenantViolation(appointment.clinic_id, patient_clinic_id=patient.clinic_id)

    if create:
        clinic_doctor, _ = ensure_clinic_doctor_for_legacy(session, doctor, appointment.clinic_id)
        clinic_patient, _ = ensure_clinic_patient_for_legacy(session, patient)
    else:
        clinic_doctor = find_clinic_doctor_for_legacy(session, doctor, appointment.clinic_id)
        if clinic_doctor is None and doctor.clinic_id != appointment.clinic_id:
            raise CrossTenantViolation(
                appointment.clinic_id, doctor_clinic_id=doctor.clinic_id
            )
        if clinic_doctor is None:
            raise NotFound("ClinicDoctor", doctor.id)
        clinic_patient = find_clinic_patient_for_legacy(session, patient)
        if clinic_patient is None:
            raise NotFound("ClinicPatient", patient.id)

    if (
        clinic_doctor.clinic_id != appointment.clinic_id
        or clinic_patient.clinic_id != appointment.clinic_id
    ):
        raise CrossTenantViolation(
            appointment.clinic_id,
            clinic_doctor_clinic_id=clinic_doctor.clinic_id,
            clinic_patient_clinic_id=clinic_patient.clinic_id,
        )
    return FederatedLinks(clinic_doctor_id=clinic_doctor.id, clinic_patient_id=clinic_patient.id)


def enrich_appointment(session: Session, appointment: Appointment) -> EnrichmentResult:
    """Best-effort: populate federated links on an already committed appointment."""
    appointment_id = appointment.id
    clinic_id = appointment.clinic_id
    try:
        links = resolve_federated_links(session, appointment, create=True)
        appointment.clinic_doctor_id = links.clinic_doctor_id
        appointment.clinic_patient_id = links.clinic_patient_id
        session.commit()
    except Exception as exc:
        session.rollback()
        error = classify_exception(exc)
        level = logging.ERROR if isinstance(error, CrossTenantViolation) else logging.WARNING
        logger.log(
            level,
            "Federated enrichment failed; legacy appointment kept",
            extra={
                "appointment_id": appointment_id,
                "clinic_id": clinic_id,
                "reason": reason_for(error),
            },
            exc_info=level == logging.WARNING,
        )
        return EnrichmentResult(
            status=ENRICHMENT_FAILED, error=EnrichmentError.from_exception(error)
        )
    logger.info(
        "Federated enrichment linked",
        extra={
            "appointment_id": appointment_id,
            "clinic_doctor_id": links.clinic_doctor_id,
            "clinic_patient_id": links.clinic_patient_id,
        },
    )
    return EnrichmentResult(status=ENRICHMENT_LINKED, links=links)


def create_appointment(
    session: Session,
    gate: RolloutGate,
    clinic_id: int,
    legacy_doctor_id: int,
    legacy_patient_id: int,
    data: AppointmentData,
    acting_user_id: int | None = None,
) -> AppointmentWriteResult:
    """Write the legacy appointment, then enrich it with federated links.

    The legacy write is authoritative: once committed it is never undone by
    an enrichment failure.
    """
    doctor, patient = _load_legacy_refs(
        session, clinic_id, legacy_doctor_id, legacy_patient_id, acting_user_id
    )
    appointment = Appointment(
        clinic_id=clinic_id,
        doctor_id=doctor.id,
        patient_id=patient.id,
        starts_at=data.starts_at,
        duration_minutes=data.duration_minutes,
        status=data.status,
        reason=data.reason,
        notes=data.notes,
        amount=data.amount,
        created_by_user_id=acting_user_id,
    )
    try:
        session.add(appointment)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(appointment)
    appointment_id = appointment.id
    logger.info(
        "Appointment created",
        extra={"appointment_id": appointment_id, "clinic_id": clinic_id},
    )

    if not gate.is_enabled(FEDERATED_APPOINTMENT_WRITE, clinic_id=clinic_id):
        return AppointmentWriteResult(appointment, EnrichmentResult(status=ENRICHMENT_DISABLED))

    enrichment = enrich_appointment(session, appointment)
    try:
        session.refresh(appointment)
    except Exception:
        # The legacy row is committed; a failed reload is not the caller's error.
        session.rollback()
        logger.warning(
            "Could not reload appointment after enrichment; returning committed row",
            extra={"appointment_id": appointment_id, "clinic_id": clinic_id},
            exc_info=True,
        )
    return AppointmentWriteResult(appointment, enrichment)


def _doctor_view(appointment: Appointment, federated: bool) -> dict[str, object]:
    user = appointment.doctor
    view = {
        "user_id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "specialization": user.specialization,
    }
    profile: ClinicDoctor | None = appointment.clinic_doctor if federated else None
    if profile is not None:
        person = profile.global_person
        view.update(
            {
                "user_id": person.user_id if person.user_id is not None else user.id,
                "name": person.user.name if person.user is not None else user.name,
                "email": profile.email or user.email,
                "phone": profile.phone or user.phone,
                "specialization": profile.specialization or user.specialization,
            }
        )
    return view


def _patient_view(appointment: Appointment, federated: bool) -> dict[str, object]:
    profile: ClinicPatient | None = appointment.clinic_patient if federated else None
    source = profile if profile is not None else appointment.patient
    return {
        "name": source.name,
        "phone": source.phone,
        "email": source.email,
        "date_of_birth": source.date_of_birth,
    }


def _links_in_clinic(appointment: Appointment) -> bool:
    if not appointment.has_federated_links:
        return False
    doctor = appointment.clinic_doctor
    patient = appointment.clinic_patient
    if doctor is None or patient is None:
        return False
    if doctor.clinic_id != appointment.clinic_id or patient.clinic_id != appointment.clinic_id:
        logger.error(
            "Appointment links point outside its clinic; serving legacy relations",
            extra={
                "appointment_id": appointment.id,
                "clinic_id": appointment.clinic_id,
                "clinic_doctor_clinic_id": doctor.clinic_id,
                "clinic_patient_clinic_id": patient.clinic_id,
            },
        )
        return False
    return True


def serialize_appointment(appointment: Appointment, federated: bool = False) -> dict[str, object]:
    use_links = federated and _links_in_clinic(appointment)
    return {
        "id": appointment.id,
        "clinic_id": appointment.clinic_id,
        "starts_at": appointment.starts_at,
        "duration_minutes": appointment.duration_minutes,
        "status": appointment.status,
        "reason": appointment.reason,
        "notes": appointment.notes,
        "amount": appointment.amount,
        "doctor": _doctor_view(appointment, use_links),
        "patient": _patient_view(appointment, use_links),
        "created_at": appointment.created_at,
        "updated_at": appointment.updated_at,
    }


def find_appointments(
    session: Session,
    gate: RolloutGate,
    clinic_id: int,
    filters: AppointmentFilters | None = None,
) -> list[dict[str, object]]:
    """Appointments of one clinic, serialized the same way in both shapes."""
    if session.get(Clinic, clinic_id) is None:
        raise NotFound("Clinic", clinic_id)
    filters = filters or AppointmentFilters()
    stmt = select(Appointment).where(Appointment.clinic_id == clinic_id)
    if filters.doctor_user_id is not None:
        stmt = stmt.where(Appointment.doctor_id == filters.doctor_user_id)
    if filters.status is not None:
        stmt = stmt.where(Appointment.status == filters.status)
    if filters.starts_from is not None:
        stmt = stmt.where(Appointment.starts_at >= filters.starts_from)
    if filters.starts_to is not None:
        stmt = stmt.where(Appointment.starts_at <= filters.starts_to)
    stmt = stmt.order_by(Appointment.starts_at.asc(), Appointment.id.asc())

    federated = gate.is_enabled(FEDERATED_APPOINTMENT_READ, clinic_id=clinic_id)
    return [
        serialize_appointment(appointment, federated=federated)
        for appointment in session.scalars(stmt).unique()
    ]

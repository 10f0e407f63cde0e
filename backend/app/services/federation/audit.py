from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.models.appointment import Appointment
from app.models.clinic_profile import ClinicDoctor, ClinicPatient
from app.models.global_identity import GlobalDoctor, GlobalPatient
from app.models.patient import Patient
from app.models.user import Role, User
from app.services.federation.legacy import (
    find_clinic_doctor_for_legacy,
    find_clinic_patient_for_legacy,
)
from app.services.federation.types import normalize_date, normalize_email, normalize_phone

DOCTOR_FIELDS = ("specialization", "license_number")
PATIENT_FIELDS = ("name", "phone", "email", "date_of_birth")

_NORMALIZERS = {
    "phone": normalize_phone,
    "email": normalize_email,
    "date_of_birth": normalize_date,
}


@dataclass
class AuditReport:
    counts: dict[str, int] = field(default_factory=dict)
    doctors_without_profile: list[int] = field(default_factory=list)
    patients_without_profile: list[int] = field(default_factory=list)
    appointments_unlinked: list[int] = field(default_factory=list)
    cross_tenant_links: list[int] = field(default_factory=list)
    doctor_link_mismatches: list[int] = field(default_factory=list)
    patient_link_mismatches: list[int] = field(default_factory=list)
    profile_clinic_mismatches: list[int] = field(default_factory=list)
    field_divergences: list[dict[str, object]] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return any(
            (
                self.doctors_without_profile,
                self.patients_without_profile,
                self.appointments_unlinked,
                self.cross_tenant_links,
                self.doctor_link_mismatches,
                self.patient_link_mismatches,
                self.profile_clinic_mismatches,
                self.field_divergences,
            )
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "counts": dict(sorted(self.counts.items())),
            "doctors_without_profile": self.doctors_without_profile,
            "patients_without_profile": self.patients_without_profile,
            "appointments_unlinked": self.appointments_unlinked,
            "cross_tenant_links": self.cross_tenant_links,
            "doctor_link_mismatches": self.doctor_link_mismatches,
            "patient_link_mismatches": self.patient_link_mismatches,
            "profile_clinic_mismatches": self.profile_clinic_mismatches,
            "field_divergences": self.field_divergences,
            "has_issues": self.has_issues,
        }


def _comparable(field_name: str, value):
    normalizer = _NORMALIZERS.get(field_name)
    if normalizer is not None:
        return normalizer(value)
    if isinstance(value, str):
        return value.strip() or None
    return value


def _diff_fields(
    kind: str,
    legacy_id: int,
    legacy_record,
    profile,
    fields: Iterable[str],
) -> list[dict[str, object]]:
    diffs = []
    for field_name in fields:
        legacy_value = _comparable(field_name, getattr(legacy_record, field_name))
        federated_value = _comparable(field_name, getattr(profile, field_name))
        if legacy_value != federated_value:
            diffs.append(
                {
                    "kind": kind,
                    "legacy_id": legacy_id,
                    "profile_id": profile.id,
                    "field": field_name,
                    "legacy": None if legacy_value is None else str(legacy_value),
                    "federated": None if federated_value is None else str(federated_value),
                }
            )
    return diffs


def _count(session: Session, stmt) -> int:
    return int(session.scalar(stmt) or 0)


def _collect_counts(session: Session, clinic_id: int | None) -> dict[str, int]:
    def scoped(stmt, column):
        return stmt.where(column == clinic_id) if clinic_id is not None else stmt

    counts = {
        "legacy_doctors": _count(
            session,
            scoped(select(func.count(User.id)).where(User.role == Role.doctor), User.clinic_id),
        ),
        "clinic_doctors": _count(
            session, scoped(select(func.count(ClinicDoctor.id)), ClinicDoctor.clinic_id)
        ),
        "legacy_patients": _count(
            session, scoped(select(func.count(Patient.id)), Patient.clinic_id)
        ),
        "clinic_patients": _count(
            session, scoped(select(func.count(ClinicPatient.id)), ClinicPatient.clinic_id)
        ),
        "appointments": _count(
            session, scoped(select(func.count(Appointment.id)), Appointment.clinic_id)
        ),
        "linked_appointments": _count(
            session,
            scoped(
                select(func.count(Appointment.id)).where(
                    Appointment.clinic_doctor_id.is_not(None),
                    Appointment.clinic_patient_id.is_not(None),
                ),
                Appointment.clinic_id,
            ),
        ),
    }
    # Global identities are not clinic scoped.
    counts["global_doctors"] = _count(session, select(func.count(GlobalDoctor.id)))
    counts["global_patients"] = _count(session, select(func.count(GlobalPatient.id)))
    return counts


def _profile_clinic_mismatches(session: Session, clinic_id: int | None) -> list[int]:
    stmt = (
        select(ClinicPatient.id)
        .join(Patient, Patient.id == ClinicPatient.legacy_patient_id)
        .where(ClinicPatient.clinic_id != Patient.clinic_id)
    )
    if clinic_id is not None:
        stmt = stmt.where(
            or_(ClinicPatient.clinic_id == clinic_id, Patient.clinic_id == clinic_id)
        )
    return list(session.scalars(stmt.order_by(ClinicPatient.id)))


def audit(
    session: Session,
    clinic_id: int | None = None,
    sample_fields: Iterable[str] | None = None,
) -> AuditReport:
    """Compare the legacy and federated shapes without writing anything."""
    requested = set(sample_fields) if sample_fields is not None else None
    doctor_fields = [f for f in DOCTOR_FIELDS if requested is None or f in requested]
    patient_fields = [f for f in PATIENT_FIELDS if requested is None or f in requested]

    report = AuditReport(counts=_collect_counts(session, clinic_id))

    doctor_stmt = select(User).where(User.role == Role.doctor, User.clinic_id.is_not(None))
    if clinic_id is not None:
        doctor_stmt = doctor_stmt.where(User.clinic_id == clinic_id)
    for user in session.scalars(doctor_stmt.order_by(User.id)).unique():
        profile = find_clinic_doctor_for_legacy(session, user, user.clinic_id)
        if profile is None:
            report.doctors_without_profile.append(user.id)
            continue
        report.field_divergences.extend(
            _diff_fields("doctor", user.id, user, profile, doctor_fields)
        )

    patient_stmt = select(Patient)
    if clinic_id is not None:
        patient_stmt = patient_stmt.where(Patient.clinic_id == clinic_id)
    for patient in session.scalars(patient_stmt.order_by(Patient.id)).unique():
        profile = find_clinic_patient_for_legacy(session, patient)
        if profile is None:
            report.patients_without_profile.append(patient.id)
            continue
        # Merged records share a profile; only the source record is compared.
        if profile.legacy_patient_id not in (None, patient.id):
            continue
        report.field_divergences.extend(
            _diff_fields("patient", patient.id, patient, profile, patient_fields)
        )

    appointment_stmt = select(Appointment)
    if clinic_id is not None:
        appointment_stmt = appointment_stmt.where(Appointment.clinic_id == clinic_id)
    for appointment in session.scalars(appointment_stmt.order_by(Appointment.id)).unique():
        if not appointment.has_federated_links:
            report.appointments_unlinked.append(appointment.id)
            continue
        clinic_doctor = appointment.clinic_doctor
        clinic_patient = appointment.clinic_patient
        if (
            clinic_doctor.clinic_id != appointment.clinic_id
            or clinic_patient.clinic_id != appointment.clinic_id
        ):
            report.cross_tenant_links.append(appointment.id)
            continue
        if clinic_doctor.global_person.user_id != appointment.doctor_id:
            report.doctor_link_mismatches.append(appointment.id)
        expected_patient = find_clinic_patient_for_legacy(session, appointment.patient)
        if expected_patient is None or expected_patient.id != clinic_patient.id:
            report.patient_link_mismatches.append(appointment.id)

    report.profile_clinic_mismatches = _profile_clinic_mismatches(session, clinic_id)
    return report

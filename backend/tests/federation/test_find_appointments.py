import logging
from datetime import datetime

import pytest

from app.models.appointment import AppointmentStatus
from app.schemas.appointment import AppointmentData, AppointmentFilters
from app.services.federation.dual_write import create_appointment, find_appointments
from app.services.federation.errors import NotFound
from app.services.federation.rollout import (
    FEDERATED_APPOINTMENT_READ,
    FEDERATED_APPOINTMENT_WRITE,
)


def _book(session, gate, clinic, doctor, patient, starts_at, **kwargs):
    return create_appointment(
        session,
        gate,
        clinic.id,
        doctor.id,
        patient.id,
        AppointmentData(starts_at=starts_at, **kwargs),
    ).primary


def _strip_timestamps(rows):
    return [{k: v for k, v in row.items() if k not in {"created_at", "updated_at"}} for row in rows]


def test_legacy_and_federated_reads_return_same_shape(session, factory, gate_factory):
    clinic = factory.clinic()
    doctor = factory.doctor(clinic, phone="5550001", specialization="Ortho")
    patient = factory.patient(clinic, name="Ann", phone="5550100", email="ann@example.com")
    writer = gate_factory(FEDERATED_APPOINTMENT_WRITE)
    _book(session, writer, clinic, doctor, patient, datetime(2026, 3, 2, 9))

    legacy_rows = find_appointments(session, gate_factory(), clinic.id)
    federated_rows = find_appointments(session, gate_factory(FEDERATED_APPOINTMENT_READ), clinic.id)

    assert _strip_timestamps(legacy_rows) == _strip_timestamps(federated_rows)
    assert federated_rows[0]["doctor"]["user_id"] == doctor.id
    assert federated_rows[0]["patient"]["name"] == "Ann"


def test_federated_read_serves_profile_values(session, factory, gate_factory):
    clinic = factory.clinic()
    doctor = factory.doctor(clinic)
    patient = factory.patient(clinic, name="Ann", phone="5550100")
    appointment = _book(
        session,
        gate_factory(FEDERATED_APPOINTMENT_WRITE),
        clinic,
        doctor,
        patient,
        datetime(2026, 3, 2, 9),
    )
    appointment.clinic_patient.name = "Ann Lee"
    session.commit()

    rows = find_appointments(session, gate_factory(FEDERATED_APPOINTMENT_READ), clinic.id)

    assert rows[0]["patient"]["name"] == "Ann Lee"


def test_unlinked_rows_fall_back_to_legacy_relations(session, factory, gate_factory):
    clinic = factory.clinic()
    doctor = factory.doctor(clinic)
    patient = factory.patient(clinic, name="Legacy Only")
    factory.appointment(clinic, doctor, patient)

    rows = find_appointments(session, gate_factory(FEDERATED_APPOINTMENT_READ), clinic.id)

    assert len(rows) == 1
    assert rows[0]["patient"]["name"] == "Legacy Only"
    assert rows[0]["doctor"]["user_id"] == doctor.id


def test_links_outside_clinic_are_not_served(session, factory, gate_factory, caplog):
    clinic_a = factory.clinic()
    clinic_b = factory.clinic()
    doctor = factory.doctor(clinic_a)
    patient = factory.patient(clinic_a, name="Right Clinic")
    foreign_patient = factory.clinic_patient(clinic_b, factory.global_patient(), name="Wrong Clinic")
    foreign_doctor = factory.clinic_doctor(clinic_b, factory.global_doctor(doctor))
    factory.appointment(
        clinic_a,
        doctor,
        patient,
        clinic_doctor_id=foreign_doctor.id,
        clinic_patient_id=foreign_patient.id,
    )

    with caplog.at_level(logging.ERROR):
        rows = find_appointments(session, gate_factory(FEDERATED_APPOINTMENT_READ), clinic_a.id)

    assert rows[0]["patient"]["name"] == "Right Clinic"
    assert "outside its clinic" in caplog.text


def test_reads_only_return_requested_clinic(session, factory, legacy_gate):
    clinic_a = factory.clinic()
    clinic_b = factory.clinic()
    doctor_a = factory.doctor(clinic_a)
    doctor_b = factory.doctor(clinic_b)
    factory.appointment(clinic_a, doctor_a, factory.patient(clinic_a))
    factory.appointment(clinic_b, doctor_b, factory.patient(clinic_b))

    rows = find_appointments(session, legacy_gate, clinic_a.id)

    assert [row["clinic_id"] for row in rows] == [clinic_a.id]


def test_filters_apply_in_both_shapes(session, factory, gate_factory):
    clinic = factory.clinic()
    doctor = factory.doctor(clinic)
    other_doctor = factory.doctor(clinic)
    patient = factory.patient(clinic)
    factory.appointment(clinic, doctor, patient, starts_at=datetime(2026, 3, 2, 9))
    factory.appointment(
        clinic, doctor, patient, starts_at=datetime(2026, 3, 9, 9), status=AppointmentStatus.confirmed
    )
    factory.appointment(clinic, other_doctor, patient, starts_at=datetime(2026, 3, 4, 9))
    filters = AppointmentFilters(
        doctor_user_id=doctor.id,
        starts_from=datetime(2026, 3, 1),
        starts_to=datetime(2026, 3, 5),
    )

    for gate in (gate_factory(), gate_factory(FEDERATED_APPOINTMENT_READ)):
        rows = find_appointments(session, gate, clinic.id, filters)
        assert [row["starts_at"] for row in rows] == [datetime(2026, 3, 2, 9)]

    confirmed = find_appointments(
        session, gate_factory(), clinic.id, AppointmentFilters(status=AppointmentStatus.confirmed)
    )
    assert len(confirmed) == 1


def test_unknown_clinic_raises(session, legacy_gate):
    with pytest.raises(NotFound):
        find_appointments(session, legacy_gate, 12345)

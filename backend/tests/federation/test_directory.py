import pytest

from app.models.clinic_profile import ProfileStatus
from app.models.user import UserStatus
from app.services.federation.directory import list_clinic_doctors, list_clinic_patients
from app.services.federation.errors import NotFound
from app.services.federation.rollout import FEDERATED_DOCTOR_LOOKUP, FEDERATED_PATIENT_LOOKUP


def test_legacy_doctor_lookup_lists_clinic_users(session, factory, legacy_gate):
    clinic = factory.clinic()
    other = factory.clinic()
    factory.doctor(clinic, name="Dr Zed")
    factory.doctor(clinic, name="Dr Amy")
    factory.doctor(clinic, name="Dr Gone", status=UserStatus.inactive)
    factory.doctor(other, name="Dr Elsewhere")

    rows = list_clinic_doctors(session, legacy_gate, clinic.id)

    assert [row["name"] for row in rows] == ["Dr Amy", "Dr Zed"]
    assert all(row["clinic_id"] == clinic.id for row in rows)


def test_federated_doctor_lookup_includes_doctors_of_other_home_clinics(
    session, factory, gate_factory
):
    clinic_a = factory.clinic()
    clinic_b = factory.clinic()
    home = factory.doctor(clinic_b, name="Dr Home")
    visiting = factory.doctor(clinic_a, name="Dr K")
    factory.clinic_doctor(clinic_b, factory.global_doctor(home), specialization="Ortho")
    factory.clinic_doctor(clinic_b, factory.global_doctor(visiting), specialization="Surgery")

    rows = list_clinic_doctors(session, gate_factory(FEDERATED_DOCTOR_LOOKUP), clinic_b.id)

    assert [(row["name"], row["specialization"]) for row in rows] == [
        ("Dr Home", "Ortho"),
        ("Dr K", "Surgery"),
    ]


def test_federated_doctor_lookup_hides_inactive_profiles(session, factory, gate_factory):
    clinic = factory.clinic()
    doctor = factory.doctor(clinic, name="Dr Off")
    factory.clinic_doctor(clinic, factory.global_doctor(doctor), status=ProfileStatus.inactive)
    gate = gate_factory(FEDERATED_DOCTOR_LOOKUP)

    assert list_clinic_doctors(session, gate, clinic.id) == []
    assert len(list_clinic_doctors(session, gate, clinic.id, include_inactive=True)) == 1


def test_patient_lookup_search_in_both_shapes(session, factory, gate_factory):
    clinic = factory.clinic()
    factory.patient(clinic, name="Ann Lee", phone="5550100")
    factory.patient(clinic, name="Bob Ray", email="bob@example.com")
    factory.clinic_patient(clinic, factory.global_patient(), name="Ann Lee", phone="5550100")
    factory.clinic_patient(clinic, factory.global_patient(), name="Bob Ray", email="bob@example.com")

    legacy_rows = list_clinic_patients(session, gate_factory(), clinic.id, search="ann")
    federated_rows = list_clinic_patients(
        session, gate_factory(FEDERATED_PATIENT_LOOKUP), clinic.id, search="ann"
    )

    assert legacy_rows == federated_rows
    assert [row["name"] for row in legacy_rows] == ["Ann Lee"]
    by_email = list_clinic_patients(
        session, gate_factory(FEDERATED_PATIENT_LOOKUP), clinic.id, search="BOB@"
    )
    assert [row["name"] for row in by_email] == ["Bob Ray"]


def test_patient_lookup_is_scoped_to_clinic(session, factory, gate_factory):
    clinic_a = factory.clinic()
    clinic_b = factory.clinic()
    person = factory.global_patient()
    factory.clinic_patient(clinic_a, person, name="Ann at A")
    factory.clinic_patient(clinic_b, person, name="Ann at B")

    rows = list_clinic_patients(session, gate_factory(FEDERATED_PATIENT_LOOKUP), clinic_b.id)

    assert [row["name"] for row in rows] == ["Ann at B"]


def test_directory_requires_existing_clinic(session, legacy_gate):
    with pytest.raises(NotFound):
        list_clinic_doctors(session, legacy_gate, 77)
    with pytest.raises(NotFound):
        list_clinic_patients(session, legacy_gate, 77)

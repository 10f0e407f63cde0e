from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from app.db.session import build_engine
from app.models import Base
from app.models.clinic import Clinic
from app.models.clinic_profile import ClinicDoctor, ClinicPatient, ProfileStatus
from app.models.global_identity import GlobalDoctor, GlobalPatient
from app.models.user import Role, User
from app.services.federation import legacy, profiles
from app.services.federation.errors import InvalidClinic, NotFound
from app.services.federation.identity import resolve_or_create_global_person
from app.services.federation.profiles import (
    deactivate_clinic_profile,
    ensure_clinic_profile,
    find_clinic_doctor_for_user,
    find_or_create_clinic_profile,
    list_clinics_for_doctor,
)
from app.services.federation.types import DoctorProfileData, PatientProfileData, PersonKind


def test_creates_patient_profile_with_normalized_contact(session, factory):
    clinic = factory.clinic()
    person = factory.global_patient()

    profile, created = ensure_clinic_profile(
        session,
        PersonKind.patient,
        clinic.id,
        person.id,
        PatientProfileData(
            name="  Ann Lee ",
            phone="+1 (555) 010-0100",
            email="Ann@Example.com",
            date_of_birth=date(1990, 5, 17),
        ),
    )
    session.commit()

    assert created
    assert profile.name == "Ann Lee"
    assert profile.phone == "+15550100100"
    assert profile.email == "ann@example.com"
    assert profile.status == ProfileStatus.active


def test_second_call_returns_same_profile_and_merges(session, factory):
    clinic = factory.clinic()
    person = factory.global_patient()
    first = find_or_create_clinic_profile(
        session, PersonKind.patient, clinic.id, person.id, PatientProfileData(name="Ann", phone="555")
    )
    session.commit()

    second, created = ensure_clinic_profile(
        session,
        PersonKind.patient,
        clinic.id,
        person.id,
        PatientProfileData(email="ann@example.com"),
    )
    session.commit()

    assert not created
    assert second.id == first.id
    assert second.phone == "555"
    assert second.email == "ann@example.com"
    assert session.scalar(select(func.count(ClinicPatient.id))) == 1


def test_merge_false_leaves_existing_profile_untouched(session, factory):
    clinic = factory.clinic()
    person = factory.global_doctor(factory.doctor(clinic))
    factory.clinic_doctor(clinic, person, specialization="Ortho")

    profile, created = ensure_clinic_profile(
        session,
        PersonKind.doctor,
        clinic.id,
        person.id,
        DoctorProfileData(specialization="Surgery"),
        merge=False,
    )

    assert not created
    assert profile.specialization == "Ortho"


def test_unknown_clinic_raises_invalid_clinic(session, factory):
    person = factory.global_patient()
    with pytest.raises(InvalidClinic):
        ensure_clinic_profile(session, PersonKind.patient, 404, person.id)


def test_unknown_global_person_raises_not_found(session, factory):
    clinic = factory.clinic()
    with pytest.raises(NotFound):
        ensure_clinic_profile(session, PersonKind.doctor, clinic.id, 404)


def test_insert_race_returns_existing_profile(session, factory, monkeypatch):
    clinic = factory.clinic()
    person = factory.global_patient()
    winner = factory.clinic_patient(clinic, person, name="Ann")

    real_find = profiles.find_clinic_profile
    calls = {"n": 0}

    def stale_find(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_find(*args, **kwargs)

    monkeypatch.setattr(profiles, "find_clinic_profile", stale_find)

    profile, created = ensure_clinic_profile(
        session, PersonKind.patient, clinic.id, person.id, PatientProfileData(name="Ann")
    )
    session.commit()

    assert not created
    assert profile.id == winner.id
    assert session.scalar(select(func.count(ClinicPatient.id))) == 1


def test_lost_race_on_legacy_link_converges_on_existing_profile(session, factory, monkeypatch):
    clinic = factory.clinic()
    patient = factory.patient(clinic, name="No Contact")
    winner = factory.clinic_patient(
        clinic, factory.global_patient(), name="No Contact", legacy_patient_id=patient.id
    )
    real_find = legacy.find_clinic_patient_for_legacy
    calls = {"n": 0}

    # The first lookup runs before the other writer has committed.
    def stale_then_real(db, record):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_find(db, record)

    monkeypatch.setattr(legacy, "find_clinic_patient_for_legacy", stale_then_real)

    profile, created = legacy.ensure_clinic_patient_for_legacy(session, patient)
    session.commit()

    assert not created
    assert profile.id == winner.id
    assert session.scalar(select(func.count(ClinicPatient.id))) == 1
    assert session.scalar(select(func.count(GlobalPatient.id))) == 1


def test_doctor_profiles_across_clinics(session, factory):
    clinic_a = factory.clinic()
    clinic_b = factory.clinic()
    user = factory.doctor(clinic_a)
    person = resolve_or_create_global_person(session, PersonKind.doctor, login_account_id=user.id)
    find_or_create_clinic_profile(session, PersonKind.doctor, clinic_a.id, person.id)
    find_or_create_clinic_profile(session, PersonKind.doctor, clinic_b.id, person.id)
    session.commit()

    assert find_clinic_doctor_for_user(session, user.id, clinic_b.id) is not None
    assert {p.clinic_id for p in list_clinics_for_doctor(session, person.id)} == {
        clinic_a.id,
        clinic_b.id,
    }


def test_deactivated_profile_drops_out_of_clinic_list(session, factory):
    clinic_a = factory.clinic()
    clinic_b = factory.clinic()
    person = factory.global_doctor(factory.doctor(clinic_a))
    factory.clinic_doctor(clinic_a, person)
    profile_b = factory.clinic_doctor(clinic_b, person)

    deactivate_clinic_profile(session, PersonKind.doctor, clinic_b.id, profile_b.id)
    session.commit()

    assert [p.clinic_id for p in list_clinics_for_doctor(session, person.id)] == [clinic_a.id]


def test_deactivate_requires_profile_in_clinic(session, factory):
    clinic_a = factory.clinic()
    clinic_b = factory.clinic()
    person = factory.global_doctor(factory.doctor(clinic_a))
    profile = factory.clinic_doctor(clinic_a, person)

    with pytest.raises(NotFound):
        deactivate_clinic_profile(session, PersonKind.doctor, clinic_b.id, profile.id)


def _ensure_in_new_session(session_factory, clinic_id: int, user_id: int) -> tuple[int, int]:
    db = session_factory()
    try:
        person = resolve_or_create_global_person(db, PersonKind.doctor, login_account_id=user_id)
        profile, _ = ensure_clinic_profile(db, PersonKind.doctor, clinic_id, person.id)
        db.commit()
        return person.id, profile.id
    finally:
        db.close()


def test_concurrent_find_or_create_yields_single_rows(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'concurrency.db'}")
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    setup = session_factory()
    try:
        clinic = Clinic(name="Clinic", slug="clinic")
        setup.add(clinic)
        setup.flush()
        user = User(email="k@example.com", name="Dr K", role=Role.doctor, clinic_id=clinic.id)
        setup.add(user)
        setup.commit()
        clinic_id, user_id = clinic.id, user.id
    finally:
        setup.close()

    try:
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(
                pool.map(
                    lambda _: _ensure_in_new_session(session_factory, clinic_id, user_id),
                    range(16),
                )
            )

        assert len(set(results)) == 1
        check = session_factory()
        try:
            assert check.scalar(select(func.count(GlobalDoctor.id))) == 1
            assert check.scalar(select(func.count(ClinicDoctor.id))) == 1
        finally:
            check.close()
    finally:
        engine.dispose()

from sqlalchemy import func, select

from app.models.clinic_profile import ClinicDoctor, ClinicPatient
from app.models.global_identity import GlobalPatient
from app.services.federation.audit import audit
from app.services.federation.backfill import RetryPolicy, run_backfill

NO_SLEEP = RetryPolicy(max_retries=0, base_sleep=0.0, max_sleep=0.0)


def _seed(factory):
    clinic = factory.clinic()
    doctor = factory.doctor(clinic, specialization="Ortho")
    patient = factory.patient(clinic, name="Ann", phone="555")
    appointment = factory.appointment(clinic, doctor, patient)
    return clinic, doctor, patient, appointment


def test_unmigrated_data_is_reported(session, factory):
    _, doctor, patient, appointment = _seed(factory)

    report = audit(session)

    assert report.has_issues
    assert report.doctors_without_profile == [doctor.id]
    assert report.patients_without_profile == [patient.id]
    assert report.appointments_unlinked == [appointment.id]
    assert report.counts["legacy_patients"] == 1
    assert report.counts["clinic_patients"] == 0


def test_clean_after_backfill(session, factory):
    _seed(factory)
    run_backfill(session, retry=NO_SLEEP)

    report = audit(session)

    assert not report.has_issues
    assert report.counts["linked_appointments"] == 1
    assert report.as_dict()["has_issues"] is False


def test_field_divergence_is_reported(session, factory):
    _, doctor, patient, _ = _seed(factory)
    run_backfill(session, retry=NO_SLEEP)
    profile = session.scalar(select(ClinicPatient))
    profile.name = "Ann Changed"
    session.commit()

    report = audit(session)

    assert report.field_divergences == [
        {
            "kind": "patient",
            "legacy_id": patient.id,
            "profile_id": profile.id,
            "field": "name",
            "legacy": "Ann",
            "federated": "Ann Changed",
        }
    ]
    assert audit(session, sample_fields=["phone"]).field_divergences == []


def test_cross_tenant_links_are_reported(session, factory):
    clinic, doctor, _, appointment = _seed(factory)
    other = factory.clinic()
    run_backfill(session, retry=NO_SLEEP)
    stray = factory.clinic_patient(other, session.scalar(select(GlobalPatient)), name="Ann")
    appointment.clinic_patient_id = stray.id
    session.commit()

    report = audit(session)

    assert report.cross_tenant_links == [appointment.id]


def test_doctor_link_mismatch_is_reported(session, factory):
    clinic, _, _, appointment = _seed(factory)
    other_doctor = factory.doctor(clinic, specialization="Ortho")
    run_backfill(session, retry=NO_SLEEP)
    other_profile = session.scalar(
        select(ClinicDoctor).where(ClinicDoctor.global_person.has(user_id=other_doctor.id))
    )
    appointment.clinic_doctor_id = other_profile.id
    session.commit()

    report = audit(session)

    assert report.doctor_link_mismatches == [appointment.id]


def test_patient_link_mismatch_is_reported(session, factory):
    clinic, _, _, appointment = _seed(factory)
    other_patient = factory.patient(clinic, name="Bea", phone="777")
    run_backfill(session, retry=NO_SLEEP)
    other_profile = session.scalar(
        select(ClinicPatient).where(ClinicPatient.legacy_patient_id == other_patient.id)
    )
    appointment.clinic_patient_id = other_profile.id
    session.commit()

    report = audit(session)

    assert report.patient_link_mismatches == [appointment.id]
    assert report.cross_tenant_links == []
    assert report.has_issues
    assert report.as_dict()["patient_link_mismatches"] == [appointment.id]


def test_profile_in_other_clinic_than_legacy_record_is_reported(session, factory):
    _seed(factory)
    other = factory.clinic()
    run_backfill(session, retry=NO_SLEEP)
    profile = session.scalar(select(ClinicPatient))
    profile.clinic_id = other.id
    session.commit()

    report = audit(session)

    assert report.profile_clinic_mismatches == [profile.id]
    assert report.has_issues


def test_audit_is_read_only(session, factory):
    _seed(factory)
    before = session.scalar(select(func.count(GlobalPatient.id)))

    audit(session)

    assert session.scalar(select(func.count(GlobalPatient.id))) == before == 0

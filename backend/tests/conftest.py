import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import itertools
from datetime import date, datetime

import pytest

from app.db.session import SessionLocal, engine
from app.models import Base
from app.models.appointment import Appointment, AppointmentStatus
from app.models.clinic import Clinic
from app.models.clinic_profile import ClinicDoctor, ClinicPatient
from app.models.global_identity import GlobalDoctor, GlobalPatient
from app.models.patient import Patient
from app.models.user import Role, User
from app.services.federation.rollout import RolloutConfig, RolloutGate


class Factory:
    """Builds committed legacy and federated rows for tests."""

    def __init__(self, session):
        self.session = session
        self._seq = itertools.count(1)

    def _save(self, row):
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def clinic(self, name: str | None = None, city: str | None = None) -> Clinic:
        n = next(self._seq)
        name = name or f"Clinic {n}"
        return self._save(Clinic(name=name, slug=f"clinic-{n}", city=city))

    def user(self, role: Role = Role.receptionist, clinic: Clinic | None = None, **kwargs) -> User:
        n = next(self._seq)
        kwargs.setdefault("email", f"user{n}@example.com")
        kwargs.setdefault("name", f"User {n}")
        return self._save(
            User(role=role, clinic_id=clinic.id if clinic else None, **kwargs)
        )

    def doctor(self, clinic: Clinic | None, **kwargs) -> User:
        kwargs.setdefault("specialization", "General practice")
        return self.user(role=Role.doctor, clinic=clinic, **kwargs)

    def admin(self) -> User:
        return self.user(role=Role.admin)

    def patient(self, clinic: Clinic, name: str = "Patient", **kwargs) -> Patient:
        return self._save(Patient(clinic_id=clinic.id, name=name, **kwargs))

    def appointment(
        self,
        clinic: Clinic,
        doctor: User,
        patient: Patient,
        starts_at: datetime | None = None,
        **kwargs,
    ) -> Appointment:
        return self._save(
            Appointment(
                clinic_id=clinic.id,
                doctor_id=doctor.id,
                patient_id=patient.id,
                starts_at=starts_at or datetime(2026, 3, 2, 9, 0),
                status=kwargs.pop("status", AppointmentStatus.pending),
                **kwargs,
            )
        )

    def global_doctor(self, user: User | None = None) -> GlobalDoctor:
        return self._save(GlobalDoctor(user_id=user.id if user else None))

    def global_patient(self, user: User | None = None) -> GlobalPatient:
        return self._save(GlobalPatient(user_id=user.id if user else None))

    def clinic_doctor(self, clinic: Clinic, global_doctor: GlobalDoctor, **kwargs) -> ClinicDoctor:
        return self._save(
            ClinicDoctor(clinic_id=clinic.id, global_doctor_id=global_doctor.id, **kwargs)
        )

    def clinic_patient(
        self,
        clinic: Clinic,
        global_patient: GlobalPatient,
        name: str = "Patient",
        **kwargs,
    ) -> ClinicPatient:
        return self._save(
            ClinicPatient(
                clinic_id=clinic.id,
                global_patient_id=global_patient.id,
                name=name,
                **kwargs,
            )
        )


def make_gate(*capabilities: str, allowlist=()) -> RolloutGate:
    return RolloutGate(
        RolloutConfig(enabled=frozenset(capabilities), clinic_allowlist=frozenset(allowlist))
    )


@pytest.fixture()
def session():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def factory(session):
    return Factory(session)


@pytest.fixture()
def gate_factory():
    return make_gate


@pytest.fixture()
def legacy_gate():
    return make_gate()


@pytest.fixture()
def dob():
    return date(1990, 5, 17)

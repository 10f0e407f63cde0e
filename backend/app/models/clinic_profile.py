from __future__ import annotations

import enum
from datetime import date

from sqlalchemy import Date, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class ProfileStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class ClinicDoctor(Base, TimestampMixin):
    __tablename__ = "clinic_doctors"
    __table_args__ = (
        UniqueConstraint(
            "clinic_id",
            "global_doctor_id",
            name="uq_clinic_doctors_clinic_global",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False, index=True)
    global_doctor_id: Mapped[int] = mapped_column(
        ForeignKey("global_doctors.id"), nullable=False, index=True
    )
    specialization: Mapped[str | None] = mapped_column(String(200), nullable=True)
    license_number: Mapped[str | None] = mapped_column(String(120), nullable=True)
    experience_years: Mapped[int | None] = mapped_column(Integer, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ProfileStatus] = mapped_column(
        Enum(ProfileStatus, name="clinic_profile_status"),
        default=ProfileStatus.active,
        nullable=False,
    )

    clinic = relationship("Clinic", lazy="joined")
    global_person = relationship("GlobalDoctor", back_populates="clinic_profiles", lazy="joined")

    @property
    def global_person_id(self) -> int:
        return self.global_doctor_id

    # Contact details live on the clinic profile; dob is not tracked for doctors.
    @property
    def date_of_birth(self) -> date | None:
        return None


class ClinicPatient(Base, TimestampMixin):
    __tablename__ = "clinic_patients"
    __table_args__ = (
        UniqueConstraint(
            "clinic_id",
            "global_patient_id",
            name="uq_clinic_patients_clinic_global",
        ),
        Index(
            "uq_clinic_patients_legacy_patient_id",
            "legacy_patient_id",
            unique=True,
            postgresql_where=text("legacy_patient_id IS NOT NULL"),
            sqlite_where=text("legacy_patient_id IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False, index=True)
    global_patient_id: Mapped[int] = mapped_column(
        ForeignKey("global_patients.id"), nullable=False, index=True
    )
    # Legacy patient record this profile was created from; set once, at most one profile per record.
    legacy_patient_id: Mapped[int | None] = mapped_column(ForeignKey("patients.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ProfileStatus] = mapped_column(
        Enum(ProfileStatus, name="clinic_profile_status"),
        default=ProfileStatus.active,
        nullable=False,
    )

    clinic = relationship("Clinic", lazy="joined")
    global_person = relationship("GlobalPatient", back_populates="clinic_profiles", lazy="joined")

    @property
    def global_person_id(self) -> int:
        return self.global_patient_id

from __future__ import annotations

import enum
import re
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, field_validator


class PersonKind(str, enum.Enum):
    doctor = "doctor"
    patient = "patient"


_PHONE_NOISE = re.compile(r"[\s\-().]")


def normalize_phone(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = _PHONE_NOISE.sub("", value)
    return cleaned or None


def normalize_email(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip().lower()
    return cleaned or None


def normalize_date(value: date | datetime | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


class MatchHints(BaseModel):
    model_config = ConfigDict(frozen=True)

    phone: str | None = None
    email: str | None = None
    date_of_birth: date | None = None

    @field_validator("phone", mode="before")
    @classmethod
    def _phone(cls, value):
        return normalize_phone(value)

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, value):
        return normalize_email(value)

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _dob(cls, value):
        return normalize_date(value)

    @property
    def is_empty(self) -> bool:
        return not (self.phone or self.email)


class DoctorProfileData(BaseModel):
    specialization: str | None = None
    license_number: str | None = None
    experience_years: int | None = None
    phone: str | None = None
    email: str | None = None
    notes: str | None = None
    status: str | None = None


class PatientProfileData(BaseModel):
    legacy_patient_id: int | None = None
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    notes: str | None = None
    status: str | None = None

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _dob(cls, value):
        return normalize_date(value)


ProfileData = DoctorProfileData | PatientProfileData

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.appointment import AppointmentStatus


class AppointmentData(BaseModel):
    starts_at: datetime
    duration_minutes: int = Field(default=30, ge=5, le=480)
    status: AppointmentStatus = AppointmentStatus.pending
    reason: Optional[str] = None
    notes: Optional[str] = None
    amount: Optional[Decimal] = None


class AppointmentCreate(AppointmentData):
    doctor_id: int
    patient_id: int


class AppointmentDoctorOut(BaseModel):
    user_id: int
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None


class AppointmentPatientOut(BaseModel):
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    date_of_birth: Optional[date] = None


class AppointmentOut(BaseModel):
    id: int
    clinic_id: int
    starts_at: datetime
    duration_minutes: int
    status: AppointmentStatus
    reason: Optional[str] = None
    notes: Optional[str] = None
    amount: Optional[Decimal] = None
    doctor: AppointmentDoctorOut
    patient: AppointmentPatientOut
    created_at: datetime
    updated_at: datetime


class EnrichmentOut(BaseModel):
    status: Literal["linked", "disabled", "failed"]
    clinic_doctor_id: Optional[int] = None
    clinic_patient_id: Optional[int] = None
    reason: Optional[str] = None


class AppointmentCreateOut(BaseModel):
    appointment: AppointmentOut
    enrichment: EnrichmentOut


class AppointmentFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    doctor_user_id: Optional[int] = None
    status: Optional[AppointmentStatus] = None
    starts_from: Optional[datetime] = None
    starts_to: Optional[datetime] = None

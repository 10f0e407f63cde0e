from datetime import date
from typing import Optional

from pydantic import BaseModel


class ClinicDoctorOut(BaseModel):
    user_id: Optional[int] = None
    clinic_id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None
    license_number: Optional[str] = None
    experience_years: Optional[int] = None
    is_active: bool


class ClinicPatientOut(BaseModel):
    clinic_id: int
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    is_active: bool

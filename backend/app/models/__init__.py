from app.models.base import Base
from app.models.clinic import Clinic
from app.models.user import Role, User, UserStatus
from app.models.patient import Patient, PatientStatus
from app.models.global_identity import GlobalDoctor, GlobalPatient
from app.models.clinic_profile import ClinicDoctor, ClinicPatient, ProfileStatus
from app.models.appointment import Appointment, AppointmentStatus
from app.models.migration_ledger import MigrationLedgerEntry

__all__ = [
    "Base",
    "Clinic",
    "Role",
    "User",
    "UserStatus",
    "Patient",
    "PatientStatus",
    "GlobalDoctor",
    "GlobalPatient",
    "ClinicDoctor",
    "ClinicPatient",
    "ProfileStatus",
    "Appointment",
    "AppointmentStatus",
    "MigrationLedgerEntry",
]

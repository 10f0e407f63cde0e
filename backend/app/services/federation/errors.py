from __future__ import annotations

from sqlalchemy.exc import DBAPIError, OperationalError


class FederationError(Exception):
    reason = "federation_error"
    retryable = False


class NotFound(FederationError):
    reason = "not_found"

    def __init__(self, entity: str, entity_id: object):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvalidClinic(FederationError):
    reason = "invalid_clinic"

    def __init__(self, clinic_id: object, message: str | None = None):
        super().__init__(message or f"Clinic not found: {clinic_id}")
        self.clinic_id = clinic_id


class CrossTenantViolation(FederationError):
    reason = "cross_tenant"

    def __init__(self, appointment_clinic_id: int | None, **clinics: int | None):
        self.appointment_clinic_id = appointment_clinic_id
        self.clinics = clinics
        detail = ", ".join(f"{key}={value}" for key, value in sorted(clinics.items()))
        super().__init__(
            f"Records span clinics (appointment_clinic_id={appointment_clinic_id}, {detail})"
        )


class TransientStoreError(FederationError):
    reason = "transient_store_error"
    retryable = True


def classify_exception(exc: Exception) -> FederationError | Exception:
    """Map store failures to TransientStoreError; everything else passes through."""
    if isinstance(exc, FederationError):
        return exc
    if isinstance(exc, OperationalError):
        return TransientStoreError(str(exc.orig) if exc.orig is not None else str(exc))
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransientStoreError(str(exc))
    return exc


def reason_for(exc: Exception) -> str:
    if isinstance(exc, FederationError):
        return exc.reason
    return "unexpected_error"

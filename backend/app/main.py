import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.settings import settings, validate_settings
from app.db.session import engine
from app.models import Base
from app.routers.appointments import router as appointments_router
from app.routers.clinics import router as clinics_router
from app.routers.federation import router as federation_router
from app.services.federation.errors import (
    CrossTenantViolation,
    FederationError,
    InvalidClinic,
    NotFound,
)
from app.services.federation.rollout import RolloutConfig, RolloutGate

app = FastAPI(title="Clinic Federation API", version="0.1.0")
logger = logging.getLogger("clinic_federation.startup")

_ERROR_STATUS = {
    NotFound: 404,
    InvalidClinic: 400,
    CrossTenantViolation: 409,
}


@app.exception_handler(FederationError)
async def federation_error_handler(request: Request, exc: FederationError):
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        503 if exc.retryable else 500,
    )
    if status_code >= 500:
        logger.error(
            "Federation error",
            extra={"reason": exc.reason, "request_id": request.headers.get("x-request-id")},
        )
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "reason": exc.reason})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    logging.basicConfig(level=settings.log_level.upper())
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)
    gate = RolloutGate(RolloutConfig.from_settings(settings))
    logger.info("Federation rollout flags: %s", gate.describe())


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(appointments_router)
app.include_router(clinics_router)
app.include_router(federation_router)

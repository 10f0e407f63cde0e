"""Batch migration of legacy records into the federated shape.

Stages run in dependency order (doctors, patients, appointments). Every
record is committed on its own and written to the migration ledger, so a run
can be interrupted and simply re-run.
"""
from __future__ import annotations

import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.appointment import Appointment
from app.models.patient import Patient
from app.models.user import Role, User
from app.services.federation.dual_write import resolve_federated_links
from app.services.federation.errors import (
    CrossTenantViolation,
    NotFound,
    classify_exception,
    reason_for,
)
from app.services.federation.ledger import (
    OUTCOME_ERRORED,
    OUTCOME_MIGRATED,
    OUTCOME_SKIPPED,
    REASON_ALREADY_LINKED,
    REASON_ALREADY_MIGRATED,
    REASON_MISSING_CLINIC,
    REASON_UNRESOLVED_DOCTOR,
    REASON_UNRESOLVED_PATIENT,
    STAGE_APPOINTMENTS,
    STAGE_DOCTORS,
    STAGE_PATIENTS,
    STAGES,
    LedgerRecord,
    get_ledger_entry,
    upsert_ledger_entry,
)
from app.services.federation.legacy import (
    ensure_clinic_doctor_for_legacy,
    ensure_clinic_patient_for_legacy,
    find_clinic_doctor_for_legacy,
    find_clinic_patient_for_legacy,
)
from app.services.federation.types import normalize_email, normalize_phone

logger = logging.getLogger(__name__)

REASON_MERGED = "merged_into_existing_profile"
REASON_CROSS_TENANT = CrossTenantViolation.reason


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_sleep: float = 0.5
    max_sleep: float = 8.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.federation_retry_max,
            base_sleep=settings.federation_retry_base_sleep,
            max_sleep=settings.federation_retry_max_sleep,
        )

    def delay(self, attempt: int) -> float:
        return min(self.base_sleep * (2**attempt), self.max_sleep)


@dataclass(frozen=True)
class RecordOutcome:
    outcome: str
    reason: str | None = None
    target_id: int | None = None
    global_id: int | None = None
    message: str | None = None


@dataclass
class StageStats:
    migrated: int = 0
    skipped: int = 0
    errored: int = 0
    reasons: Counter = field(default_factory=Counter)

    def record(self, outcome: RecordOutcome) -> None:
        if outcome.outcome == OUTCOME_MIGRATED:
            self.migrated += 1
        elif outcome.outcome == OUTCOME_SKIPPED:
            self.skipped += 1
        else:
            self.errored += 1
        if outcome.reason:
            self.reasons[outcome.reason] += 1

    @property
    def processed(self) -> int:
        return self.migrated + self.skipped + self.errored

    def as_dict(self) -> dict[str, object]:
        return {
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errored": self.errored,
            "reasons": dict(sorted(self.reasons.items())),
        }


@dataclass
class BackfillSummary:
    stages: dict[str, StageStats] = field(default_factory=dict)

    @property
    def errored(self) -> int:
        return sum(stats.errored for stats in self.stages.values())

    def as_dict(self) -> dict[str, object]:
        return {stage: stats.as_dict() for stage, stats in self.stages.items()}


@dataclass
class _StageRun:
    session: Session
    stage: str
    retry: RetryPolicy
    progress_every: int | None = None
    sleep: Callable[[float], None] = time.sleep
    stats: StageStats = field(default_factory=StageStats)
    last_legacy_id: int | None = None

    def run_record(
        self,
        legacy_id: int,
        clinic_id: int | None,
        migrate: Callable[[], RecordOutcome],
    ) -> RecordOutcome:
        attempt = 0
        while True:
            try:
                outcome = migrate()
                self._write_ledger(legacy_id, clinic_id, outcome)
                self.session.commit()
                break
            except Exception as exc:
                self.session.rollback()
                error = classify_exception(exc)
                if getattr(error, "retryable", False) and attempt < self.retry.max_retries:
                    sleep_for = self.retry.delay(attempt)
                    attempt += 1
                    logger.warning(
                        "Transient store error; retrying record",
                        extra={
                            "stage": self.stage,
                            "legacy_id": legacy_id,
                            "attempt": attempt,
                            "sleep_seconds": sleep_for,
                        },
                    )
                    self.sleep(sleep_for)
                    continue
                logger.exception(
                    "Backfill record failed",
                    extra={"stage": self.stage, "legacy_id": legacy_id, "clinic_id": clinic_id},
                )
                outcome = RecordOutcome(
                    OUTCOME_ERRORED, reason=reason_for(error), message=str(exc)[:1000]
                )
                self._record_error(legacy_id, clinic_id, outcome)
                break
        self.stats.record(outcome)
        self.last_legacy_id = legacy_id
        self._maybe_emit_checkpoint()
        return outcome

    def _write_ledger(self, legacy_id: int, clinic_id: int | None, outcome: RecordOutcome) -> None:
        details = {"global_id": outcome.global_id} if outcome.global_id is not None else None
        upsert_ledger_entry(
            self.session,
            LedgerRecord(
                stage=self.stage,
                legacy_id=legacy_id,
                outcome=outcome.outcome,
                clinic_id=clinic_id,
                reason=outcome.reason,
                target_id=outcome.target_id,
                message=outcome.message,
                details_json=details,
            ),
        )

    def _record_error(self, legacy_id: int, clinic_id: int | None, outcome: RecordOutcome) -> None:
        try:
            self._write_ledger(legacy_id, clinic_id, outcome)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(
                "Could not write ledger entry for failed record",
                extra={"stage": self.stage, "legacy_id": legacy_id},
            )

    def _maybe_emit_checkpoint(self) -> None:
        if not self.progress_every or self.progress_every <= 0:
            return
        if self.stats.processed % self.progress_every != 0:
            return
        payload = {
            "event": "federation_backfill_checkpoint",
            "stage": self.stage,
            "processed": self.stats.processed,
            "last_legacy_id": self.last_legacy_id,
            "timestamp": round(time.time(), 3),
        }
        print(json.dumps(payload, sort_keys=True))


def _load(session: Session, model, legacy_id: int):
    row = session.get(model, legacy_id)
    if row is None:
        raise NotFound(model.__name__, legacy_id)
    return row


def _migrate_doctor(session: Session, user: User) -> RecordOutcome:
    if user.clinic_id is None:
        return RecordOutcome(OUTCOME_SKIPPED, reason=REASON_MISSING_CLINIC)
    existing = find_clinic_doctor_for_legacy(session, user, user.clinic_id)
    if existing is not None:
        return RecordOutcome(
            OUTCOME_SKIPPED,
            reason=REASON_ALREADY_MIGRATED,
            target_id=existing.id,
            global_id=existing.global_doctor_id,
        )
    profile, created = ensure_clinic_doctor_for_legacy(session, user, user.clinic_id)
    return RecordOutcome(
        OUTCOME_MIGRATED if created else OUTCOME_SKIPPED,
        reason=None if created else REASON_ALREADY_MIGRATED,
        target_id=profile.id,
        global_id=profile.global_doctor_id,
    )


def migrate_doctors(
    session: Session,
    clinic_id: int | None = None,
    retry: RetryPolicy | None = None,
    progress_every: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> StageStats:
    run = _StageRun(session, STAGE_DOCTORS, retry or RetryPolicy(), progress_every, sleep)
    stmt = select(User.id, User.clinic_id).where(User.role == Role.doctor)
    if clinic_id is not None:
        stmt = stmt.where(User.clinic_id == clinic_id)
    rows = session.execute(stmt.order_by(User.created_at.asc(), User.id.asc())).all()
    for user_id, user_clinic_id in rows:
        run.run_record(
            user_id,
            user_clinic_id,
            lambda: _migrate_doctor(session, _load(session, User, user_id)),
        )
    return run.stats


def group_key(patient_id: int, phone: str | None, email: str | None) -> str:
    phone = normalize_phone(phone)
    if phone:
        return f"phone:{phone}"
    email = normalize_email(email)
    if email:
        return f"email:{email}"
    return f"id:{patient_id}"


def group_patients(rows: Iterable[tuple[int, str | None, str | None]]) -> list[list[int]]:
    """Group legacy patient ids that describe the same person, keeping input order."""
    groups: dict[str, list[int]] = {}
    for patient_id, phone, email in rows:
        groups.setdefault(group_key(patient_id, phone, email), []).append(patient_id)
    return list(groups.values())


def _merged_outcome(session: Session, patient: Patient, profile) -> RecordOutcome:
    # A record merged on an earlier run is already migrated.
    entry = get_ledger_entry(session, STAGE_PATIENTS, patient.id)
    already = entry is not None and entry.outcome == OUTCOME_MIGRATED
    return RecordOutcome(
        OUTCOME_SKIPPED if already else OUTCOME_MIGRATED,
        reason=REASON_ALREADY_MIGRATED if already else REASON_MERGED,
        target_id=profile.id,
        global_id=profile.global_patient_id,
    )


def _migrate_patient(
    session: Session,
    patient: Patient,
    group_global_id: int | None,
) -> RecordOutcome:
    existing = find_clinic_patient_for_legacy(session, patient)
    if existing is not None:
        if existing.legacy_patient_id == patient.id:
            return RecordOutcome(
                OUTCOME_SKIPPED,
                reason=REASON_ALREADY_MIGRATED,
                target_id=existing.id,
                global_id=existing.global_patient_id,
            )
        return _merged_outcome(session, patient, existing)
    profile, created = ensure_clinic_patient_for_legacy(
        session, patient, global_patient_id=group_global_id, merge=False
    )
    if not created:
        return _merged_outcome(session, patient, profile)
    return RecordOutcome(
        OUTCOME_MIGRATED,
        target_id=profile.id,
        global_id=profile.global_patient_id,
    )


def migrate_patients(
    session: Session,
    clinic_id: int | None = None,
    retry: RetryPolicy | None = None,
    progress_every: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> StageStats:
    run = _StageRun(session, STAGE_PATIENTS, retry or RetryPolicy(), progress_every, sleep)
    stmt = select(Patient.id, Patient.phone, Patient.email, Patient.clinic_id)
    if clinic_id is not None:
        stmt = stmt.where(Patient.clinic_id == clinic_id)
    rows = session.execute(stmt.order_by(Patient.created_at.asc(), Patient.id.asc())).all()
    clinic_by_patient = {row.id: row.clinic_id for row in rows}
    for group in group_patients((row.id, row.phone, row.email) for row in rows):
        group_global_id: int | None = None
        for patient_id in group:
            outcome = run.run_record(
                patient_id,
                clinic_by_patient[patient_id],
                lambda: _migrate_patient(
                    session, _load(session, Patient, patient_id), group_global_id
                ),
            )
            if group_global_id is None and outcome.global_id is not None:
                group_global_id = outcome.global_id
    return run.stats


def _migrate_appointment(session: Session, appointment: Appointment) -> RecordOutcome:
    if appointment.has_federated_links:
        return RecordOutcome(
            OUTCOME_SKIPPED, reason=REASON_ALREADY_LINKED, target_id=appointment.id
        )
    try:
        links = resolve_federated_links(session, appointment, create=False)
    except CrossTenantViolation as exc:
        logger.error(
            "Appointment spans clinics; left unlinked",
            extra={"appointment_id": appointment.id, "clinic_id": appointment.clinic_id},
        )
        return RecordOutcome(OUTCOME_SKIPPED, reason=REASON_CROSS_TENANT, message=str(exc))
    except NotFound as exc:
        reason = (
            REASON_UNRESOLVED_DOCTOR if exc.entity == "ClinicDoctor" else REASON_UNRESOLVED_PATIENT
        )
        return RecordOutcome(OUTCOME_SKIPPED, reason=reason, message=str(exc))
    appointment.clinic_doctor_id = links.clinic_doctor_id
    appointment.clinic_patient_id = links.clinic_patient_id
    return RecordOutcome(OUTCOME_MIGRATED, target_id=appointment.id)


def migrate_appointments(
    session: Session,
    clinic_id: int | None = None,
    retry: RetryPolicy | None = None,
    progress_every: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> StageStats:
    run = _StageRun(session, STAGE_APPOINTMENTS, retry or RetryPolicy(), progress_every, sleep)
    stmt = select(Appointment.id, Appointment.clinic_id)
    if clinic_id is not None:
        stmt = stmt.where(Appointment.clinic_id == clinic_id)
    rows = session.execute(stmt.order_by(Appointment.id.asc())).all()
    for appointment_id, appointment_clinic_id in rows:
        run.run_record(
            appointment_id,
            appointment_clinic_id,
            lambda: _migrate_appointment(session, _load(session, Appointment, appointment_id)),
        )
    return run.stats


_STAGE_RUNNERS = {
    STAGE_DOCTORS: migrate_doctors,
    STAGE_PATIENTS: migrate_patients,
    STAGE_APPOINTMENTS: migrate_appointments,
}


def run_backfill(
    session: Session,
    stages: Iterable[str] = STAGES,
    clinic_id: int | None = None,
    retry: RetryPolicy | None = None,
    progress_every: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BackfillSummary:
    requested = set(stages)
    unknown = requested - set(STAGES)
    if unknown:
        raise ValueError(f"Unknown backfill stages: {', '.join(sorted(unknown))}")
    summary = BackfillSummary()
    for stage in STAGES:
        if stage not in requested:
            continue
        logger.info("Backfill stage started", extra={"stage": stage, "clinic_id": clinic_id})
        stats = _STAGE_RUNNERS[stage](
            session,
            clinic_id=clinic_id,
            retry=retry,
            progress_every=progress_every,
            sleep=sleep,
        )
        summary.stages[stage] = stats
        logger.info("Backfill stage finished", extra={"stage": stage, **stats.as_dict()})
    return summary

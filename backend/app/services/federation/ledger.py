from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.migration_ledger import MigrationLedgerEntry

STAGE_DOCTORS = "doctors"
STAGE_PATIENTS = "patients"
STAGE_APPOINTMENTS = "appointments"
STAGES = (STAGE_DOCTORS, STAGE_PATIENTS, STAGE_APPOINTMENTS)

OUTCOME_MIGRATED = "migrated"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERRORED = "errored"

REASON_ALREADY_MIGRATED = "already_migrated"
REASON_ALREADY_LINKED = "already_linked"
REASON_UNRESOLVED_DOCTOR = "unresolved_doctor"
REASON_UNRESOLVED_PATIENT = "unresolved_patient"
REASON_MISSING_CLINIC = "missing_clinic"


@dataclass(frozen=True)
class LedgerRecord:
    stage: str
    legacy_id: int | str
    outcome: str
    clinic_id: int | None = None
    reason: str | None = None
    target_id: int | None = None
    message: str | None = None
    details_json: dict | None = None


def get_ledger_entry(session: Session, stage: str, legacy_id: int | str) -> MigrationLedgerEntry | None:
    return session.scalar(
        select(MigrationLedgerEntry).where(
            MigrationLedgerEntry.stage == stage,
            MigrationLedgerEntry.legacy_id == str(legacy_id),
        )
    )


def upsert_ledger_entry(session: Session, record: LedgerRecord) -> tuple[MigrationLedgerEntry, bool]:
    existing = get_ledger_entry(session, record.stage, record.legacy_id)
    if existing:
        existing.attempts = (existing.attempts or 0) + 1
        # A later idempotent skip must not hide that the record was migrated.
        if existing.outcome == OUTCOME_MIGRATED and record.outcome == OUTCOME_SKIPPED:
            return existing, False
        existing.outcome = record.outcome
        existing.clinic_id = record.clinic_id
        existing.reason = record.reason
        existing.target_id = record.target_id if record.target_id is not None else existing.target_id
        existing.message = record.message
        existing.details_json = record.details_json
        return existing, False

    row = MigrationLedgerEntry(
        stage=record.stage,
        legacy_id=str(record.legacy_id),
        clinic_id=record.clinic_id,
        outcome=record.outcome,
        reason=record.reason,
        target_id=record.target_id,
        message=record.message,
        details_json=record.details_json,
        attempts=1,
    )
    session.add(row)
    return row, True


def summarize_ledger(session: Session, stage: str | None = None) -> list[dict[str, object]]:
    stmt = select(
        MigrationLedgerEntry.stage,
        MigrationLedgerEntry.outcome,
        func.count().label("count"),
    )
    if stage is not None:
        stmt = stmt.where(MigrationLedgerEntry.stage == stage)
    rows = session.execute(
        stmt.group_by(MigrationLedgerEntry.stage, MigrationLedgerEntry.outcome).order_by(
            MigrationLedgerEntry.stage, MigrationLedgerEntry.outcome
        )
    ).all()
    return [
        {"stage": stage_name, "outcome": outcome, "count": count}
        for stage_name, outcome, count in rows
    ]


def errored_reason_counts(session: Session) -> dict[str, int]:
    counts: Counter[str] = Counter()
    rows = session.execute(
        select(MigrationLedgerEntry.reason).where(
            MigrationLedgerEntry.outcome == OUTCOME_ERRORED
        )
    ).scalars()
    for reason in rows:
        counts[reason or "unknown"] += 1
    return dict(counts)

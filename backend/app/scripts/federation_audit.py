from __future__ import annotations

import argparse
import json
import sys

from app.db.session import SessionLocal
from app.services.federation.audit import DOCTOR_FIELDS, PATIENT_FIELDS, audit
from app.services.federation.ledger import errored_reason_counts, summarize_ledger


def _print_summary(payload: dict[str, object], *, file=sys.stderr) -> None:
    counts = payload.get("counts") or {}
    print("Federation consistency audit", file=file)
    for key, value in counts.items():
        print(f"  {key}: {value}", file=file)
    for key in (
        "doctors_without_profile",
        "patients_without_profile",
        "appointments_unlinked",
        "cross_tenant_links",
        "doctor_link_mismatches",
        "patient_link_mismatches",
        "profile_clinic_mismatches",
        "field_divergences",
    ):
        print(f"  {key}: {len(payload.get(key) or [])}", file=file)
    for reason, count in sorted((payload.get("ledger_errors") or {}).items()):
        print(f"  errored ({reason}): {count}", file=file)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Compare legacy and federated records (read-only)."
    )
    parser.add_argument("--clinic-id", type=int, default=None, help="Only audit one clinic.")
    parser.add_argument(
        "--fields",
        default=None,
        help=(
            "Comma separated fields to compare "
            f"(default: {','.join(DOCTOR_FIELDS + PATIENT_FIELDS)})."
        ),
    )
    args = parser.parse_args(argv)
    sample_fields = None
    if args.fields:
        sample_fields = [part.strip() for part in args.fields.split(",") if part.strip()]

    session = SessionLocal()
    try:
        report = audit(session, clinic_id=args.clinic_id, sample_fields=sample_fields)
        payload = {
            **report.as_dict(),
            "ledger": summarize_ledger(session),
            "ledger_errors": errored_reason_counts(session),
        }
    finally:
        session.close()

    _print_summary(payload)
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 1 if report.has_issues else 0


if __name__ == "__main__":
    raise SystemExit(main())

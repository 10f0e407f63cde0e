from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from app.core.settings import settings
from app.db.session import SessionLocal
from app.services.federation.backfill import RetryPolicy, run_backfill
from app.services.federation.ledger import STAGES


def _parse_stages(value: str | None) -> list[str]:
    if not value:
        return list(STAGES)
    stages = [part.strip().lower() for part in value.split(",") if part.strip()]
    unknown = sorted(set(stages) - set(STAGES))
    if unknown:
        raise argparse.ArgumentTypeError(f"Unknown stages: {', '.join(unknown)}")
    return stages


def _write_output(payload: dict[str, object], output: str) -> None:
    data = json.dumps(payload, indent=2, sort_keys=True)
    if output == "-":
        print(data)
        return
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data + "\n", encoding="utf-8")
    print(f"Wrote backfill summary to {path}", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Copy legacy doctors, patients and appointment links into the federated tables."
    )
    parser.add_argument(
        "--stages",
        type=_parse_stages,
        default=None,
        help="Comma separated stages to run (default: doctors,patients,appointments).",
    )
    parser.add_argument("--clinic-id", type=int, default=None, help="Only migrate one clinic.")
    parser.add_argument(
        "--progress-every",
        type=int,
        default=None,
        help="Print a JSON checkpoint every N records per stage.",
    )
    parser.add_argument(
        "--output",
        default="-",
        help="Write the JSON summary to PATH (default: stdout).",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=settings.log_level.upper())

    session = SessionLocal()
    try:
        summary = run_backfill(
            session,
            stages=args.stages or list(STAGES),
            clinic_id=args.clinic_id,
            retry=RetryPolicy.from_settings(settings),
            progress_every=args.progress_every,
        )
    finally:
        session.close()

    _write_output(summary.as_dict(), args.output)
    return 1 if summary.errored else 0


if __name__ == "__main__":
    raise SystemExit(main())

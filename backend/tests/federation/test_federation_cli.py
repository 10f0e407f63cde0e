import json

from app.scripts import federation_audit, federation_backfill
from app.services.federation import backfill


def _seed(factory):
    clinic = factory.clinic()
    doctor = factory.doctor(clinic)
    patient = factory.patient(clinic, phone="555")
    factory.appointment(clinic, doctor, patient)
    return clinic


def test_parse_stages_defaults_to_all():
    assert federation_backfill._parse_stages(None) == ["doctors", "patients", "appointments"]
    assert federation_backfill._parse_stages("patients, doctors") == ["patients", "doctors"]


def test_backfill_cli_writes_summary_and_exits_zero(session, factory, monkeypatch, tmp_path):
    _seed(factory)
    monkeypatch.setattr(federation_backfill, "SessionLocal", lambda: session)
    output = tmp_path / "out" / "summary.json"

    exit_code = federation_backfill.main(["--output", str(output)])

    assert exit_code == 0
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["doctors"]["migrated"] == 1
    assert payload["patients"]["migrated"] == 1
    assert payload["appointments"]["migrated"] == 1


def test_backfill_cli_exits_one_on_errored_records(session, factory, monkeypatch, capsys):
    _seed(factory)
    monkeypatch.setattr(federation_backfill, "SessionLocal", lambda: session)

    def broken(db, user):
        raise RuntimeError("boom")

    monkeypatch.setattr(backfill, "_migrate_doctor", broken)

    exit_code = federation_backfill.main(["--stages", "doctors"])

    assert exit_code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "doctors": {
            "migrated": 0,
            "skipped": 0,
            "errored": 1,
            "reasons": {"unexpected_error": 1},
        }
    }


def test_audit_cli_exit_code_tracks_issues(session, factory, monkeypatch, capsys):
    _seed(factory)
    monkeypatch.setattr(federation_audit, "SessionLocal", lambda: session)
    monkeypatch.setattr(federation_backfill, "SessionLocal", lambda: session)

    assert federation_audit.main([]) == 1
    before = json.loads(capsys.readouterr().out)
    assert before["appointments_unlinked"]

    assert federation_backfill.main([]) == 0
    capsys.readouterr()

    assert federation_audit.main([]) == 0
    after = json.loads(capsys.readouterr().out)
    assert after["has_issues"] is False
    assert after["ledger_errors"] == {}
    assert {row["stage"] for row in after["ledger"]} == {"doctors", "patients", "appointments"}


def test_audit_cli_reports_errored_ledger_reasons(session, factory, monkeypatch, capsys):
    _seed(factory)
    monkeypatch.setattr(federation_audit, "SessionLocal", lambda: session)
    monkeypatch.setattr(federation_backfill, "SessionLocal", lambda: session)

    def broken(db, user):
        raise RuntimeError("boom")

    monkeypatch.setattr(backfill, "_migrate_doctor", broken)
    assert federation_backfill.main(["--stages", "doctors"]) == 1
    capsys.readouterr()

    assert federation_audit.main([]) == 1
    captured = capsys.readouterr()
    payload = json.loads(captured.out)
    assert payload["ledger_errors"] == {"unexpected_error": 1}
    assert "errored (unexpected_error): 1" in captured.err

"""
Tests for the command line interface.
"""
import io
import json

import pytest

from helpers import request_payload
from shepherd_remediation import __version__, cli
from shepherd_remediation.logging_config import reset_logging_config


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("STORE_BACKEND", "AUDIT_BACKEND", "APPROVAL_CHANNEL"):
        monkeypatch.delenv(f"REMEDIATION_{name}", raising=False)
    yield
    reset_logging_config()


@pytest.fixture
def wired(monkeypatch, orchestrator):
    monkeypatch.setattr(cli, "build_orchestrator", lambda config=None: orchestrator)
    return orchestrator


def run(argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


def write_request(tmp_path, **fields):
    payload = request_payload()
    payload.update(fields)
    path = tmp_path / "request.json"
    path.write_text(json.dumps(payload))
    return str(path)


def test_version(capsys):
    assert run(["version"]) == 0

    assert __version__ in capsys.readouterr().out


def test_no_subcommand_prints_help(capsys):
    assert run([]) == 1

    assert "shepherd-remediate" in capsys.readouterr().out


def test_apply_from_file(wired, tmp_path, capsys):
    code = run(["--correlation-id", "corr-cli", "apply", write_request(tmp_path)])

    body = json.loads(capsys.readouterr().out)
    assert code == 0
    assert body["correlationId"] == "corr-cli"
    assert body["job"]["status"] == "APPLIED"


def test_apply_dry_run_flag(wired, tmp_path, capsys, fake_executor):
    assert run(["apply", write_request(tmp_path), "--dry-run"]) == 0

    body = json.loads(capsys.readouterr().out)
    assert body["job"]["request"]["dryRun"] is True
    assert fake_executor.execute_calls[0].dry_run is True


def test_apply_from_stdin(wired, monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(request_payload())))

    assert run(["apply", "-"]) == 0


def test_apply_invalid_json(wired, tmp_path, capsys):
    path = tmp_path / "broken.json"
    path.write_text("{")

    assert run(["apply", str(path)]) == 1
    assert "Invalid JSON" in capsys.readouterr().err


def test_apply_validation_error_exit_code(wired, tmp_path, capsys):
    assert run(["apply", write_request(tmp_path, accountId="abc")]) == 1

    assert json.loads(capsys.readouterr().out)["error"]["code"] == "VALIDATION_ERROR"


def test_request_then_approve(wired, tmp_path, capsys):
    assert run(["request", write_request(tmp_path)]) == 0
    job_id = json.loads(capsys.readouterr().out)["job"]["id"]

    assert run(["pending", "--tenant-id", "tenant-1"]) == 0
    assert json.loads(capsys.readouterr().out)["count"] == 1

    assert run(["approve", job_id, "--approver", "bob"]) == 0
    assert json.loads(capsys.readouterr().out)["job"]["status"] == "APPLIED"

    assert run(["rollback", job_id, "--actor", "bob"]) == 0
    assert json.loads(capsys.readouterr().out)["job"]["status"] == "ROLLED_BACK"

    assert run(["audit", job_id]) == 0
    events = [e["event"] for e in json.loads(capsys.readouterr().out)["entries"]]
    assert events[0] == "JOB_CREATED"
    assert events[-1] == "ROLLED_BACK"


def test_status_against_sqlite_store(tmp_path, capsys):
    config_file = tmp_path / "remediation.yaml"
    config_file.write_text(f"store:\n  backend: sqlite\n  sqlite_path: {tmp_path / 'jobs.db'}\n")

    assert run(["--config-file", str(config_file), "status", "missing"]) == 1

    assert json.loads(capsys.readouterr().out)["error"]["code"] == "NOT_FOUND"


def test_invalid_config_exit_code(tmp_path, capsys):
    config_file = tmp_path / "remediation.yaml"
    config_file.write_text("store:\n  backend: postgres\n")

    assert run(["--config-file", str(config_file), "status", "job-1"]) == 2
    assert "store_backend" in capsys.readouterr().err


def test_config_show_and_validate(tmp_path, capsys):
    config_file = tmp_path / "remediation.toml"
    config_file.write_text('[audit]\nbackend = "file"\n')

    assert run(["--config-file", str(config_file), "config", "show"]) == 0
    assert json.loads(capsys.readouterr().out)["audit_backend"] == "file"

    assert run(["--config-file", str(config_file), "config", "validate"]) == 0
    assert "Configuration is valid" in capsys.readouterr().out


def test_config_validate_reports_errors(tmp_path, capsys):
    config_file = tmp_path / "remediation.yaml"
    config_file.write_text("approval:\n  channel: webhook\n")

    assert run(["--config-file", str(config_file), "config", "validate"]) == 1
    assert "webhook_url" in capsys.readouterr().err


def test_load_request_rejects_bad_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("nope")

    with pytest.raises(ValueError):
        cli.load_request(str(path))

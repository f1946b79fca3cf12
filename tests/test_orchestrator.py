"""Sequencing tests for the lifecycle orchestrator using in-memory adapters."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jacredctl.exit_codes import ExitCode
from jacredctl.intent import Intent, Operation
from jacredctl.save_signal import SaveOutcome

CRON_LINE = '*/40 * * * * curl -s "http://127.0.0.1:9117/jsondb/save"'


def _intent(operation: Operation, *, db: bool = True, identity: str = "alice") -> Intent:
    return Intent(operation=operation, download_database=db, task_identity=identity)


def _records(harness: Any) -> list[dict[str, Any]]:
    path = harness.config.logs_dir / "operations.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_install_on_fresh_host(harness: Any) -> None:
    """Install deploys, registers the unit and cron line, then starts the service."""
    rc = harness.orchestrator.run(_intent(Operation.INSTALL))

    assert rc is ExitCode.OK
    root: Path = harness.config.install_root
    assert (root / "JacRed.dll").exists()
    assert (root / "Data" / "fdb" / "masterDb.bz").exists()
    assert harness.services.unit is not None
    assert harness.services.unit.working_directory == root
    assert harness.services.unit.exec_start == "/usr/bin/dotnet JacRed.dll"
    assert harness.services.enabled is True
    assert harness.services.running is True
    assert harness.tasks.tables["alice"] == [CRON_LINE]
    assert harness.host.calls == [
        "packages.install",
        "runtime.ensure",
        "application.deploy",
        "service.install_unit",
        "service.enable",
        "tasks.ensure_present:alice",
        "database.deploy",
        "service.start",
    ]


def test_install_without_database_skips_provisioning(harness: Any) -> None:
    """--no-download-db leaves the database subtree absent."""
    rc = harness.orchestrator.run(_intent(Operation.INSTALL, db=False))

    assert rc is ExitCode.OK
    assert "database.deploy" not in harness.host.calls
    assert not (harness.config.install_root / "Data").exists()
    record = _records(harness)[-1]
    steps = {step["name"]: step["status"] for step in record["steps"]}
    assert steps["database.provision"] == "skipped"


def test_install_twice_keeps_single_cron_line(harness: Any) -> None:
    """Re-running install never duplicates the scheduled task."""
    harness.tasks.tables["alice"] = ["0 3 * * * /usr/local/bin/backup"]

    assert harness.orchestrator.run(_intent(Operation.INSTALL)) is ExitCode.OK
    assert harness.orchestrator.run(_intent(Operation.INSTALL)) is ExitCode.OK

    assert harness.tasks.tables["alice"] == ["0 3 * * * /usr/local/bin/backup", CRON_LINE]


def test_install_failure_halts_remaining_steps(harness: Any) -> None:
    """A failed package install stops the sequence and exits with 1."""
    harness.packages.fail = True

    rc = harness.orchestrator.run(_intent(Operation.INSTALL))

    assert rc is ExitCode.FAILURE
    assert harness.host.calls == ["packages.install"]
    assert not harness.config.install_root.exists()
    record = _records(harness)[-1]
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == 1


def test_install_failure_after_deploy_leaves_partial_root(harness: Any) -> None:
    """No rollback: a failing start leaves the deployed files in place."""
    harness.services.fail_start = True

    rc = harness.orchestrator.run(_intent(Operation.INSTALL))

    assert rc is ExitCode.FAILURE
    assert (harness.config.install_root / "JacRed.dll").exists()
    assert harness.tasks.tables["alice"] == [CRON_LINE]


def test_update_without_install_has_no_side_effects(harness: Any) -> None:
    """Update fails fast with exit 1 when the install root is missing."""
    rc = harness.orchestrator.run(_intent(Operation.UPDATE))

    assert rc is ExitCode.FAILURE
    assert harness.host.calls == []
    assert not harness.config.install_root.exists()
    records = _records(harness)
    assert [record["command"] for record in records] == ["update"]
    assert records[0]["steps"] == []
    assert "Install first" in records[0]["result"]["message"]


def test_update_replaces_files_and_restarts(harness: Any) -> None:
    """Update saves, stops, redeploys and restarts, leaving cron and data alone."""
    assert harness.orchestrator.run(_intent(Operation.INSTALL)) is ExitCode.OK
    root: Path = harness.config.install_root
    (root / "Data" / "custom.json").write_text("keep", encoding="utf-8")
    harness.application.files = {"JacRed.dll": "v2"}
    harness.host.calls.clear()

    rc = harness.orchestrator.run(_intent(Operation.UPDATE))

    assert rc is ExitCode.OK
    assert harness.host.calls == [
        "save.request",
        "service.stop",
        "application.deploy",
        "service.start",
    ]
    assert (root / "JacRed.dll").read_text(encoding="utf-8") == "v2"
    assert (root / "wwwroot" / "index.html").exists()
    assert (root / "Data" / "custom.json").read_text(encoding="utf-8") == "keep"
    assert (root / "Data" / "fdb" / "masterDb.bz").exists()
    assert harness.tasks.tables["alice"] == [CRON_LINE]
    assert harness.services.running is True


def test_update_continues_when_save_fails(harness: Any) -> None:
    """A failed save request is recorded but does not abort the update."""
    assert harness.orchestrator.run(_intent(Operation.INSTALL)) is ExitCode.OK
    harness.save_signal.outcome = SaveOutcome.FAILED

    assert harness.orchestrator.run(_intent(Operation.UPDATE)) is ExitCode.OK

    steps = {step["name"]: step for step in _records(harness)[-1]["steps"]}
    assert steps["database.save"]["status"] == "skipped"
    assert steps["database.save"]["detail"] == "failed"


def test_update_download_failure_exits_nonzero(harness: Any) -> None:
    """Download failures during update are fatal and skip the restart."""
    assert harness.orchestrator.run(_intent(Operation.INSTALL)) is ExitCode.OK
    harness.application.fail = True
    harness.host.calls.clear()

    rc = harness.orchestrator.run(_intent(Operation.UPDATE))

    assert rc is ExitCode.FAILURE
    assert "service.start" not in harness.host.calls


def test_install_then_remove_leaves_nothing(harness: Any) -> None:
    """Remove deletes the unit, the cron line and the install root."""
    harness.tasks.tables["alice"] = ["@reboot /usr/bin/true"]
    assert harness.orchestrator.run(_intent(Operation.INSTALL)) is ExitCode.OK
    harness.host.calls.clear()

    rc = harness.orchestrator.run(_intent(Operation.REMOVE))

    assert rc is ExitCode.OK
    assert harness.host.calls == [
        "service.stop",
        "service.disable",
        "service.remove_unit",
        "tasks.ensure_absent:alice",
    ]
    assert harness.services.unit is None
    assert harness.services.running is False
    assert harness.services.enabled is False
    assert harness.tasks.tables["alice"] == ["@reboot /usr/bin/true"]
    assert not harness.config.install_root.exists()


def test_remove_twice_is_idempotent(harness: Any) -> None:
    """The second remove reports every step as an already-absent no-op."""
    assert harness.orchestrator.run(_intent(Operation.INSTALL)) is ExitCode.OK
    assert harness.orchestrator.run(_intent(Operation.REMOVE)) is ExitCode.OK

    rc = harness.orchestrator.run(_intent(Operation.REMOVE))

    assert rc is ExitCode.OK
    record = _records(harness)[-1]
    assert record["command"] == "remove"
    assert [step["status"] for step in record["steps"]] == ["skipped", "skipped", "skipped"]
    assert record["result"]["changed"] == 0
    assert not harness.config.install_root.exists()


def test_remove_on_fresh_host_succeeds(harness: Any) -> None:
    """Removing something never installed is a successful no-op."""
    assert harness.orchestrator.run(_intent(Operation.REMOVE)) is ExitCode.OK
    assert "service.stop" not in harness.host.calls


def test_schedule_lock_wait_is_recorded(harness: Any) -> None:
    """Install and remove both report the wait for the task list lock."""
    harness.tasks.lock_wait_ms = 15

    assert harness.orchestrator.run(_intent(Operation.INSTALL)) is ExitCode.OK
    assert harness.orchestrator.run(_intent(Operation.REMOVE)) is ExitCode.OK

    assert [record["lock_wait_ms"] for record in _records(harness)] == [15, 15]


def test_remove_targets_invoking_identity(harness: Any) -> None:
    """Cron entries of other identities are left untouched."""
    harness.tasks.tables["root"] = [CRON_LINE]
    assert harness.orchestrator.run(_intent(Operation.INSTALL, identity="svc")) is ExitCode.OK
    assert harness.orchestrator.run(_intent(Operation.REMOVE, identity="svc")) is ExitCode.OK

    assert harness.tasks.tables["root"] == [CRON_LINE]
    assert harness.tasks.tables["svc"] == []


def test_post_install_summary_mentions_config(harness: Any) -> None:
    """The install summary points at the config file and crontab."""
    assert harness.orchestrator.run(_intent(Operation.INSTALL)) is ExitCode.OK

    output = harness.orchestrator.console.file.getvalue()
    assert "Installation complete." in output
    assert str(harness.config.install_root / "init.conf") in output
    assert "systemctl restart jacred" in output

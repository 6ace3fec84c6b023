from __future__ import annotations

import json
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from faultline import cli, config
from faultline.domain.operations import Function, Operation, Outcome
from faultline.errors import SetupError
from faultline.history import History
from faultline.store.runs import RUN_FILE

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "configure_logging", lambda verbose=False: None)


def _history(read_value: int = 1) -> History:
    return History(
        [
            Operation(0, 0, Function.WRITE, 1, 1, 0.0, 0.1, Outcome.OK),
            Operation(1, 1, Function.READ, 1, read_value, 0.2, 0.3, Outcome.OK),
        ]
    )


def _driver_returning(history: History) -> MagicMock:
    return MagicMock(return_value=SimpleNamespace(run=lambda: history))


def _invoke_run(*args: str, history: History | None = None):
    with patch("faultline.runner.build_driver", _driver_returning(history or _history())):
        return runner.invoke(cli.app, ["run", "memory", *args])


def test_run_valid_exits_zero() -> None:
    result = _invoke_run()

    assert result.exit_code == cli.EXIT_VALID, result.output
    assert "Valid: true" in result.output


def test_run_invalid_exits_one() -> None:
    result = _invoke_run(history=_history(read_value=3))

    assert result.exit_code == cli.EXIT_INVALID
    assert "Valid: false" in result.output


def test_run_skip_checker() -> None:
    result = _invoke_run("--skip-checker")

    assert result.exit_code == cli.EXIT_VALID
    assert "Checker skipped" in result.output


def test_run_rejects_short_time_limit() -> None:
    result = _invoke_run("--time-limit", "5")

    assert result.exit_code == cli.EXIT_USAGE
    assert "time_limit" in result.output


def test_run_rejects_unknown_backend() -> None:
    result = runner.invoke(cli.app, ["run", "riak"])

    assert result.exit_code == cli.EXIT_USAGE
    assert "Unknown system name" in result.output


def test_run_setup_failure_is_fatal() -> None:
    def boom() -> History:
        raise SetupError("failed to open client on n1: refused")

    with patch("faultline.runner.build_driver", MagicMock(return_value=SimpleNamespace(run=boom))):
        result = runner.invoke(cli.app, ["run", "memory"])

    assert result.exit_code == cli.EXIT_FATAL
    assert "Test aborted" in result.output


def test_profile_and_explicit_options(tmp_path: Path) -> None:
    profile = tmp_path / "profile.yaml"
    profile.write_text("ops_per_key: 20\nvalue_range: 7\n")

    result = _invoke_run("--profile", str(profile), "--ops-per-key", "30", "-c", "2n", "-t", "2")

    assert result.exit_code == cli.EXIT_VALID, result.output
    run_files = list(Path(cli.load_settings().storage.store_path).glob(f"*/*/{RUN_FILE}"))
    record = json.loads(run_files[0].read_text())
    assert record["options"]["ops_per_key"] == 30
    assert record["options"]["value_range"] == 7
    assert record["options"]["concurrency"] == "2n"
    assert record["argv"][:2] == ["run", "memory"]
    assert "--ops-per-key" in record["argv"]


def test_check_latest_run() -> None:
    _invoke_run()

    result = runner.invoke(cli.app, ["check"])

    assert result.exit_code == cli.EXIT_VALID, result.output
    assert "Valid: true" in result.output
    assert "Time spent in checker:" in result.output


def test_check_by_path_and_reports_violation() -> None:
    _invoke_run("--skip-checker", history=_history(read_value=3))
    run_dir = next(Path(cli.load_settings().storage.store_path).glob("*/*"))

    result = runner.invoke(cli.app, ["check", str(run_dir)])

    assert result.exit_code == cli.EXIT_INVALID
    assert "Valid: false" in result.output


def test_check_without_runs_is_fatal() -> None:
    result = runner.invoke(cli.app, ["check"])

    assert result.exit_code == cli.EXIT_FATAL
    assert "Cannot analyze run" in result.output


def test_check_rejects_two_run_references() -> None:
    result = runner.invoke(cli.app, ["check", "some/dir", "--which", "0"])
    assert result.exit_code == cli.EXIT_USAGE


def test_runs_lists_verdicts() -> None:
    _invoke_run()

    result = runner.invoke(cli.app, ["runs"])

    assert result.exit_code == 0
    assert "-1" in result.output
    assert "true" in result.output


def test_runs_empty_store() -> None:
    result = runner.invoke(cli.app, ["runs"])

    assert result.exit_code == 0
    assert "No runs stored" in result.output


def test_version() -> None:
    result = runner.invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert "faultline 0.1.0" in result.output


@pytest.fixture
def unwritable_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    monkeypatch.setenv("FAULTLINE_STORE_PATH", str(blocker / "store"))
    config._load_settings_cached.cache_clear()


def test_check_with_unwritable_store_is_fatal(unwritable_store, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys, "argv", ["faultline", "check"])

    with pytest.raises(SystemExit) as exited:
        cli.main()

    assert exited.value.code == cli.EXIT_FATAL


def test_run_with_unwritable_store_is_fatal(unwritable_store) -> None:
    result = _invoke_run()

    assert result.exit_code == cli.EXIT_FATAL
    assert "Test aborted" in result.output

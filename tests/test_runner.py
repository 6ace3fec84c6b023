from __future__ import annotations

import json
import subprocess
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from faultline import config
from faultline.checker import CheckerMode
from faultline.config import load_settings
from faultline.domain.operations import Function, Operation, Outcome, Validity
from faultline.errors import StoredRunError, UnknownBackendError
from faultline.history import History
from faultline.options import TestOptions
from faultline.runner import analyze_stored, run_test
from faultline.store.runs import RESULTS_FILE, RunStore


def _history(read_value: int = 2) -> History:
    return History(
        [
            Operation(0, 0, Function.WRITE, 1, 2, 0.0, 0.1, Outcome.OK),
            Operation(1, "nemesis", Function.FAULT_START, None, "partitioned", 0.1, 0.1, Outcome.INFO),
            Operation(2, 1, Function.READ, 1, read_value, 0.2, 0.3, Outcome.OK),
            Operation(3, "nemesis", Function.FAULT_STOP, None, "fully connected", 0.4, 0.4, Outcome.INFO),
        ]
    )


def _stub_driver(history: History) -> MagicMock:
    return MagicMock(return_value=SimpleNamespace(run=lambda: history))


def _run(options: TestOptions, history: History | None = None):
    with patch("faultline.runner.build_driver", _stub_driver(history or _history())):
        return run_test("memory", options, ["run", "memory"])


def test_run_test_persists_and_checks() -> None:
    outcome = _run(TestOptions())

    assert outcome.analysis.valid is Validity.TRUE
    assert outcome.run_dir.parent.name == TestOptions().test_name("memory")
    assert outcome.run_dir.parent.parent == Path(load_settings().storage.store_path)
    results = json.loads((outcome.run_dir / RESULTS_FILE).read_text())
    assert results["valid"] == "true"
    assert results["checkers"]["perf"]["operations"] == 2
    assert (outcome.run_dir / "timeline.html").exists()


def test_run_test_detects_violation() -> None:
    outcome = _run(TestOptions(), _history(read_value=4))
    assert outcome.analysis.valid is Validity.FALSE
    assert "key 1" in outcome.analysis.message


def test_skipped_run_still_reports() -> None:
    outcome = _run(TestOptions(skip_checker=True))

    assert outcome.analysis.mode is CheckerMode.SKIP
    assert outcome.analysis.valid is None
    assert "linearizable" not in outcome.analysis.results


def test_unknown_backend() -> None:
    with pytest.raises(UnknownBackendError, match="Unknown system name: riak"):
        run_test("riak", TestOptions(), ["run", "riak"])


def test_reanalysis_ignores_skip_and_is_repeatable() -> None:
    first = _run(TestOptions(skip_checker=True))

    again = analyze_stored(-1)
    once_more = analyze_stored(str(first.run_dir))

    assert again.analysis.mode is CheckerMode.INTERNAL
    assert again.analysis.valid is Validity.TRUE
    assert once_more.analysis.valid is again.analysis.valid
    assert again.elapsed_ms >= 0
    assert again.stored.history.operations == first.history.operations
    results = json.loads((first.run_dir / RESULTS_FILE).read_text())
    assert results["mode"] == "internal"


@patch("faultline.checker.external.subprocess.run")
def test_reanalysis_with_external_checker(mock_run: MagicMock, monkeypatch) -> None:
    monkeypatch.setenv("FAULTLINE_EXTERNAL_CHECKER", "checker")
    config._load_settings_cached.cache_clear()
    mock_run.return_value = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="")
    first = _run(TestOptions())

    outcome = analyze_stored(-1, external=True)

    assert outcome.analysis.mode is CheckerMode.EXTERNAL
    assert outcome.analysis.valid is Validity.FALSE
    assert mock_run.call_args.args[0] == ["checker", "--test-dir", str(first.run_dir)]


def test_reanalysis_of_missing_run() -> None:
    with pytest.raises(StoredRunError):
        analyze_stored(-1)


def test_reanalysis_uses_given_store(tmp_path: Path) -> None:
    store = RunStore(tmp_path / "elsewhere")
    with pytest.raises(StoredRunError, match="0 run"):
        analyze_stored(-1, store=store)

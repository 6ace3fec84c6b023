"""On-disk run store.

Layout::

    <base>/<test name>/<run id>/run.json
                               /history.jsonl
                               /results.json     (after analysis)
                               /timeline.html    (after analysis)

Run ids are UTC timestamps, so sorting directory names orders runs
chronologically without opening any history.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from faultline.domain.operations import Operation
from faultline.errors import StoredRunError
from faultline.history import History
from faultline.store.models import RunRecord
from faultline.utils.hashing import sha256_bytes
from faultline.utils.serialization import json_default

logger = logging.getLogger(__name__)

RUN_FILE = "run.json"
HISTORY_FILE = "history.jsonl"
RESULTS_FILE = "results.json"

# First argv element of a run produced by a test execution command.
RECOGNIZED_COMMANDS = frozenset({"run"})


def _dump_json(payload: dict) -> bytes:
    return json.dumps(payload, ensure_ascii=True, indent=2, default=json_default).encode("utf-8")


def _read_json(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError as exc:
        raise StoredRunError(f"Missing {path.name} in {path.parent}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise StoredRunError(f"Unreadable {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StoredRunError(f"{path} does not hold a JSON object")
    return data


@dataclass
class StoredRun:
    path: Path
    record: RunRecord
    history: History
    results: dict[str, Any] | None = None


class RunStore:
    def __init__(self, base_path: str | Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base(self) -> Path:
        return self._base

    def create(self, record: RunRecord) -> Path:
        run_dir = self._base / record.name / record.run_id
        run_dir.mkdir(parents=True, exist_ok=False)
        self.write_record(run_dir, record)
        logger.info("created run directory %s", run_dir)
        return run_dir

    def write_record(self, run_dir: Path, record: RunRecord) -> None:
        (run_dir / RUN_FILE).write_bytes(_dump_json(record.to_dict()))

    def save_history(self, run_dir: Path, record: RunRecord, history: History) -> str:
        """Write the history and pin its checksum in ``run.json``."""
        lines = [
            json.dumps(op.to_dict(), ensure_ascii=True, default=json_default) for op in history
        ]
        data = ("\n".join(lines) + "\n" if lines else "").encode("utf-8")
        (run_dir / HISTORY_FILE).write_bytes(data)
        record.history_sha256 = sha256_bytes(data)
        record.operation_count = len(lines)
        self.write_record(run_dir, record)
        return record.history_sha256

    def save_results(self, run_dir: Path, results: dict[str, Any]) -> Path:
        path = run_dir / RESULTS_FILE
        path.write_bytes(_dump_json(results))
        return path

    def list_runs(self) -> list[Path]:
        """Run directories, oldest first."""
        runs = [path.parent for path in self._base.glob(f"*/*/{RUN_FILE}")]
        return sorted(runs, key=lambda path: (path.name, path.parent.name))

    def resolve(self, ref: str | int) -> Path:
        """Resolve a run index (``-1`` is the newest run) or a run directory path."""
        index: int | None
        try:
            index = int(ref)
        except (TypeError, ValueError):
            index = None
        if index is not None:
            runs = self.list_runs()
            try:
                return runs[index]
            except IndexError:
                raise StoredRunError(
                    f"No run at index {index}; {len(runs)} run(s) stored in {self._base}"
                ) from None
        path = Path(str(ref)).expanduser()
        if not (path / RUN_FILE).is_file():
            raise StoredRunError(f"{path} is not a run directory")
        return path

    def load_record(self, run_dir: Path) -> RunRecord:
        data = _read_json(run_dir / RUN_FILE)
        try:
            record = RunRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoredRunError(f"Malformed {RUN_FILE} in {run_dir}: {exc}") from exc
        if not record.argv or record.argv[0] not in RECOGNIZED_COMMANDS:
            raise StoredRunError(
                f"Run in {run_dir} was not produced by a test command: {' '.join(record.argv)!r}"
            )
        return record

    def load_history(self, run_dir: Path, record: RunRecord) -> History:
        path = run_dir / HISTORY_FILE
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise StoredRunError(f"Missing {HISTORY_FILE} in {run_dir}") from exc
        except OSError as exc:
            raise StoredRunError(f"Unreadable {path}: {exc}") from exc
        if record.history_sha256 is None:
            raise StoredRunError(f"Run in {run_dir} has no history checksum")
        if sha256_bytes(data) != record.history_sha256:
            raise StoredRunError(f"History checksum mismatch in {run_dir}")
        operations: list[Operation] = []
        for line_number, line in enumerate(data.decode("utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                operations.append(Operation.from_dict(json.loads(line)))
            except (KeyError, TypeError, ValueError) as exc:
                raise StoredRunError(
                    f"Malformed operation on line {line_number} of {path}: {exc}"
                ) from exc
        return History(operations)

    def load_results(self, run_dir: Path) -> dict[str, Any] | None:
        path = run_dir / RESULTS_FILE
        if not path.exists():
            return None
        return _read_json(path)

    def load(self, run_dir: Path) -> StoredRun:
        record = self.load_record(run_dir)
        history = self.load_history(run_dir, record)
        return StoredRun(run_dir, record, history, self.load_results(run_dir))

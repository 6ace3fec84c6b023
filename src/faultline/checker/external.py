"""External checker process.

The command is run with ``--test-dir <run directory>`` appended. Only the exit
code decides the verdict:

* ``0``: valid
* ``1``: invalid
* anything else, a crash, a missing executable or a timeout: unknown

Captured output is kept for diagnostics and never parsed.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

from faultline.domain.operations import CheckerResult, Validity
from faultline.history import History

logger = logging.getLogger(__name__)

_EXIT_CODES = {0: Validity.TRUE, 1: Validity.FALSE}

# Diagnostics only; keeps results.json readable.
_MAX_OUTPUT_CHARS = 20_000


def _tail(text: str | bytes | None) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-_MAX_OUTPUT_CHARS:]


class ExternalChecker:
    name = "external"

    def __init__(self, command: Sequence[str], timeout: float = 600.0) -> None:
        self.command = list(command)
        self.timeout = timeout

    def check(self, history: History, run_dir: Path | None) -> CheckerResult:
        if not self.command:
            return CheckerResult(Validity.UNKNOWN, message="no external checker command configured")
        if run_dir is None:
            return CheckerResult(Validity.UNKNOWN, message="run has no directory to hand over")

        argv = [*self.command, "--test-dir", str(run_dir)]
        logger.info("running external checker: %s", " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("external checker timed out after %ss", self.timeout)
            return CheckerResult(
                Validity.UNKNOWN,
                message=f"external checker timed out after {self.timeout}s",
                details={"stdout": _tail(exc.stdout), "stderr": _tail(exc.stderr)},
            )
        except OSError as exc:
            logger.error("external checker could not be started: %s", exc)
            return CheckerResult(
                Validity.UNKNOWN, message=f"external checker could not be started: {exc}"
            )

        valid = _EXIT_CODES.get(proc.returncode, Validity.UNKNOWN)
        message = None
        if valid is Validity.UNKNOWN:
            message = f"external checker exited with code {proc.returncode}"
        return CheckerResult(
            valid,
            message=message,
            details={
                "exit_code": proc.returncode,
                "stdout": _tail(proc.stdout),
                "stderr": _tail(proc.stderr),
            },
        )

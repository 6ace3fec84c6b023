"""Checker interface shared by correctness and reporting checkers."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from faultline.domain.operations import CheckerResult
from faultline.history import History


class Checker(Protocol):
    name: str

    def check(self, history: History, run_dir: Path | None) -> CheckerResult: ...

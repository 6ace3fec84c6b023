"""Selects the correctness checker and composes it with the reporting checkers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from faultline.checker.base import Checker
from faultline.checker.external import ExternalChecker
from faultline.checker.independent import IndependentChecker
from faultline.checker.linearizable import LinearizableChecker
from faultline.checker.perf import PerformanceChecker
from faultline.checker.timeline import TimelineChecker
from faultline.config import CheckerSettings
from faultline.domain.operations import CheckerResult, Validity
from faultline.history import History

logger = logging.getLogger(__name__)


class CheckerMode(str, Enum):
    SKIP = "skip"
    INTERNAL = "internal"
    EXTERNAL = "external"


def select_mode(*, skip: bool, external: bool, reanalysis: bool) -> CheckerMode:
    """Skip only applies to a live run; external wins over internal."""
    if skip and not reanalysis:
        return CheckerMode.SKIP
    if external:
        return CheckerMode.EXTERNAL
    return CheckerMode.INTERNAL


def build_checkers(
    mode: CheckerMode,
    settings: CheckerSettings,
    title: str = "timeline",
) -> dict[str, Checker]:
    """Correctness checker for ``mode`` (none for skip) followed by the reporters."""
    checkers: dict[str, Checker] = {}
    if mode is CheckerMode.INTERNAL:
        checkers["linearizable"] = IndependentChecker(
            LinearizableChecker(max_states=settings.max_search_states)
        )
    elif mode is CheckerMode.EXTERNAL:
        checkers["external"] = ExternalChecker(
            settings.external_command, timeout=settings.external_timeout_seconds
        )
    checkers["perf"] = PerformanceChecker()
    checkers["timeline"] = TimelineChecker(title)
    return checkers


@dataclass
class Analysis:
    mode: CheckerMode
    results: dict[str, CheckerResult] = field(default_factory=dict)

    @property
    def valid(self) -> Validity | None:
        """Merged verdict, or None when correctness checking was skipped."""
        if self.mode is CheckerMode.SKIP:
            return None
        return Validity.merge([result.valid for result in self.results.values()])

    @property
    def message(self) -> str | None:
        for result in self.results.values():
            if result.valid is not Validity.TRUE and result.message:
                return result.message
        return None

    def to_dict(self) -> dict[str, Any]:
        valid = self.valid
        return {
            "valid": valid.value if valid is not None else None,
            "mode": self.mode.value,
            "message": self.message,
            "checkers": {name: result.to_dict() for name, result in self.results.items()},
        }


def analyze(
    history: History,
    run_dir: Path | None,
    mode: CheckerMode,
    checkers: dict[str, Checker],
) -> Analysis:
    analysis = Analysis(mode)
    for name, checker in checkers.items():
        logger.info("running %s checker", name)
        try:
            analysis.results[name] = checker.check(history, run_dir)
        except Exception as exc:
            logger.exception("%s checker failed", name)
            analysis.results[name] = CheckerResult(
                Validity.UNKNOWN, message=f"{name} checker error: {type(exc).__name__}: {exc}"
            )
    return analysis

"""Lifts a single-key checker over every key partition of a history."""

from __future__ import annotations

import logging
from pathlib import Path

from faultline.checker.linearizable import LinearizableChecker
from faultline.domain.operations import CheckerResult, Validity
from faultline.history import History

logger = logging.getLogger(__name__)


class IndependentChecker:
    """Valid iff every key partition is valid.

    An exception raised while checking a key makes that key ``unknown``; it
    never turns into a pass.
    """

    name = "linearizable"

    def __init__(self, inner: LinearizableChecker) -> None:
        self.inner = inner

    def check(self, history: History, run_dir: Path | None = None) -> CheckerResult:
        verdicts: list[Validity] = []
        failures: dict[str, dict] = {}
        unknown: dict[str, dict] = {}
        for key, operations in sorted(history.by_key().items()):
            try:
                result = self.inner.check_key(key, operations)
            except Exception as exc:
                logger.exception("checking key %s failed", key)
                result = CheckerResult(
                    Validity.UNKNOWN,
                    message=f"key {key}: checker error: {type(exc).__name__}: {exc}",
                )
            verdicts.append(result.valid)
            if result.valid is Validity.FALSE:
                failures[str(key)] = result.to_dict()
            elif result.valid is Validity.UNKNOWN:
                unknown[str(key)] = result.to_dict()

        valid = Validity.merge(verdicts)
        message = None
        if failures:
            message = next(iter(failures.values())).get("message")
        elif unknown:
            message = next(iter(unknown.values())).get("message")
        return CheckerResult(
            valid,
            message=message,
            details={
                "key_count": len(verdicts),
                "failures": failures,
                "unknown": unknown,
            },
        )

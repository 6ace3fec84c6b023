"""Time helpers."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def run_id_now() -> str:
    """Sortable directory identifier for a new run."""
    return utc_now().strftime("%Y%m%dT%H%M%S.%f")


class RelativeClock:
    """Monotonic seconds elapsed since construction."""

    def __init__(self) -> None:
        self._origin = time.monotonic()

    def __call__(self) -> float:
        return time.monotonic() - self._origin

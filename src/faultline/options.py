"""Per-run test options and workload profile loading."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

MIN_TIME_LIMIT = 10

_CONCURRENCY_RE = re.compile(r"^\d+n?$")

DEFAULT_NODES = ("n1", "n2", "n3", "n4", "n5")


def _ensure_list(v: Any) -> list:
    if v is None:
        return []
    return v


class TestOptions(BaseModel):
    """Parameters of a single test run.

    ``concurrency`` keeps the command-line spelling (``"50"`` or ``"3n"``, the
    latter multiplied by the node count) and is resolved by
    :meth:`resolved_concurrency`.
    """

    __test__ = False

    op_gen_rate: float = Field(default=10, gt=0, description="Operations per second, per lane.")
    ops_per_key: int = Field(default=100, gt=0)
    con_per_key: int = Field(default=5, gt=0)
    concurrency: str = Field(default="50")
    value_range: int = Field(default=5, gt=0)
    time_limit: float = Field(default=40, ge=MIN_TIME_LIMIT)
    fault_window: float = Field(default=5, gt=0)
    skip_checker: bool = False
    use_external_checker: bool = False
    quorum_read: bool = False
    local_refs: bool = False
    nodes: list[str] = Field(default_factory=lambda: list(DEFAULT_NODES))

    @field_validator("concurrency", mode="before")
    @classmethod
    def _validate_concurrency(cls, v: Any) -> str:
        text = str(v).strip()
        if not _CONCURRENCY_RE.match(text):
            raise ValueError("Must be an integer, optionally followed by n.")
        return text

    @field_validator("nodes", mode="before")
    @classmethod
    def _validate_nodes(cls, v: Any) -> list:
        if isinstance(v, str):
            v = [item.strip() for item in v.split(",") if item.strip()]
        nodes = _ensure_list(v)
        if not nodes:
            raise ValueError("At least one node is required.")
        return nodes

    @model_validator(mode="after")
    def _check_lanes(self) -> TestOptions:
        if self.resolved_concurrency() < self.con_per_key:
            raise ValueError(
                f"concurrency ({self.resolved_concurrency()}) must be at least "
                f"con_per_key ({self.con_per_key})"
            )
        return self

    def resolved_concurrency(self) -> int:
        if self.concurrency.endswith("n"):
            return int(self.concurrency[:-1]) * len(self.nodes)
        return int(self.concurrency)

    def test_name(self, backend: str) -> str:
        return (
            f"{backend}"
            f" r={self.op_gen_rate:g}"
            f" o={self.ops_per_key}"
            f" t={self.con_per_key}"
            f" c={self.concurrency}"
            f" v={self.value_range}"
            f" l={self.time_limit:g}"
            f" f={self.fault_window:g}"
        )


def load_profile(path: str) -> dict[str, Any]:
    """Read a YAML workload profile holding any subset of TestOptions fields."""
    profile_path = Path(path)
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile file not found: {profile_path}")
    with profile_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Profile must be a mapping: {profile_path}")
    unknown = set(data) - set(TestOptions.model_fields)
    if unknown:
        raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
    return data


def load_nodes_file(path: str) -> list[str]:
    with open(path, encoding="utf-8") as handle:
        return [line.strip() for line in handle if line.strip() and not line.startswith("#")]

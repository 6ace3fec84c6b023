"""Records persisted alongside each run."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class RunRecord:
    run_id: str
    name: str
    backend: str
    argv: list[str]
    options: dict[str, Any]
    nodes: list[str]
    started_at: str
    completed_at: str | None = None
    history_sha256: str | None = None
    operation_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunRecord:
        return cls(
            run_id=str(data["run_id"]),
            name=str(data["name"]),
            backend=str(data["backend"]),
            argv=[str(arg) for arg in data["argv"]],
            options=dict(data.get("options") or {}),
            nodes=[str(node) for node in data.get("nodes") or []],
            started_at=str(data["started_at"]),
            completed_at=data.get("completed_at"),
            history_sha256=data.get("history_sha256"),
            operation_count=int(data.get("operation_count", 0)),
            metadata=dict(data.get("metadata") or {}),
        )

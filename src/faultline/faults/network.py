"""Networks that can be cut into components and healed."""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Sequence
from typing import Protocol

logger = logging.getLogger(__name__)

_SAFE_HOST_RE = re.compile(r"^[A-Za-z0-9._-]+$")

_SUBPROCESS_TIMEOUT_SECONDS = 30


class Network(Protocol):
    def partition(self, components: Sequence[Sequence[str]]) -> None: ...

    def heal(self) -> None: ...


class NoopNetwork:
    """For backends with nothing to partition."""

    def partition(self, components: Sequence[Sequence[str]]) -> None:
        logger.debug("noop partition %s", components)

    def heal(self) -> None:
        logger.debug("noop heal")


def _validate_host(node: str) -> str:
    if not _SAFE_HOST_RE.match(node) or node.startswith("-"):
        raise ValueError(f"invalid node name: {node[:120]}")
    return node


class IptablesNetwork:
    """Drops traffic between components with ``iptables`` run over ``ssh``.

    Every node drops inbound packets from each node outside its own
    component; healing flushes the INPUT chain.
    """

    def __init__(
        self,
        nodes: Sequence[str] = (),
        username: str | None = None,
        ssh_options: Sequence[str] = ("-o", "StrictHostKeyChecking=no", "-o", "BatchMode=yes"),
        timeout: float = _SUBPROCESS_TIMEOUT_SECONDS,
    ) -> None:
        self._username = username
        self._ssh_options = tuple(ssh_options)
        self._timeout = timeout
        self._nodes: set[str] = set(nodes)

    def partition(self, components: Sequence[Sequence[str]]) -> None:
        for component in components:
            self._nodes.update(component)
        for component in components:
            members = set(component)
            outsiders = sorted(self._nodes - members)
            for node in component:
                for other in outsiders:
                    self._ssh(node, ["iptables", "-w", "-A", "INPUT", "-s", other, "-j", "DROP"])

    def heal(self) -> None:
        for node in sorted(self._nodes):
            self._ssh(node, ["iptables", "-w", "-F", "INPUT"])

    def _ssh(self, node: str, command: list[str]) -> None:
        host = _validate_host(node)
        target = f"{self._username}@{host}" if self._username else host
        cmd = ["ssh", *self._ssh_options, target, "sudo", *command]
        try:
            result = subprocess.run(
                cmd, check=False, capture_output=True, text=True, timeout=self._timeout
            )
        except subprocess.TimeoutExpired:
            raise RuntimeError(f"iptables on {host} timed out after {self._timeout}s")
        if result.returncode != 0:
            logger.debug("iptables on %s stderr: %s", host, result.stderr.strip())
            raise RuntimeError(f"iptables on {host} failed (exit {result.returncode})")

"""Fault injectors triggered by nemesis start/stop control events."""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from typing import Protocol

from faultline.faults.network import Network

logger = logging.getLogger(__name__)


class FaultInjector(Protocol):
    def setup(self, nodes: Sequence[str]) -> None: ...

    def start(self) -> str: ...

    def stop(self) -> str: ...

    def teardown(self) -> None: ...


class NoopInjector:
    def setup(self, nodes: Sequence[str]) -> None:
        return None

    def start(self) -> str:
        return "no fault"

    def stop(self) -> str:
        return "no fault"

    def teardown(self) -> None:
        return None


def random_halves(nodes: Sequence[str], rng: random.Random) -> list[list[str]]:
    """Shuffle nodes and cut them in two; the second half is the majority."""
    shuffled = list(nodes)
    rng.shuffle(shuffled)
    cut = len(shuffled) // 2
    return [shuffled[:cut], shuffled[cut:]]


class PartitionRandomHalves:
    """Symmetric network partition into two random halves."""

    def __init__(self, network: Network, rng: random.Random | None = None) -> None:
        self._network = network
        self._rng = rng or random.Random()
        self._nodes: list[str] = []
        self.components: list[list[str]] | None = None

    def setup(self, nodes: Sequence[str]) -> None:
        self._nodes = list(nodes)
        self._network.heal()

    def start(self) -> str:
        components = random_halves(self._nodes, self._rng)
        self._network.partition(components)
        self.components = components
        description = " | ".join(",".join(sorted(c)) for c in components)
        logger.info("partitioned network: %s", description)
        return f"partitioned {description}"

    def stop(self) -> str:
        self._network.heal()
        self.components = None
        logger.info("healed network")
        return "fully connected"

    def teardown(self) -> None:
        if self.components is not None:
            self.stop()

"""Fault injectors driven by the nemesis timeline."""

from faultline.faults.injector import FaultInjector, NoopInjector, PartitionRandomHalves
from faultline.faults.network import IptablesNetwork, Network, NoopNetwork

__all__ = [
    "FaultInjector",
    "IptablesNetwork",
    "Network",
    "NoopInjector",
    "NoopNetwork",
    "PartitionRandomHalves",
]

"""Fault-injection harness for checking linearizability of replicated registers."""

__version__ = "0.1.0"

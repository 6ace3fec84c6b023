"""Exception hierarchy for harness-level failures.

Operation outcomes are never raised; they are recorded as tagged
:class:`~faultline.domain.operations.Completion` values.
"""

from __future__ import annotations


class FaultlineError(Exception):
    """Base class for harness errors surfaced to the caller."""


class SetupError(FaultlineError):
    """A backend client or fault injector could not be opened or set up."""


class StoredRunError(FaultlineError):
    """A persisted run is missing, malformed, or cannot be re-analyzed."""


class UnknownBackendError(FaultlineError):
    """No backend is registered under the requested system name."""

"""Exception hierarchy shared by the lifecycle components.

Failures fall into three groups:

* :class:`PreconditionError` - the host is not in a state where the requested
  operation can proceed (for example ``--update`` before an install).
* :class:`FatalExternalError` - an external command, download or extraction
  failed. Adapters raise a subclass defined next to them.
* Best-effort failures are never raised; callers log them and continue.
"""
from __future__ import annotations


class LifecycleError(RuntimeError):
    """Base class for errors that abort a lifecycle operation."""


class PreconditionError(LifecycleError):
    """Raised when the host state does not allow the requested operation."""


class FatalExternalError(LifecycleError):
    """Raised when an external step (command, network, archive) fails."""


class OperationInterrupted(LifecycleError):
    """Raised when a termination signal arrives mid-operation."""

    def __init__(self, signum: int) -> None:
        """Record the signal number that interrupted the operation."""
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum


__all__ = [
    "FatalExternalError",
    "LifecycleError",
    "OperationInterrupted",
    "PreconditionError",
]

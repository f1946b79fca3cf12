"""Capability interfaces consumed by the lifecycle orchestrator.

Each interface has one production adapter in this package that shells out to
the host tooling. Tests substitute in-memory implementations.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..workspace import TransientWorkspace


@dataclass(frozen=True, slots=True)
class ServiceUnitDescriptor:
    """Declarative description of the supervised service."""

    name: str
    working_directory: Path
    exec_start: str
    description: str = ""
    restart: str = "always"
    wants: str = "network.target"
    after: str = "network.target"
    wanted_by: str = "multi-user.target"

    def template_context(self) -> dict[str, object]:
        """Return the variables used to render the unit template."""
        return {
            "name": self.name,
            "description": self.description or self.name,
            "working_directory": str(self.working_directory),
            "exec_start": self.exec_start,
            "restart": self.restart,
            "wants": self.wants,
            "after": self.after,
            "wanted_by": self.wanted_by,
        }


class ServiceManager(Protocol):
    """Start/stop/enable and unit-file management for one service."""

    def unit_exists(self) -> bool: ...

    def install_unit(self, descriptor: ServiceUnitDescriptor) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def enable(self) -> None: ...

    def disable(self) -> None: ...

    def remove_unit(self) -> bool: ...


class ScheduledTaskManager(Protocol):
    """Exact-line membership of recurring tasks, per identity."""

    #: Milliseconds the last call waited for the task list lock.
    lock_wait_ms: int

    def ensure_present(self, identity: str, entry: str) -> bool: ...

    def ensure_absent(self, identity: str, entry: str) -> bool: ...


class PackageInstaller(Protocol):
    """Idempotent installation of OS packages."""

    def install(self, packages: Sequence[str]) -> None: ...


class RuntimeInstaller(Protocol):
    """Idempotent installation of the application runtime."""

    def ensure(self, workspace: TransientWorkspace) -> Path: ...


__all__ = [
    "PackageInstaller",
    "RuntimeInstaller",
    "ScheduledTaskManager",
    "ServiceManager",
    "ServiceUnitDescriptor",
]

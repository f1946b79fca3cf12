"""The immutable request resolved from the command line."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .privilege import resolve_task_identity


class Operation(str, Enum):
    """Lifecycle operations supported by the tool."""

    INSTALL = "install"
    UPDATE = "update"
    REMOVE = "remove"


class IntentError(ValueError):
    """Raised for flag combinations that do not describe one operation."""


@dataclass(frozen=True, slots=True)
class Intent:
    """What the operator asked for, resolved once and passed explicitly."""

    operation: Operation
    download_database: bool = True
    task_identity: str = "root"
    config_file: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "operation": self.operation.value,
            "download_database": self.download_database,
            "task_identity": self.task_identity,
            "config_file": str(self.config_file) if self.config_file else None,
        }


def resolve_intent(
    *,
    update: bool = False,
    remove: bool = False,
    no_download_db: bool = False,
    config_file: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Intent:
    """Build an :class:`Intent` from parsed flags."""
    if update and remove:
        raise IntentError("--update and --remove cannot be combined.")
    if remove:
        operation = Operation.REMOVE
    elif update:
        operation = Operation.UPDATE
    else:
        operation = Operation.INSTALL
    return Intent(
        operation=operation,
        download_database=not no_download_db,
        task_identity=resolve_task_identity(env),
        config_file=config_file,
    )


__all__ = ["Intent", "IntentError", "Operation", "resolve_intent"]

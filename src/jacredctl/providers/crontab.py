"""Crontab-backed scheduled task management.

Membership is decided by exact line equality: a line that differs only in
whitespace or argument order is a different entry. The whole task list is read,
modified in memory and written back with ``crontab -``.
"""
from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field

from ..errors import FatalExternalError
from ..locking import LockManager, LockTimeoutError

LOGGER = logging.getLogger(__name__)

ROOT_IDENTITY = "root"

Runner = Callable[[Sequence[str], str | None], subprocess.CompletedProcess[str]]


class CrontabError(FatalExternalError):
    """Raised when a crontab cannot be read or written."""


def add_entry(lines: Sequence[str], entry: str) -> list[str] | None:
    """Return *lines* with *entry* appended, or ``None`` when already present."""
    if entry in lines:
        return None
    return [*lines, entry]


def remove_entry(lines: Sequence[str], entry: str) -> list[str] | None:
    """Return *lines* without any copy of *entry*, or ``None`` when absent."""
    if entry not in lines:
        return None
    return [line for line in lines if line != entry]


def parse_crontab(text: str) -> list[str]:
    """Split crontab output into lines, blank lines included."""
    return text.splitlines()


def render_crontab(lines: Sequence[str]) -> str:
    """Join *lines* into crontab input (empty input clears the table)."""
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


@dataclass(slots=True)
class CrontabProvider:
    """Manage one identity's crontab through the ``crontab`` command."""

    locks: LockManager
    crontab_bin: str = "crontab"
    su_bin: str = "su"
    runner: Runner | None = None
    lock_wait_ms: int = field(default=0, init=False)

    def read(self, identity: str) -> list[str]:
        """Return the current task list for *identity* (empty if none)."""
        result = self._run(identity, [self.crontab_bin, "-l"], None)
        if result.returncode != 0:
            # "no crontab for <user>" is reported through a non-zero exit.
            return []
        return parse_crontab(result.stdout or "")

    def write(self, identity: str, lines: Sequence[str]) -> None:
        """Replace *identity*'s task list with *lines*."""
        result = self._run(identity, [self.crontab_bin, "-"], render_crontab(lines))
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip() or "no output"
            raise CrontabError(
                f"Writing crontab for {identity} failed (exit {result.returncode}): {message}"
            )

    def ensure_present(self, identity: str, entry: str) -> bool:
        """Add *entry* for *identity* unless an identical line exists."""
        with self._locked(identity):
            updated = add_entry(self.read(identity), entry)
            if updated is None:
                LOGGER.info("Cron save line already present for %s, skipping", identity)
                return False
            LOGGER.info("Adding cron save job for user: %s", identity)
            self.write(identity, updated)
            return True

    def ensure_absent(self, identity: str, entry: str) -> bool:
        """Remove every line identical to *entry* from *identity*'s crontab."""
        with self._locked(identity):
            updated = remove_entry(self.read(identity), entry)
            if updated is None:
                LOGGER.info("Cron save line not found for %s, skipping", identity)
                return False
            LOGGER.info("Removing cron save job for user: %s", identity)
            self.write(identity, updated)
            return True

    # ------------------------------------------------------------------
    def command_for(self, identity: str, args: Sequence[str]) -> list[str]:
        """Return the argv running *args* as *identity*."""
        if identity == ROOT_IDENTITY:
            return list(args)
        return [self.su_bin, identity, "-c", shlex.join(args)]

    @contextmanager
    def _locked(self, identity: str) -> Iterator[None]:
        try:
            with self.locks.crontab_lock(identity) as handle:
                self.lock_wait_ms = handle.wait_ms
                yield
        except LockTimeoutError as exc:
            raise CrontabError(str(exc)) from exc

    def _run(
        self,
        identity: str,
        args: Sequence[str],
        stdin: str | None,
    ) -> subprocess.CompletedProcess[str]:
        command = self.command_for(identity, args)
        runner = self.runner or _default_runner
        try:
            return runner(command, stdin)
        except FileNotFoundError as exc:
            raise CrontabError(f"{command[0]} not found: {exc}") from exc


def _default_runner(
    command: Sequence[str],
    stdin: str | None,
) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603, S607
        list(command),
        input=stdin,
        capture_output=True,
        text=True,
        check=False,
    )


__all__ = [
    "CrontabError",
    "CrontabProvider",
    "ROOT_IDENTITY",
    "add_entry",
    "parse_crontab",
    "remove_entry",
    "render_crontab",
]

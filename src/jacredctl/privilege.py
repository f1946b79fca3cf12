"""Privilege escalation and invoking-user resolution."""
from __future__ import annotations

import logging
import os
import subprocess
import sys
from collections.abc import Callable, Mapping, Sequence

from .config import ENV_PREFIX
from .providers.crontab import ROOT_IDENTITY

LOGGER = logging.getLogger(__name__)

INVOKING_USER_ENV = "SUDO_USER"

Runner = Callable[[Sequence[str]], int]


def is_elevated() -> bool:
    """Return ``True`` when running with an effective UID of 0."""
    return os.geteuid() == 0


def elevation_command(
    argv: Sequence[str],
    *,
    sudo_bin: str = "sudo",
    env: Mapping[str, str] | None = None,
) -> list[str]:
    """Return the command that re-runs this tool with *argv* under sudo.

    sudo resets the environment, so any ``JACREDCTL_*`` settings present in
    *env* are named in ``--preserve-env``.
    """
    source = os.environ if env is None else env
    names = sorted(name for name in source if name.startswith(ENV_PREFIX))
    command = [sudo_bin]
    if names:
        command.append(f"--preserve-env={','.join(names)}")
    return [*command, sys.executable, "-m", "jacredctl", *argv]


def ensure_elevated(
    argv: Sequence[str],
    *,
    elevated: Callable[[], bool] = is_elevated,
    runner: Runner | None = None,
    env: Mapping[str, str] | None = None,
) -> None:
    """Return when already elevated; otherwise re-run under sudo and exit.

    The current process exits with the child's status, so nothing after this
    call runs unprivileged.
    """
    if elevated():
        return
    command = elevation_command(argv, env=env)
    LOGGER.debug("Re-running with elevated rights: %s", " ".join(command))
    run = runner or _default_runner
    try:
        returncode = run(command)
    except FileNotFoundError as exc:
        LOGGER.error("Cannot elevate privileges: %s", exc)
        raise SystemExit(1) from exc
    raise SystemExit(returncode)


def resolve_task_identity(env: Mapping[str, str] | None = None) -> str:
    """Return the user whose crontab receives the save job.

    ``sudo`` records the pre-elevation user in ``SUDO_USER``; without it the
    superuser is the target.
    """
    source = os.environ if env is None else env
    user = (source.get(INVOKING_USER_ENV) or "").strip()
    return user or ROOT_IDENTITY


def _default_runner(command: Sequence[str]) -> int:
    return subprocess.call(list(command))  # noqa: S603


__all__ = [
    "INVOKING_USER_ENV",
    "elevation_command",
    "ensure_elevated",
    "is_elevated",
    "resolve_task_identity",
]

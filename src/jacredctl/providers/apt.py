"""APT-backed installation of OS prerequisite packages."""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from ..errors import FatalExternalError

LOGGER = logging.getLogger(__name__)

Runner = Callable[[Sequence[str], Mapping[str, str]], subprocess.CompletedProcess[str]]


class PackageInstallError(FatalExternalError):
    """Raised when the package manager reports a failure."""


@dataclass(slots=True)
class AptPackageInstaller:
    """Install packages with ``apt-get``; re-running is safe."""

    apt_bin: str = "apt-get"
    runner: Runner | None = None

    def install(self, packages: Sequence[str]) -> None:
        """Refresh package lists and install *packages*."""
        names = [name for name in packages if name]
        if not names:
            LOGGER.info("No system packages configured, skipping")
            return
        LOGGER.info("Installing system packages (%s)...", ", ".join(names))
        self._apt(["update"])
        self._apt(["install", "-y", "--no-install-recommends", *names])

    def _apt(self, args: Sequence[str]) -> None:
        command = [self.apt_bin, *args]
        env = os.environ.copy()
        env["DEBIAN_FRONTEND"] = "noninteractive"
        runner = self.runner or _default_runner
        try:
            result = runner(command, env)
        except FileNotFoundError as exc:
            raise PackageInstallError(f"{self.apt_bin} not found: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip() or "no output"
            raise PackageInstallError(
                f"{' '.join(command)} failed (exit {result.returncode}): {message}"
            )


def _default_runner(
    command: Sequence[str],
    env: Mapping[str, str],
) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603, S607
        list(command),
        capture_output=True,
        text=True,
        env=dict(env),
        check=False,
    )


__all__ = ["AptPackageInstaller", "PackageInstallError"]

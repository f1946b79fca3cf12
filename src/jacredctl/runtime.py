"""Helpers for installing the .NET runtime via ``dotnet-install.sh``."""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .archive import download_file
from .config import DotnetConfig
from .errors import FatalExternalError, PreconditionError
from .workspace import TransientWorkspace

LOGGER = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess[str]]


class RuntimeInstallError(FatalExternalError):
    """Raised when the runtime installer script fails."""


@dataclass(slots=True)
class DotnetRuntimeInstaller:
    """Install a .NET channel and expose ``dotnet`` on the system path."""

    config: DotnetConfig
    download_timeout: float = 60.0
    runner: Runner | None = None

    def ensure(self, workspace: TransientWorkspace) -> Path:
        """Install the configured channel and return the ``dotnet`` binary path.

        The install script is idempotent, so this runs it unconditionally.
        """
        LOGGER.info("Installing .NET %s...", self.config.channel)
        with workspace.directory("dotnet") as scratch:
            script = scratch / "dotnet-install.sh"
            download_file(self.config.install_script_url, script, timeout=self.download_timeout)
            script.chmod(0o755)
            self._run_script(
                [
                    str(script),
                    "--channel",
                    self.config.channel,
                    "--install-dir",
                    str(self.config.install_dir),
                ]
            )

        binary = self.config.binary
        if not (binary.is_file() and os.access(binary, os.X_OK)):
            raise PreconditionError(f".NET binary not found after install: {binary}")
        self._link(binary)
        LOGGER.info(".NET installed successfully")
        return binary

    def _run_script(self, command: Sequence[str]) -> None:
        runner = self.runner or _default_runner
        try:
            result = runner(command)
        except OSError as exc:
            raise RuntimeInstallError(f"Running {command[0]} failed: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip() or "no output"
            raise RuntimeInstallError(
                f"dotnet-install.sh failed (exit {result.returncode}): {message}"
            )

    def _link(self, binary: Path) -> None:
        link = self.config.link_path
        if link == binary:
            return
        link.parent.mkdir(parents=True, exist_ok=True)
        temp = link.with_name(f".{link.name}.tmp")
        temp.unlink(missing_ok=True)
        temp.symlink_to(binary)
        temp.replace(link)


def _default_runner(command: Sequence[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603
        list(command),
        capture_output=True,
        text=True,
        check=False,
    )


__all__ = ["DotnetRuntimeInstaller", "RuntimeInstallError"]

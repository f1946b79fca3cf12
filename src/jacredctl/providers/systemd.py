"""Systemd provider for the supervised JacRed service unit."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import FatalExternalError
from ..templates import TemplateEngine
from .base import ServiceUnitDescriptor

LOGGER = logging.getLogger(__name__)

UNIT_TEMPLATE = "systemd/service.j2"


class SystemdError(FatalExternalError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Render and drive a single systemd service unit.

    ``stop`` and ``disable`` are tolerant: a failing ``systemctl`` call is
    logged and treated as "already stopped/disabled".
    """

    templates: TemplateEngine
    unit_name: str = "jacred"
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    @property
    def unit(self) -> str:
        """Return the full unit name (``<name>.service``)."""
        return f"{self.unit_name}.service"

    @property
    def unit_path(self) -> Path:
        """Return the path of the unit file in the unit store."""
        return self.systemd_dir / self.unit

    def unit_exists(self) -> bool:
        """Return ``True`` when the unit file is present."""
        return self.unit_path.is_file()

    def install_unit(self, descriptor: ServiceUnitDescriptor) -> None:
        """Write the unit for *descriptor*, replacing any previous definition."""
        changed = self.templates.render_to_path(
            UNIT_TEMPLATE,
            self.unit_path,
            descriptor.template_context(),
            mode=0o644,
        )
        LOGGER.info(
            "Installed systemd unit: %s%s",
            self.unit_path,
            "" if changed else " (unchanged)",
        )
        self._systemctl("daemon-reload")

    def enable(self) -> None:
        """Enable the unit."""
        self._systemctl("enable", self.unit)

    def start(self) -> None:
        """Start the unit."""
        self._systemctl("start", self.unit)

    def stop(self) -> None:
        """Stop the unit; a unit that is not running is not an error."""
        self._tolerant("stop")

    def disable(self) -> None:
        """Disable the unit; a unit that is not enabled is not an error."""
        self._tolerant("disable")

    def remove_unit(self) -> bool:
        """Delete the unit file and reload systemd.

        Returns ``False`` when there was no unit file to remove.
        """
        try:
            self.unit_path.unlink()
        except FileNotFoundError:
            LOGGER.info("Service unit not found, skipping: %s", self.unit_path)
            return False
        self._systemctl("daemon-reload")
        return True

    # ------------------------------------------------------------------
    def _tolerant(self, command: str) -> None:
        try:
            self._systemctl(command, self.unit)
        except SystemdError as exc:
            LOGGER.info("Ignoring failed '%s' (%s)", command, exc)

    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(args, error_prefix=f"{self.systemctl_bin} {command}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdError", "SystemdProvider", "UNIT_TEMPLATE"]

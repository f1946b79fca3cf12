"""Lifecycle orchestrator: install, update and remove sequences.

Each sequence runs strictly top to bottom. The first fatal error stops the
sequence and nothing already applied is rolled back. Steps that find their
target already absent are logged no-ops, which makes ``remove`` idempotent.
"""
from __future__ import annotations

import logging
import shutil
import textwrap
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console

from .config import AppConfig
from .deploy import ArchiveDeployer, DatabaseProvisioner
from .errors import LifecycleError, PreconditionError
from .exit_codes import ExitCode
from .intent import Intent, Operation
from .logging import OperationScope, StructuredLogger
from .providers.base import (
    PackageInstaller,
    RuntimeInstaller,
    ScheduledTaskManager,
    ServiceManager,
    ServiceUnitDescriptor,
)
from .save_signal import SaveOutcome, SaveSignalClient
from .workspace import TransientWorkspace, signal_guard

LOGGER = logging.getLogger(__name__)

APP_ENTRYPOINT = "JacRed.dll"


def build_unit_descriptor(config: AppConfig) -> ServiceUnitDescriptor:
    """Return the service unit description for *config*."""
    return ServiceUnitDescriptor(
        name=config.systemd.unit_name,
        description=config.systemd.unit_name,
        working_directory=config.install_root,
        exec_start=f"{config.dotnet.link_path} {APP_ENTRYPOINT}",
    )


@dataclass(slots=True)
class LifecycleOrchestrator:
    """Sequence the lifecycle components for one requested operation."""

    config: AppConfig
    packages: PackageInstaller
    runtime: RuntimeInstaller
    services: ServiceManager
    tasks: ScheduledTaskManager
    application: ArchiveDeployer
    database: DatabaseProvisioner
    save_signal: SaveSignalClient
    workspace: TransientWorkspace
    logger: StructuredLogger
    console: Console | None = None

    @property
    def install_root(self) -> Path:
        """Return the application's install root."""
        return self.config.install_root

    def is_installed(self) -> bool:
        """Return ``True`` when the install root exists."""
        return self.install_root.is_dir()

    def run(self, intent: Intent) -> ExitCode:
        """Execute the operation described by *intent* and return the exit code."""
        handlers: dict[Operation, Callable[[Intent, OperationScope], None]] = {
            Operation.INSTALL: self._install,
            Operation.UPDATE: self._update,
            Operation.REMOVE: self._remove,
        }
        handler = handlers[intent.operation]
        with self.logger.operation(
            intent.operation.value,
            args=intent.to_dict(),
            target={"kind": "service", "name": self.config.systemd.unit_name},
        ) as op:
            try:
                with signal_guard():
                    handler(intent, op)
            except (LifecycleError, OSError) as exc:
                LOGGER.error("%s", exc)
                op.error(str(exc), rc=int(ExitCode.FAILURE))
                return ExitCode.FAILURE
            changed = sum(1 for step in op.steps if step["status"] == "success")
            op.success(f"{intent.operation.value.capitalize()} complete.", changed=changed)
        return ExitCode.OK

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------
    def _install(self, intent: Intent, op: OperationScope) -> None:
        LOGGER.info("Starting installation...")
        self.packages.install(self.config.packages)
        op.add_step("packages.install", detail=", ".join(self.config.packages))

        binary = self.runtime.ensure(self.workspace)
        op.add_step("runtime.install", detail=str(binary))

        LOGGER.info("Downloading and extracting application...")
        self.install_root.mkdir(parents=True, exist_ok=True)
        self.application.deploy(self.config.publish_url, self.install_root)
        op.add_step("application.deploy", detail=str(self.install_root))

        self.services.install_unit(build_unit_descriptor(self.config))
        self.services.enable()
        op.add_step("service.install")

        added = self.tasks.ensure_present(intent.task_identity, self.config.cron_line)
        op.add_step(
            "schedule.add",
            status="success" if added else "skipped",
            detail=intent.task_identity,
        )
        op.set_lock_wait_ms(self.tasks.lock_wait_ms)

        result = self.database.provision(self.install_root, enabled=intent.download_database)
        op.add_step("database.provision", status="success" if result else "skipped")

        LOGGER.info("Starting %s service...", self.config.systemd.unit_name)
        self.services.start()
        op.add_step("service.start")

        self._print_post_install()

    def _print_post_install(self) -> None:
        unit = self.config.systemd.unit_name
        message = textwrap.dedent(
            f"""\

            ################################################################

            Installation complete.

              - Edit config: {self.install_root / "init.conf"}
              - Restart:     systemctl restart {unit}
              - Full crontab: crontab {self.install_root / "Data" / "crontab"}

            ################################################################
            """
        )
        console = self.console or Console()
        console.print(message, markup=False, highlight=False, soft_wrap=True)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------
    def _update(self, intent: Intent, op: OperationScope) -> None:
        if not self.is_installed():
            raise PreconditionError(
                f"Install directory not found: {self.install_root}. Install first."
            )
        LOGGER.info("Starting update...")

        outcome = self.save_signal.request()
        op.add_step(
            "database.save",
            status="success" if outcome is SaveOutcome.SAVED else "skipped",
            detail=outcome.value,
        )

        LOGGER.info("Stopping %s service...", self.config.systemd.unit_name)
        self.services.stop()
        op.add_step("service.stop")

        self.application.deploy(self.config.publish_url, self.install_root)
        op.add_step("application.deploy", detail=str(self.install_root))

        LOGGER.info("Starting %s service...", self.config.systemd.unit_name)
        self.services.start()
        op.add_step("service.start")

        LOGGER.info("Update complete.")

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------
    def _remove(self, intent: Intent, op: OperationScope) -> None:
        LOGGER.info("Starting full removal...")

        if self.services.unit_exists():
            LOGGER.info(
                "Stopping and disabling %s service...", self.config.systemd.unit_name
            )
            self.services.stop()
            self.services.disable()
            self.services.remove_unit()
            LOGGER.info("Service removed")
            op.add_step("service.remove")
        else:
            LOGGER.info("Service unit not found, skipping")
            op.add_step("service.remove", status="skipped", detail="absent")

        if self.tasks.ensure_absent(intent.task_identity, self.config.cron_line):
            LOGGER.info("Cron removed")
            op.add_step("schedule.remove", detail=intent.task_identity)
        else:
            op.add_step("schedule.remove", status="skipped", detail="absent")
        op.set_lock_wait_ms(self.tasks.lock_wait_ms)

        if self.is_installed():
            LOGGER.info("Removing install directory: %s", self.install_root)
            shutil.rmtree(self.install_root)
            LOGGER.info("App directory removed")
            op.add_step("application.remove", detail=str(self.install_root))
        else:
            LOGGER.info("Install directory not found: %s, skipping", self.install_root)
            op.add_step("application.remove", status="skipped", detail="absent")

        LOGGER.info("Removal complete.")


__all__ = ["APP_ENTRYPOINT", "LifecycleOrchestrator", "build_unit_descriptor"]

"""Typer-powered command line for ``jacredctl``.

A single command covers the three lifecycle operations::

    jacredctl                    # install, including the database
    jacredctl --no-download-db   # install without the database
    jacredctl --update           # save DB, replace application files, restart
    jacredctl --remove           # remove service, cron job and install root

Flags are parsed into an immutable :class:`~jacredctl.intent.Intent` before any
side effect happens; unknown or conflicting flags exit with status 1.
"""
from __future__ import annotations

import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from types import ModuleType

import typer
from rich.console import Console

from . import TOOL_NAME, get_version
from .config import AppConfig, ConfigError, load_config
from .deploy import ArchiveDeployer, DatabaseProvisioner
from .exit_codes import ExitCode
from .intent import IntentError, Operation, resolve_intent
from .locking import LockManager
from .logging import StructuredLogger, configure_console_logging
from .orchestrator import LifecycleOrchestrator
from .privilege import ensure_elevated
from .providers import AptPackageInstaller, CrontabProvider, SystemdProvider
from .runtime import DotnetRuntimeInstaller
from .save_signal import SaveSignalClient
from .templates import TemplateEngine
from .workspace import TransientWorkspace

LOGGER = logging.getLogger(__name__)


def _click_exceptions_module() -> ModuleType:
    """Return the click exceptions module typer's commands raise from.

    Recent typer releases ship their own copy of click, whose exceptions are
    unrelated to the ones in an installed upstream click.
    """
    usage_error = next(
        cls for cls in typer.BadParameter.__mro__ if cls.__name__ == "UsageError"
    )
    return sys.modules[usage_error.__module__]


_click_errors = _click_exceptions_module()

console = Console()
err_console = Console(stderr=True)

EPILOG = (
    "Examples:\n\n"
    f"  {TOOL_NAME}                    install (download database)\n\n"
    f"  {TOOL_NAME} --no-download-db   install without database\n\n"
    f"  {TOOL_NAME} --update           update app from latest release\n\n"
    f"  {TOOL_NAME} --remove           remove service, cron and app directory\n\n"
    "Run as a specific user (cron added/removed for that user):\n\n"
    f"  sudo -u myservice {TOOL_NAME} [--update|--remove]"
)

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help=(
        "Install, update, or remove JacRed-FDB. "
        "Run as any user; sudo will be used when needed."
    ),
    epilog=EPILOG,
)

NO_DOWNLOAD_DB_OPTION = typer.Option(
    False,
    "--no-download-db",
    help="Do not download or unpack the initial database (install only).",
)
UPDATE_OPTION = typer.Option(
    False,
    "--update",
    help="Update app from latest release (saves DB, replaces files, restarts).",
)
REMOVE_OPTION = typer.Option(
    False,
    "--remove",
    help="Fully remove JacRed-FDB (service, cron, app directory).",
)
CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to jacredctl's YAML config file.",
)
VERSION_OPTION = typer.Option(
    False,
    "--version",
    "-V",
    help="Show the jacredctl version and exit.",
)


def build_orchestrator(config: AppConfig) -> LifecycleOrchestrator:
    """Wire the production adapters for *config*."""
    workspace = TransientWorkspace()
    templates = TemplateEngine.with_overrides(config.templates_dir)
    locks = LockManager(config.runtime_dir, config.lock_timeout)
    application = ArchiveDeployer(
        workspace=workspace,
        label="application",
        timeout=config.download_timeout,
    )
    database = DatabaseProvisioner(
        deployer=ArchiveDeployer(
            workspace=workspace,
            label="database",
            timeout=config.download_timeout,
        ),
        source_url=config.db_url,
    )
    return LifecycleOrchestrator(
        config=config,
        packages=AptPackageInstaller(),
        runtime=DotnetRuntimeInstaller(
            config=config.dotnet,
            download_timeout=config.download_timeout,
        ),
        services=SystemdProvider(
            templates=templates,
            unit_name=config.systemd.unit_name,
            systemd_dir=config.systemd.unit_dir,
            systemctl_bin=config.systemd.systemctl_bin,
        ),
        tasks=CrontabProvider(locks=locks),
        application=application,
        database=database,
        save_signal=SaveSignalClient(url=config.save_url, timeout=config.save_timeout),
        workspace=workspace,
        logger=StructuredLogger(config.logs_dir),
        console=console,
    )


@app.command()
def run(
    ctx: typer.Context,
    no_download_db: bool = NO_DOWNLOAD_DB_OPTION,
    update: bool = UPDATE_OPTION,
    remove: bool = REMOVE_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    version: bool = VERSION_OPTION,
) -> None:
    """Install, update, or remove JacRed-FDB."""
    if version:
        console.print(f"{TOOL_NAME} {get_version()}")
        raise typer.Exit(code=0)

    try:
        intent = resolve_intent(
            update=update,
            remove=remove,
            no_download_db=no_download_db,
            config_file=config_file,
        )
    except IntentError as exc:
        raise _click_errors.UsageError(str(exc), ctx=ctx) from exc

    argv = ctx.obj.get("argv", []) if isinstance(ctx.obj, dict) else []
    ensure_elevated(argv)

    if intent.operation is not Operation.INSTALL and not intent.download_database:
        LOGGER.info("--no-download-db only applies to install; ignoring")

    try:
        config = load_config(config_file=intent.config_file)
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        raise typer.Exit(code=int(ExitCode.FAILURE)) from exc
    LOGGER.debug("Resolved configuration: %s", config.to_dict())

    orchestrator = build_orchestrator(config)
    rc = orchestrator.run(intent)
    if rc is not ExitCode.OK:
        raise typer.Exit(code=int(rc))


def main(argv: Sequence[str] | None = None) -> int:
    """Console-script entry point; returns the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    configure_console_logging()
    command = typer.main.get_command(app)
    try:
        result = command.main(
            args=args,
            prog_name=TOOL_NAME,
            standalone_mode=False,
            obj={"argv": args},
        )
    except _click_errors.UsageError as exc:
        LOGGER.error("%s", exc.format_message())
        if exc.ctx is not None:
            err_console.print(exc.ctx.get_usage(), markup=False, highlight=False)
        err_console.print(f"Try '{TOOL_NAME} --help' for help.", markup=False, highlight=False)
        return int(ExitCode.FAILURE)
    except _click_errors.Abort:
        LOGGER.error("Interrupted")
        return int(ExitCode.FAILURE)
    except _click_errors.ClickException as exc:
        LOGGER.error("%s", exc.format_message())
        return int(ExitCode.FAILURE)
    if isinstance(result, int):
        return result
    return int(ExitCode.OK)


__all__ = ["app", "build_orchestrator", "main", "run"]

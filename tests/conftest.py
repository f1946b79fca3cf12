"""Pytest configuration, shared fixtures and in-memory adapters."""

from __future__ import annotations

import io
import logging
import threading
import zipfile
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest
from rich.console import Console

from jacredctl.config import AppConfig, load_config
from jacredctl.deploy import DatabaseProvisioner, DeployResult
from jacredctl.errors import FatalExternalError
from jacredctl.logging import StructuredLogger
from jacredctl.orchestrator import LifecycleOrchestrator
from jacredctl.providers.base import ServiceUnitDescriptor
from jacredctl.providers.crontab import add_entry, remove_entry
from jacredctl.save_signal import SaveOutcome
from jacredctl.workspace import TransientWorkspace


@pytest.fixture(autouse=True)
def _restore_package_logger() -> Iterator[None]:
    """Undo console handlers installed by a test."""
    logger = logging.getLogger("jacredctl")
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


# ----------------------------------------------------------------------
# Archives and a local HTTP server
# ----------------------------------------------------------------------
def make_zip(files: Mapping[str, str]) -> bytes:
    """Return the bytes of a zip archive containing *files*."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as bundle:
        for name, content in files.items():
            bundle.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def zip_factory() -> object:
    """Expose :func:`make_zip` to tests."""
    return make_zip


@dataclass
class LocalServer:
    """Routes served by the test HTTP server."""

    base_url: str
    routes: dict[str, tuple[int, bytes]] = field(default_factory=dict)
    hits: list[str] = field(default_factory=list)

    def url(self, path: str) -> str:
        """Return the absolute URL for *path*."""
        return f"{self.base_url}{path}"


@pytest.fixture
def http_server() -> Iterator[LocalServer]:
    """Serve ``LocalServer.routes`` on an ephemeral localhost port."""
    state = LocalServer(base_url="")

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802 - http.server API
            state.hits.append(self.path)
            status, body = state.routes.get(self.path, (404, b"not found"))
            self.send_response(status)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: object) -> None:  # noqa: A002
            return

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    state.base_url = f"http://127.0.0.1:{server.server_address[1]}"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield state
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


# ----------------------------------------------------------------------
# In-memory adapters for the orchestrator
# ----------------------------------------------------------------------
@dataclass
class FakeHost:
    """Shared record of every external call made by the fakes."""

    calls: list[str] = field(default_factory=list)


@dataclass
class FakePackageInstaller:
    """Records package installs; optionally fails."""

    host: FakeHost
    fail: bool = False

    def install(self, packages: Sequence[str]) -> None:
        self.host.calls.append("packages.install")
        if self.fail:
            raise FatalExternalError("apt-get install failed (exit 100)")


@dataclass
class FakeRuntimeInstaller:
    """Pretends to install the runtime."""

    host: FakeHost
    binary: Path = Path("/usr/share/dotnet/dotnet")

    def ensure(self, workspace: TransientWorkspace) -> Path:
        self.host.calls.append("runtime.ensure")
        return self.binary


@dataclass
class FakeServiceManager:
    """In-memory service supervisor."""

    host: FakeHost
    unit: ServiceUnitDescriptor | None = None
    enabled: bool = False
    running: bool = False
    fail_start: bool = False

    def unit_exists(self) -> bool:
        return self.unit is not None

    def install_unit(self, descriptor: ServiceUnitDescriptor) -> None:
        self.host.calls.append("service.install_unit")
        self.unit = descriptor

    def start(self) -> None:
        self.host.calls.append("service.start")
        if self.fail_start or self.unit is None:
            raise FatalExternalError("systemctl start failed")
        self.running = True

    def stop(self) -> None:
        self.host.calls.append("service.stop")
        self.running = False

    def enable(self) -> None:
        self.host.calls.append("service.enable")
        self.enabled = True

    def disable(self) -> None:
        self.host.calls.append("service.disable")
        self.enabled = False

    def remove_unit(self) -> bool:
        self.host.calls.append("service.remove_unit")
        existed = self.unit is not None
        self.unit = None
        return existed


@dataclass
class FakeTaskManager:
    """In-memory per-identity task lists using the real list algebra."""

    host: FakeHost
    tables: dict[str, list[str]] = field(default_factory=dict)
    lock_wait_ms: int = 0

    def ensure_present(self, identity: str, entry: str) -> bool:
        self.host.calls.append(f"tasks.ensure_present:{identity}")
        updated = add_entry(self.tables.get(identity, []), entry)
        if updated is None:
            return False
        self.tables[identity] = updated
        return True

    def ensure_absent(self, identity: str, entry: str) -> bool:
        self.host.calls.append(f"tasks.ensure_absent:{identity}")
        updated = remove_entry(self.tables.get(identity, []), entry)
        if updated is None:
            return False
        self.tables[identity] = updated
        return True


@dataclass
class FakeDeployer:
    """Writes a fixed file set into the destination instead of downloading."""

    host: FakeHost
    label: str
    files: dict[str, str]
    fail: bool = False

    def deploy(self, source_url: str, destination_root: Path) -> DeployResult:
        self.host.calls.append(f"{self.label}.deploy")
        if self.fail:
            raise FatalExternalError(f"Download of {source_url} failed: HTTP 404")
        destination_root.mkdir(parents=True, exist_ok=True)
        for name, content in self.files.items():
            target = destination_root / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return DeployResult(
            source_url=source_url,
            destination=destination_root,
            bytes_downloaded=0,
            files=len(self.files),
        )


@dataclass
class FakeSaveSignal:
    """Returns a canned outcome."""

    host: FakeHost
    outcome: SaveOutcome = SaveOutcome.UNREACHABLE

    def request(self) -> SaveOutcome:
        self.host.calls.append("save.request")
        return self.outcome


@dataclass
class Harness:
    """An orchestrator wired to fakes, plus handles on each fake."""

    config: AppConfig
    host: FakeHost
    packages: FakePackageInstaller
    runtime: FakeRuntimeInstaller
    services: FakeServiceManager
    tasks: FakeTaskManager
    application: FakeDeployer
    database: FakeDeployer
    save_signal: FakeSaveSignal
    orchestrator: LifecycleOrchestrator


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Configuration rooted under the temporary directory."""
    return load_config(
        config_file=tmp_path / "missing-config.yml",
        env={},
        overrides={
            "install_root": str(tmp_path / "home" / "jacred"),
            "logs_dir": str(tmp_path / "logs"),
            "runtime_dir": str(tmp_path / "run"),
            "templates_dir": str(tmp_path / "templates"),
            "systemd": {"unit_dir": str(tmp_path / "systemd")},
        },
    )


@pytest.fixture
def harness(app_config: AppConfig, tmp_path: Path) -> Harness:
    """Return an orchestrator backed entirely by in-memory fakes."""
    host = FakeHost()
    packages = FakePackageInstaller(host)
    runtime = FakeRuntimeInstaller(host)
    services = FakeServiceManager(host)
    tasks = FakeTaskManager(host)
    application = FakeDeployer(
        host,
        "application",
        {"JacRed.dll": "v1", "init.conf": "{}", "wwwroot/index.html": "<html/>"},
    )
    database = FakeDeployer(host, "database", {"Data/fdb/masterDb.bz": "db"})
    save_signal = FakeSaveSignal(host)
    orchestrator = LifecycleOrchestrator(
        config=app_config,
        packages=packages,
        runtime=runtime,
        services=services,
        tasks=tasks,
        application=application,  # type: ignore[arg-type]
        database=DatabaseProvisioner(deployer=database, source_url=app_config.db_url),  # type: ignore[arg-type]
        save_signal=save_signal,  # type: ignore[arg-type]
        workspace=TransientWorkspace(tmp_path / "scratch"),
        logger=StructuredLogger(app_config.logs_dir),
        console=Console(file=io.StringIO(), width=400),
    )
    return Harness(
        config=app_config,
        host=host,
        packages=packages,
        runtime=runtime,
        services=services,
        tasks=tasks,
        application=application,
        database=database,
        save_signal=save_signal,
        orchestrator=orchestrator,
    )

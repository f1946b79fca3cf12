"""Fetch-and-unpack deployers for the application release and its database."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .archive import download_file, extract_zip
from .workspace import TransientWorkspace

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeployResult:
    """Outcome of a single deploy call."""

    source_url: str
    destination: Path
    bytes_downloaded: int
    files: int


@dataclass(slots=True)
class ArchiveDeployer:
    """Download a zip archive and unpack it over a destination directory.

    Unpacking is additive: files left over from a previous version are never
    deleted. The downloaded archive is removed whether extraction succeeds or
    not.
    """

    workspace: TransientWorkspace
    label: str = "application"
    timeout: float = 60.0

    def deploy(self, source_url: str, destination_root: Path) -> DeployResult:
        """Deploy the archive at *source_url* into *destination_root*."""
        destination_root.mkdir(parents=True, exist_ok=True)
        with self.workspace.file(self.label, suffix=".zip") as archive_path:
            LOGGER.info("Downloading %s from %s...", self.label, source_url)
            size = download_file(source_url, archive_path, timeout=self.timeout)
            LOGGER.info("Unpacking %s...", self.label)
            members = extract_zip(archive_path, destination_root)
        files = sum(1 for name in members if not name.endswith("/"))
        LOGGER.info("%s deployed to %s", self.label.capitalize(), destination_root)
        return DeployResult(
            source_url=source_url,
            destination=destination_root,
            bytes_downloaded=size,
            files=files,
        )


@dataclass(slots=True)
class DatabaseProvisioner:
    """Optional bootstrap dataset, deployed with the same contract."""

    deployer: ArchiveDeployer
    source_url: str

    def provision(self, destination_root: Path, *, enabled: bool) -> DeployResult | None:
        """Deploy the dataset unless *enabled* is false."""
        if not enabled:
            LOGGER.info("Skipping database download (--no-download-db)")
            return None
        return self.deployer.deploy(self.source_url, destination_root)


__all__ = ["ArchiveDeployer", "DatabaseProvisioner", "DeployResult"]

"""Provider adapters for jacredctl."""
from __future__ import annotations

from .apt import AptPackageInstaller, PackageInstallError
from .base import (
    PackageInstaller,
    RuntimeInstaller,
    ScheduledTaskManager,
    ServiceManager,
    ServiceUnitDescriptor,
)
from .crontab import CrontabError, CrontabProvider
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "AptPackageInstaller",
    "CrontabError",
    "CrontabProvider",
    "PackageInstallError",
    "PackageInstaller",
    "RuntimeInstaller",
    "ScheduledTaskManager",
    "ServiceManager",
    "ServiceUnitDescriptor",
    "SystemdError",
    "SystemdProvider",
]

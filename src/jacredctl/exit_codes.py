"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit statuses reported by ``jacredctl``."""

    OK = 0
    FAILURE = 1

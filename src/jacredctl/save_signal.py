"""Best-effort "save database" request to the running application."""
from __future__ import annotations

import errno
import logging
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum

LOGGER = logging.getLogger(__name__)

_UNREACHABLE_ERRNOS = {errno.ECONNREFUSED, errno.EHOSTUNREACH, errno.ENETUNREACH}


class SaveOutcome(str, Enum):
    """Result of a save request."""

    SAVED = "saved"
    UNREACHABLE = "unreachable"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SaveSignalClient:
    """Ask the local instance to flush its database before it is stopped.

    Never raises. A refused connection is the expected outcome when the service
    is already stopped and is logged at info; every other failure is logged as
    a warning so misconfiguration is not mistaken for a stopped service.
    """

    url: str
    timeout: float = 10.0

    def request(self) -> SaveOutcome:
        """Send the save request and classify the outcome."""
        LOGGER.info("Saving database...")
        try:
            with urllib.request.urlopen(self.url, timeout=self.timeout) as response:  # noqa: S310
                response.read()
        except urllib.error.HTTPError as exc:
            LOGGER.warning("Save request returned HTTP %s; continuing", exc.code)
            return SaveOutcome.FAILED
        except urllib.error.URLError as exc:
            if _is_unreachable(exc.reason):
                LOGGER.info("Save request not delivered (service may be stopped)")
                return SaveOutcome.UNREACHABLE
            LOGGER.warning("Save request failed: %s; continuing", exc.reason)
            return SaveOutcome.FAILED
        except (OSError, ValueError) as exc:
            LOGGER.warning("Save request failed: %s; continuing", exc)
            return SaveOutcome.FAILED
        LOGGER.info("Save request sent")
        return SaveOutcome.SAVED


def _is_unreachable(reason: object) -> bool:
    if isinstance(reason, ConnectionRefusedError):
        return True
    if isinstance(reason, socket.timeout):
        return False
    return isinstance(reason, OSError) and reason.errno in _UNREACHABLE_ERRNOS


__all__ = ["SaveOutcome", "SaveSignalClient"]

"""Download and unpack helpers shared by the deployers."""
from __future__ import annotations

import shutil
import urllib.error
import urllib.request
import zipfile
from pathlib import Path

from . import TOOL_NAME, __version__
from .errors import FatalExternalError

_CHUNK_SIZE = 1024 * 1024


class DownloadError(FatalExternalError):
    """Raised when a remote artifact cannot be fetched."""


class ExtractionError(FatalExternalError):
    """Raised when an archive cannot be unpacked."""


def download_file(url: str, destination: Path, *, timeout: float = 60.0) -> int:
    """Stream *url* into *destination* and return the number of bytes written.

    Unreachable hosts and non-2xx responses raise :class:`DownloadError`.
    """
    try:
        request = urllib.request.Request(
            url, headers={"User-Agent": f"{TOOL_NAME}/{__version__}"}
        )
        with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
            status = getattr(response, "status", 200)
            if not 200 <= status < 300:
                raise DownloadError(f"Download of {url} failed: HTTP {status}")
            written = 0
            with destination.open("wb") as handle:
                while True:
                    chunk = response.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    handle.write(chunk)
                    written += len(chunk)
    except urllib.error.HTTPError as exc:
        raise DownloadError(f"Download of {url} failed: HTTP {exc.code}") from exc
    except urllib.error.URLError as exc:
        raise DownloadError(f"Download of {url} failed: {exc.reason}") from exc
    except (OSError, ValueError) as exc:
        raise DownloadError(f"Download of {url} failed: {exc}") from exc
    return written


def extract_zip(archive_path: Path, destination: Path) -> list[str]:
    """Unpack *archive_path* into *destination*.

    Existing files are overwritten; files not present in the archive are left
    alone. Returns the member names that were written.
    """
    root = destination.resolve()
    written: list[str] = []
    try:
        with zipfile.ZipFile(archive_path) as bundle:
            for member in bundle.infolist():
                target = (root / member.filename).resolve()
                if target != root and root not in target.parents:
                    raise ExtractionError(
                        f"Archive member escapes destination: {member.filename}"
                    )
                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with bundle.open(member) as source, target.open("wb") as sink:
                    shutil.copyfileobj(source, sink, _CHUNK_SIZE)
                mode = (member.external_attr >> 16) & 0o777
                if mode:
                    target.chmod(mode)
                written.append(member.filename)
    except zipfile.BadZipFile as exc:
        raise ExtractionError(f"{archive_path} is not a valid zip archive: {exc}") from exc
    except OSError as exc:
        raise ExtractionError(f"Extracting {archive_path} failed: {exc}") from exc
    return written


__all__ = ["DownloadError", "ExtractionError", "download_file", "extract_zip"]

"""Scoped scratch space that never outlives the operation using it.

Each temporary directory or file is owned by its own context manager and is
removed when the block exits, whether it completes, raises, or is torn down by
a termination signal (see :func:`signal_guard`).
"""
from __future__ import annotations

import logging
import shutil
import signal
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType

from .errors import OperationInterrupted

LOGGER = logging.getLogger(__name__)

GUARDED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


class TransientWorkspace:
    """Factory for temporary paths below *base_dir* (system temp by default)."""

    def __init__(self, base_dir: Path | None = None, *, prefix: str = "jacredctl-") -> None:
        """Remember where scratch paths are created."""
        self.base_dir = base_dir
        self.prefix = prefix

    @contextmanager
    def directory(self, label: str = "work") -> Iterator[Path]:
        """Yield a fresh temporary directory, removed on exit."""
        path = Path(tempfile.mkdtemp(prefix=f"{self.prefix}{label}-", dir=self._dir()))
        try:
            yield path
        finally:
            _remove(path)

    @contextmanager
    def file(self, label: str = "download", *, suffix: str = "") -> Iterator[Path]:
        """Yield the path of a fresh temporary file, removed on exit."""
        handle = tempfile.NamedTemporaryFile(  # noqa: SIM115 - closed immediately
            prefix=f"{self.prefix}{label}-",
            suffix=suffix,
            dir=self._dir(),
            delete=False,
        )
        handle.close()
        path = Path(handle.name)
        try:
            yield path
        finally:
            _remove(path)

    def _dir(self) -> str | None:
        if self.base_dir is None:
            return None
        self.base_dir.mkdir(parents=True, exist_ok=True)
        return str(self.base_dir)


def _remove(path: Path) -> None:
    if not path.exists() and not path.is_symlink():
        return
    LOGGER.info("Removing temporary path: %s", path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=True)
    else:
        path.unlink(missing_ok=True)


@contextmanager
def signal_guard() -> Iterator[None]:
    """Turn SIGTERM/SIGHUP into :class:`OperationInterrupted` inside the block.

    Raising lets every enclosing ``finally`` run, so scoped artifacts are
    cleaned up before the process exits. Previous handlers are restored.
    """

    def _raise(signum: int, frame: FrameType | None) -> None:
        raise OperationInterrupted(signum)

    previous = {}
    for signum in GUARDED_SIGNALS:
        try:
            previous[signum] = signal.signal(signum, _raise)
        except ValueError:
            # Not on the main thread; signals stay with their current handler.
            continue
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


__all__ = ["GUARDED_SIGNALS", "TransientWorkspace", "signal_guard"]

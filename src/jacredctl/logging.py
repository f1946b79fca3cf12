"""Logging helpers for jacredctl.

Two channels are provided:

* Console progress lines through the standard :mod:`logging` module. Every
  line is prefixed with the tool name; errors additionally go to stderr.
* A structured audit trail (:class:`StructuredLogger`) that appends one JSON
  record per lifecycle operation to ``operations.jsonl``. The audit trail is
  optional: when the log directory cannot be created or written the logger
  disables itself instead of failing the operation.
"""
from __future__ import annotations

import json
import logging
import os
import sys
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

from . import TOOL_NAME

_CONSOLE_HANDLER_FLAG = "_jacredctl_console"


class _MaxLevelFilter(logging.Filter):
    """Pass records strictly below *level*."""

    def __init__(self, level: int) -> None:
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def configure_console_logging(
    *,
    level: int = logging.INFO,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> logging.Logger:
    """Attach single-line ``[jacredctl]`` handlers to the package logger.

    Calling this more than once replaces the previously installed handlers.
    """
    logger = logging.getLogger(TOOL_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, _CONSOLE_HANDLER_FLAG, False):
            logger.removeHandler(handler)

    out_handler = logging.StreamHandler(stdout or sys.stdout)
    out_handler.setLevel(level)
    out_handler.addFilter(_MaxLevelFilter(logging.ERROR))
    out_handler.setFormatter(logging.Formatter(f"[{TOOL_NAME}] %(message)s"))

    err_handler = logging.StreamHandler(stderr or sys.stderr)
    err_handler.setLevel(logging.ERROR)
    err_handler.setFormatter(logging.Formatter(f"[{TOOL_NAME}] ERROR: %(message)s"))

    for handler in (out_handler, err_handler):
        setattr(handler, _CONSOLE_HANDLER_FLAG, True)
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result for one operation record."""

    def __init__(
        self,
        logger: StructuredLogger,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise the scope for *command*."""
        self._logger = logger
        self.command = command
        self.op_id = uuid.uuid4().hex
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self.lock_wait_ms: int | None = None
        self._started = time.monotonic()
        self._started_at = _now_iso()

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a named sub-step and its outcome."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def set_lock_wait_ms(self, value: int) -> None:
        """Record how long the operation waited for locks."""
        self.lock_wait_ms = int(value)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=errors if errors else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int | None = None,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if changed is not None:
            result["changed"] = changed
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON record describing this operation."""
        record: dict[str, object] = {
            "ts": self._started_at,
            "op_id": self.op_id,
            "tool": TOOL_NAME,
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "actor": {"uid": os.getuid(), "pid": os.getpid()},
            "steps": list(self.steps),
            "result": self.result,
            "duration_ms": int((time.monotonic() - self._started) * 1000),
        }
        if self.lock_wait_ms is not None:
            record["lock_wait_ms"] = self.lock_wait_ms
        return record


class StructuredLogger:
    """Append JSON operation records to ``<logs_dir>/operations.jsonl``."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the log directory, disabling the logger when unavailable."""
        self.logs_dir = logs_dir.expanduser()
        self._operations_log_path = self.logs_dir / "operations.jsonl"
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._disable(f"cannot create log directory {self.logs_dir}: {exc}")

    @property
    def enabled(self) -> bool:
        """Return ``True`` while records are still being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it when the block exits."""
        scope = OperationScope(self, command, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None or scope.result.get("status") != "error":
                scope.error(
                    str(exc) or type(exc).__name__,
                    context={"exception": type(exc).__name__},
                )
            raise
        finally:
            if scope.result is None:
                scope.error("Operation ended without recording a result.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            self._disable(f"cannot write {self._operations_log_path}: {exc}")

    def _disable(self, reason: str) -> None:
        self._enabled = False
        logging.getLogger(__name__).debug("Structured logging disabled: %s", reason)


__all__ = ["OperationScope", "StructuredLogger", "configure_console_logging"]

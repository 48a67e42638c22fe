"""Levelled console logger that tags every message with the middleware context."""

from __future__ import annotations

import sys
from datetime import datetime
from typing import Any, TextIO

COLOR_RESET = "\033[0m"
COLOR_GRAY = "\033[90m"
COLOR_GREEN = "\033[32m"
COLOR_BLUE = "\033[34m"
COLOR_CYAN = "\033[36m"

PREFIX_INFO = COLOR_GREEN + "INF" + COLOR_RESET
PREFIX_TRACE = COLOR_BLUE + "TRC" + COLOR_RESET
DELIMITER = COLOR_CYAN + ">" + COLOR_RESET

_TRACE = "trace"
_DEBUG = "debug"
_INFO = "info"
_ERROR = "error"

_ENABLED_LEVELS: dict[str, frozenset[str]] = {
    _TRACE: frozenset({_TRACE, _DEBUG, _INFO, _ERROR}),
    _DEBUG: frozenset({_DEBUG, _INFO, _ERROR}),
    _INFO: frozenset({_INFO, _ERROR}),
    _ERROR: frozenset({_ERROR}),
}
_DEFAULT_ENABLED = frozenset({_ERROR})


def _timestamp() -> str:
    stamp = datetime.now().astimezone().isoformat(timespec="seconds")
    if stamp.endswith("+00:00"):
        stamp = stamp[: -len("+00:00")] + "Z"
    return COLOR_GRAY + stamp + COLOR_RESET


def _format(fmt: str, args: tuple[Any, ...]) -> str:
    return fmt % args if args else fmt


class Logger:
    """Writes trace, debug and info messages to one stream and errors to another.

    The level is one of ``trace``, ``debug``, ``info`` or ``error`` (case
    insensitive); any other value leaves only error messages enabled.
    """

    def __init__(
        self,
        log_level: str = "",
        middleware: str = "",
        middleware_type: str = "",
        stream: TextIO | None = None,
        error_stream: TextIO | None = None,
    ) -> None:
        level = (log_level or "").strip().lower()
        self.level = level
        self._enabled = _ENABLED_LEVELS.get(level, _DEFAULT_ENABLED)
        self._stream = stream
        self._error_stream = error_stream
        self.context: dict[str, Any] = {
            "middlewareName": middleware,
            "middlewareType": middleware_type,
        }

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    @property
    def error_stream(self) -> TextIO:
        return self._error_stream if self._error_stream is not None else sys.stderr

    def _context_str(self) -> str:
        return "".join(f"{key}={value} " for key, value in self.context.items())

    def _line(self, args: tuple[Any, ...]) -> str:
        parts = list(args)
        if self.context:
            parts.insert(0, self._context_str())
        return " ".join(str(part) for part in parts)

    def _linef(self, fmt: str, args: tuple[Any, ...]) -> str:
        message = _format(fmt, args)
        if self.context:
            message = self._context_str() + message
        return message

    @staticmethod
    def _write(target: TextIO, text: str) -> None:
        target.write(text + "\n")
        target.flush()

    def trace(self, *args: Any) -> None:
        if _TRACE in self._enabled:
            line = " ".join([_timestamp(), PREFIX_TRACE, DELIMITER, self._line(args)])
            self._write(self.stream, line)

    def debug(self, *args: Any) -> None:
        if _DEBUG in self._enabled:
            self._write(self.stream, self._line(args))

    def info(self, *args: Any) -> None:
        if _INFO in self._enabled:
            line = " ".join([_timestamp(), PREFIX_INFO, DELIMITER, self._line(args)])
            self._write(self.stream, line)

    def error(self, *args: Any) -> None:
        if _ERROR in self._enabled:
            self._write(self.error_stream, self._line(args))

    def tracef(self, fmt: str, *args: Any) -> None:
        if _TRACE in self._enabled:
            line = f"{_timestamp()} {PREFIX_TRACE} {DELIMITER} {self._linef(fmt, args)}"
            self._write(self.stream, line)

    def debugf(self, fmt: str, *args: Any) -> None:
        if _DEBUG in self._enabled:
            self._write(self.stream, self._linef(fmt, args))

    def infof(self, fmt: str, *args: Any) -> None:
        if _INFO in self._enabled:
            line = f"{_timestamp()} {PREFIX_INFO} {DELIMITER} {self._linef(fmt, args)}"
            self._write(self.stream, line)

    def errorf(self, fmt: str, *args: Any) -> None:
        if _ERROR in self._enabled:
            self._write(self.error_stream, self._linef(fmt, args))
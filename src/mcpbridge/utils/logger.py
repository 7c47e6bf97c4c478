# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Logging utilities for the bridge.

Everything the bridge reports (child stderr, crash/restart notices, framing
errors, call latency) goes through the standard library ``logging`` module.
:func:`setup_logger` attaches one bridge-managed handler to the root logger:

* colored text for terminals,
* plain text when ``NO_COLOR`` is set,
* one JSON object per line when ``MCPBRIDGE_LOG_JSON`` is truthy, for log
  shippers reading a container's stdout.

Records may carry a ``duration_ms`` extra; text formats render it as a
``[12.35 ms]`` suffix and the JSON format as a numeric field.
"""

from __future__ import annotations

import logging
import os
from typing import Any, ClassVar, Final

import orjson


RESET: Final[str] = "\033[0m"
DIM: Final[str] = "\033[90m"
NAME_COLOR: Final[str] = "\033[94m"

DEFAULT_LOGGER_NAME: Final[str] = "mcpbridge"
ENV_LOG_LEVEL: Final[str] = "LOG_LEVEL"
ENV_LOG_JSON: Final[str] = "MCPBRIDGE_LOG_JSON"
ENV_NO_COLOR: Final[str] = "NO_COLOR"
DEFAULT_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"


def _duration(record: logging.LogRecord) -> float | None:
    value = getattr(record, "duration_ms", None)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


class PlainFormatter(logging.Formatter):
    """Text formatter that renders ``duration_ms`` as a suffix."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        duration = _duration(record)
        if duration is None:
            return text
        return f"{text} [{duration:.2f} ms]"


class ColoredFormatter(PlainFormatter):
    """:class:`PlainFormatter` with ANSI colors for the level and logger name."""

    LEVEL_COLORS: ClassVar[dict[int, str]] = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[1;31m",
        logging.CRITICAL: "\033[1;35m",
    }

    def format(self, record: logging.LogRecord) -> str:
        saved = record.levelname, record.name
        record.levelname = f"{self.LEVEL_COLORS.get(record.levelno, '')}{record.levelname}{RESET}"
        record.name = f"{NAME_COLOR}{record.name}{RESET}"
        try:
            text = logging.Formatter.format(self, record)
        finally:
            record.levelname, record.name = saved

        duration = _duration(record)
        if duration is not None:
            text += f"{DIM} [{duration:.2f} ms]{RESET}"
        return text


class JSONLineFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        duration = _duration(record)
        if duration is not None:
            payload["duration_ms"] = round(duration, 3)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode()


class BridgeLogHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """StreamHandler subclass managed by :func:`setup_logger`."""


def _has_bridge_handler(root: logging.Logger) -> bool:
    return any(isinstance(handler, BridgeLogHandler) for handler in root.handlers)


def _read_bool_env(key: str) -> bool:
    value = os.getenv(key)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(ENV_LOG_LEVEL) or logging.INFO
    if isinstance(level, int):
        return level

    value = logging.getLevelName(level.strip().upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logger(
    *,
    level: int | str | None = None,
    use_json: bool | None = None,
    use_color: bool | None = None,
    fmt: str | None = None,
    datefmt: str | None = DEFAULT_DATEFMT,
    force: bool = False,
) -> None:
    """Configure the root logger.

    Args:
        level: Override the log level. Falls back to ``LOG_LEVEL`` then
            ``logging.INFO``.
        use_json: Emit JSON lines. Defaults to ``MCPBRIDGE_LOG_JSON``.
        use_color: Colorize text output. Defaults to ``True`` unless ``NO_COLOR``
            is set or JSON output is active.
        fmt: Format string for text output.
        datefmt: Date format for all outputs.
        force: Replace the bridge handler if one is already attached.
    """
    root = logging.getLogger()

    if _has_bridge_handler(root):
        if not force:
            return
        for handler in list(root.handlers):
            if isinstance(handler, BridgeLogHandler):
                root.removeHandler(handler)
                handler.close()

    resolved_level = _resolve_level(level)
    root.setLevel(resolved_level)

    json_output = use_json if use_json is not None else _read_bool_env(ENV_LOG_JSON)
    if use_color is None:
        use_color = not json_output and not os.getenv(ENV_NO_COLOR)

    formatter: logging.Formatter
    if json_output:
        formatter = JSONLineFormatter(datefmt=datefmt)
    elif use_color:
        formatter = ColoredFormatter(fmt or DEFAULT_FORMAT, datefmt=datefmt)
    else:
        formatter = PlainFormatter(fmt or DEFAULT_FORMAT, datefmt=datefmt)

    handler = BridgeLogHandler()
    handler.setLevel(resolved_level)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a named logger, configuring the root logger on first use."""
    if not _has_bridge_handler(logging.getLogger()):
        setup_logger()
    return logging.getLogger(name or DEFAULT_LOGGER_NAME)


__all__ = [
    "DEFAULT_LOGGER_NAME",
    "BridgeLogHandler",
    "ColoredFormatter",
    "JSONLineFormatter",
    "PlainFormatter",
    "get_logger",
    "setup_logger",
]

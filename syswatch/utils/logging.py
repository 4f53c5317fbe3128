"""
Logging utilities for syswatch
==============================

- Human readable console lines, level name colored when stderr is a TTY
- ``--log-json``: one JSON object per line for journald / Loki shippers
- HTTP client and access-log chatter kept at WARNING

Modules log through ``logging.getLogger(__name__)``; this module only decides
where the records end up.
"""

import sys
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

NOISY_LOGGERS = ("urllib3", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, extras included as top-level keys"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
            "pid": record.process,
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(payload, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL    component       message`` with an ANSI-colored level"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True, stream=None):
        super().__init__(datefmt="%H:%M:%S")
        stream = stream if stream is not None else sys.stderr
        self.use_colors = use_colors and getattr(stream, "isatty", lambda: False)()

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.use_colors and record.levelno in self.LEVEL_COLORS:
            level = f"{self.LEVEL_COLORS[record.levelno]}{level}{self.RESET}"
        component = record.name.rsplit(".", 1)[-1]
        line = f"{self.formatTime(record, self.datefmt)} {level} {component:<15} {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: str = "INFO",
    enable_json: bool = False,
    enable_console_colors: bool = True,
    stream=None,
) -> logging.Logger:
    """
    Route all records to one stream handler on the root logger

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        enable_json: emit JSON lines instead of console text
        enable_console_colors: color the level name when the stream is a TTY
        stream: destination (stderr when omitted)

    Returns:
        The root logger
    """
    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    if enable_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ColoredConsoleFormatter(use_colors=enable_console_colors, stream=handler.stream))

    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    configure_logger_levels()
    return root


def configure_logger_levels(level: int = logging.WARNING) -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)

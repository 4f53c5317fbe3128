"""Per-user home directory disk usage, read from a pre-computed ``du -sb`` report"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def parse_home_usage(text: str, source: str = "<report>") -> Dict[str, int]:
    """
    Parse ``<bytes> <path>`` lines into {user_name: bytes}.

    The user name is the last path component. Blank lines and ``#`` comments
    are ignored; malformed lines are skipped with a warning. A user listed
    twice keeps the last value.
    """
    usage: Dict[str, int] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            logger.warning(f"{source}:{lineno}: expected '<bytes> <path>', got {raw!r}")
            continue
        size, path = parts
        try:
            value = int(size)
        except ValueError:
            logger.warning(f"{source}:{lineno}: invalid byte count {size!r}")
            continue
        name = PurePosixPath(path.strip().rstrip("/")).name
        if not name or value < 0:
            logger.warning(f"{source}:{lineno}: cannot derive user from {raw!r}")
            continue
        usage[name] = value
    return usage


class HomeUsageReport:
    """Re-reads the report file on every call to ``read()``"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[Dict[str, int]]:
        """Current usage, or None if the report is missing or unreadable"""
        try:
            text = self.path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Home usage report unavailable ({self.path}): {e}")
            return None
        return parse_home_usage(text, source=str(self.path))


__all__ = ["HomeUsageReport", "parse_home_usage"]

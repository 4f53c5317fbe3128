"""
Configuration management for syswatch
Handles CLI settings, environment overrides, the keep-alive target file
and the login.defs UID range
"""

import os
import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from ..errors import ConfigError
from ..utils.validation import SyswatchValidator

logger = logging.getLogger(__name__)

ENV_PREFIX = "SYSWATCH_"
DEFAULT_ADDRESS = "0.0.0.0"
DEFAULT_PORT = 9101
DEFAULT_UPSTREAM_PORT = 9100
DEFAULT_UPSTREAM_TIMEOUT = 10.0
DEFAULT_ALIVE_CHECK_CONFIG = Path("/etc/syswatch.toml")
DEFAULT_LOGIN_DEFS = Path("/etc/login.defs")


# ----------------------------------------------------------------------------
# Environment
# ----------------------------------------------------------------------------

def load_environment(dotenv_path: Optional[Path] = None) -> bool:
    """Load a .env file (if any) without clobbering variables already set"""
    return load_dotenv(dotenv_path=dotenv_path, override=False)


def env_default(name: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    """Return SYSWATCH_<name> converted with ``cast``, or ``default`` if unset"""
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}")


def env_flag(name: str) -> bool:
    return os.getenv(ENV_PREFIX + name, "").strip().lower() in ("1", "true", "yes", "on")


# ----------------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class ExporterConfig:
    """Immutable exporter settings, built once from the command line"""

    address: str = DEFAULT_ADDRESS
    port: int = DEFAULT_PORT
    show_all_users: bool = False
    combine_with_upstream: bool = False
    upstream_port: int = DEFAULT_UPSTREAM_PORT
    upstream_timeout: float = DEFAULT_UPSTREAM_TIMEOUT
    alive_check: bool = False
    alive_check_config: Path = DEFAULT_ALIVE_CHECK_CONFIG
    home_usage_report: Optional[Path] = None
    enable_speedtest: bool = True
    login_defs: Path = DEFAULT_LOGIN_DEFS
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def upstream_base_url(self) -> str:
        return f"http://127.0.0.1:{self.upstream_port}"

    @property
    def listen_url(self) -> str:
        return f"http://{self.address}:{self.port}/metrics"


@dataclass(frozen=True)
class KeepAliveTarget:
    """A remote endpoint probed by the watchdog"""

    hostname: str
    url: str


@dataclass(frozen=True)
class KeepAliveConfig:
    interval: int
    items: Tuple[KeepAliveTarget, ...]
    timeout: Optional[float] = None

    @property
    def probe_timeout(self) -> float:
        """Per-target budget; defaults to an even split of the interval"""
        if self.timeout is not None:
            return self.timeout
        return self.interval / len(self.items)


# ----------------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------------

def _load_document(path: Path) -> Dict[str, Any]:
    """Parse a TOML (default) or YAML (.yml/.yaml) document into a dict"""
    try:
        if path.suffix.lower() in (".yml", ".yaml"):
            with open(path, "r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
        else:
            with open(path, "rb") as f:
                content = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Keep alive configuration not found: {path}")
    except OSError as e:
        raise ConfigError(f"Cannot read keep alive configuration {path}: {e}")
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Parsing alive check config {path}: {e}")

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"Parsing alive check config {path}: top level must be a table/mapping")
    return content


def load_keep_alive_config(path: Path) -> KeepAliveConfig:
    """
    Load and validate the keep-alive target file

    Schema (TOML shown, YAML uses the same keys)::

        interval = 10          # seconds, > 0
        timeout = 2.5          # optional per-target seconds
        [[item]]
        hostname = "gpu01"
        url = "http://gpu01:9101/status"

    Raises:
        ConfigError: on a missing/unparseable file or any invalid field
    """
    path = Path(path)
    document = _load_document(path)

    if "interval" not in document:
        raise ConfigError(f"Keep alive configuration error: interval is missing in {path}")
    interval = SyswatchValidator.validate_interval(document["interval"])

    timeout = None
    if document.get("timeout") is not None:
        timeout = SyswatchValidator.validate_timeout(document["timeout"], maximum=interval)

    items = SyswatchValidator.validate_targets(document.get("item"))
    targets = tuple(KeepAliveTarget(hostname=i["hostname"], url=i["url"]) for i in items)

    return KeepAliveConfig(interval=interval, items=targets, timeout=timeout)


def load_login_defs(path: Path = DEFAULT_LOGIN_DEFS) -> Dict[str, str]:
    """
    Parse a login.defs style file (``KEY VALUE`` per line, ``#`` comments)

    Raises:
        ConfigError: if the file cannot be read
    """
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")

    values: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        parts = line.split(None, 1)
        if len(parts) == 2:
            values[parts[0]] = parts[1].strip()
    return values


def read_uid_range(path: Path = DEFAULT_LOGIN_DEFS) -> Tuple[int, int]:
    """Return (UID_MIN, UID_MAX) from login.defs"""
    values = load_login_defs(path)
    bounds: List[int] = []
    for key in ("UID_MIN", "UID_MAX"):
        if key not in values:
            raise ConfigError(f"Cannot get {key} from {path}")
        try:
            bounds.append(int(values[key]))
        except ValueError:
            raise ConfigError(f"Invalid {key} in {path}: {values[key]!r}")
    uid_min, uid_max = bounds
    if uid_min > uid_max:
        raise ConfigError(f"UID_MIN ({uid_min}) is larger than UID_MAX ({uid_max}) in {path}")
    return uid_min, uid_max


__all__ = [
    'ExporterConfig',
    'KeepAliveConfig',
    'KeepAliveTarget',
    'load_environment',
    'env_default',
    'env_flag',
    'load_keep_alive_config',
    'load_login_defs',
    'read_uid_range',
]

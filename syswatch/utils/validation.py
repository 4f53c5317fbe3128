"""
Validation utilities for syswatch
=================================

Constraint checks for everything read from the command line or from the
keep-alive configuration file. All failures raise ValidationError, which is a
ConfigError and therefore fatal at startup.
"""

import ipaddress
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ..errors import ConfigError

logger = logging.getLogger(__name__)


class ValidationError(ConfigError):
    """Custom exception for validation failures"""
    pass


class SyswatchValidator:
    """
    Validation system for syswatch settings

    Validates:
    - Listen address and ports
    - Keep-alive interval / timeout
    - Watchdog target entries and their URLs
    """

    ALLOWED_URL_SCHEMES = ('http', 'https')
    MIN_PORT = 1
    MAX_PORT = 65535

    @classmethod
    def validate_listen_address(cls, address: str, port: int) -> Tuple[str, int]:
        """
        Validate the address/port pair the exporter binds to

        Returns:
            (address, port) normalized

        Raises:
            ValidationError: If the address is not an IP literal or the port is out of range
        """
        try:
            parsed = ipaddress.ip_address(str(address).strip())
        except ValueError:
            raise ValidationError(f"Cannot parse listen address: {address!r}")
        cls.validate_port(port, "port")
        return str(parsed), int(port)

    @classmethod
    def validate_port(cls, port: Any, name: str = "port") -> int:
        if isinstance(port, bool) or not isinstance(port, int):
            raise ValidationError(f"{name} must be an integer, got {type(port).__name__}")
        if not cls.MIN_PORT <= port <= cls.MAX_PORT:
            raise ValidationError(f"{name} out of range: {port} (expected {cls.MIN_PORT}-{cls.MAX_PORT})")
        return port

    @classmethod
    def validate_interval(cls, interval: Any) -> int:
        """
        Validate the watchdog interval (whole seconds, strictly positive)

        Raises:
            ValidationError: If validation fails
        """
        if isinstance(interval, bool) or not isinstance(interval, int):
            raise ValidationError(
                f"Keep alive configuration error: interval must be an integer, got {interval!r}"
            )
        if interval <= 0:
            raise ValidationError(
                f"Keep alive configuration error: interval should be larger than 0 (got {interval})"
            )
        return interval

    @classmethod
    def validate_timeout(cls, timeout: Any, maximum: Optional[float] = None) -> float:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            raise ValidationError(
                f"Keep alive configuration error: timeout must be a number, got {timeout!r}"
            )
        if timeout <= 0:
            raise ValidationError(
                f"Keep alive configuration error: timeout should be larger than 0 (got {timeout})"
            )
        if maximum is not None and timeout > maximum:
            raise ValidationError(
                f"Keep alive configuration error: timeout should not exceed interval {maximum} (got {timeout})"
            )
        return float(timeout)

    @classmethod
    def validate_url(cls, url: Any) -> str:
        """Validate that a watchdog URL is an absolute http(s) URI with a host"""
        if not isinstance(url, str) or not url.strip():
            raise ValidationError(f"Keep alive configuration error: url must be a non-empty string, got {url!r}")
        try:
            parsed = urlparse(url.strip())
            # Accessing .port validates the port component
            parsed.port
        except ValueError as e:
            raise ValidationError(f"Keep alive configuration error: invalid url {url!r}: {e}")
        if parsed.scheme not in cls.ALLOWED_URL_SCHEMES:
            raise ValidationError(
                f"Keep alive configuration error: url {url!r} must use one of {', '.join(cls.ALLOWED_URL_SCHEMES)}"
            )
        if not parsed.hostname:
            raise ValidationError(f"Keep alive configuration error: url {url!r} has no host")
        return url.strip()

    @classmethod
    def validate_targets(cls, items: Any) -> List[Dict[str, str]]:
        """
        Validate the list of watchdog targets

        Returns:
            List of {'hostname', 'url'} dicts

        Raises:
            ValidationError: If the list is empty or any entry is malformed
        """
        if items is None or (isinstance(items, list) and not items):
            raise ValidationError("Keep alive configuration error: no item found")
        if not isinstance(items, list):
            raise ValidationError(f"Keep alive configuration error: item must be a list, got {type(items).__name__}")

        validated = []
        for position, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValidationError(f"Keep alive configuration error: item #{position} must be a table/mapping")
            hostname = item.get('hostname')
            if not isinstance(hostname, str) or not hostname.strip():
                raise ValidationError(f"Keep alive configuration error: item #{position} has no hostname")
            url = cls.validate_url(item.get('url'))
            validated.append({'hostname': hostname.strip(), 'url': url})
        return validated

    @classmethod
    def validate_log_level(cls, level: str) -> str:
        level = str(level).upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValidationError(f"Unknown log level: {level}")
        return level


__all__ = ['ValidationError', 'SyswatchValidator']

"""
Exception hierarchy for syswatch
================================

- ConfigError: startup-time configuration problems (always fatal)
- TelemetryError: NVML / process accounting failures
- UpstreamError: the peer exporter could not be merged into a scrape
"""


class SyswatchError(Exception):
    """Base class for every error raised by syswatch"""
    pass


class ConfigError(SyswatchError):
    """Invalid or unreadable configuration (listen address, keep-alive file, login.defs)"""
    pass


class TelemetryError(SyswatchError):
    """The GPU telemetry source failed; the current collection cycle is abandoned"""
    pass


class UpstreamError(SyswatchError):
    """Base class for failures while talking to the upstream exporter"""

    #: Fixed body returned to the scraper
    body = "Failed to get upstream data"


class UpstreamFetchError(UpstreamError):
    """Transport-level failure (connection refused, timeout, unreadable body)"""
    pass


class UpstreamServerError(UpstreamError):
    """The upstream exporter answered with a 5xx status"""

    body = "Failed to fetch upstream data"

    def __init__(self, status_code: int, url: str):
        super().__init__(f"Upstream {url} returned HTTP {status_code}")
        self.status_code = status_code
        self.url = url


__all__ = [
    "SyswatchError",
    "ConfigError",
    "TelemetryError",
    "UpstreamError",
    "UpstreamFetchError",
    "UpstreamServerError",
]

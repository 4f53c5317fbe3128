"""
Peer exporter merge
===================

Fetches the exposition text of another exporter on the same host (normally
node_exporter) and prepends it to the local body. Metric families are not
deduplicated; label sets are expected to differ between the two exporters.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import DEFAULT_UPSTREAM_TIMEOUT
from .errors import UpstreamFetchError, UpstreamServerError

logger = logging.getLogger(__name__)


class UpstreamMerger:
    """
    Client for one upstream exporter.

    Args:
        base_url: e.g. ``http://127.0.0.1:9100``
        timeout: per-request timeout in seconds
        session: optional ``requests.Session`` (one is created otherwise)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_UPSTREAM_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str, check_status: bool = True) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Upstream request to {url} failed: {e}")
            raise UpstreamFetchError(f"Upstream request to {url} failed: {e}") from e
        if check_status and r.status_code >= 500:
            logger.error(f"Upstream {url} returned HTTP {r.status_code}")
            raise UpstreamServerError(r.status_code, url)
        return r

    def fetch_metrics(self) -> bytes:
        return self._get("/metrics").content

    def merge(self, local_body: bytes) -> bytes:
        """Upstream body first, then the local body"""
        upstream_body = self.fetch_metrics()
        if upstream_body and not upstream_body.endswith(b"\n"):
            upstream_body += b"\n"
        return upstream_body + local_body

    def fetch_root(self) -> bytes:
        """Upstream ``/`` document, returned verbatim whatever its status"""
        return self._get("/", check_status=False).content

    def close(self) -> None:
        self.session.close()


__all__ = ["UpstreamMerger"]

"""
HTTP surface of the exporter
============================

- ``GET /metrics``   one collection cycle, optionally merged with upstream
- ``GET /``          upstream root document (404 without upstream mode)
- ``GET /status``    constant liveness answer
- ``GET /speedtest`` fixed 512 KiB zero payload, never compressed

Endpoints are plain ``def`` functions: FastAPI runs them on its worker
threads, which is where the blocking NVML and HTTP client calls belong.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Response

from . import __version__
from .errors import UpstreamError
from .monitoring.prom_metrics import CONTENT_TYPE, MetricState
from .monitoring.telemetry import SnapshotBuilder
from .upstream import UpstreamMerger

logger = logging.getLogger(__name__)

SPEEDTEST_SIZE = 512 * 1024
SPEEDTEST_PAYLOAD = bytes(SPEEDTEST_SIZE)
CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


def create_app(
    state: MetricState,
    builder: SnapshotBuilder,
    upstream: Optional[UpstreamMerger] = None,
    enable_speedtest: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application around already constructed collaborators.

    Args:
        state: metric state shared by all scrapes
        builder: per-cycle snapshot builder
        upstream: peer exporter client; None disables upstream mode
        enable_speedtest: serve ``/speedtest`` (404 otherwise)
    """
    app = FastAPI(title="syswatch", version=__version__, docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/metrics")
    def metrics():
        body = state.scrape(builder)
        if upstream is not None:
            try:
                body = upstream.merge(body)
            except UpstreamError as e:
                return Response(content=e.body, status_code=500, media_type="text/plain")
        return Response(content=body, media_type=CONTENT_TYPE, headers=CORS_HEADERS)

    @app.get("/")
    def root():
        if upstream is None:
            return Response(status_code=404)
        try:
            document = upstream.fetch_root()
        except UpstreamError as e:
            return Response(content=e.body, status_code=500, media_type="text/plain")
        return Response(content=document, media_type="text/html; charset=utf-8")

    @app.get("/status")
    def status():
        return Response(content="ok", media_type="text/plain", headers=CORS_HEADERS)

    if enable_speedtest:
        @app.get("/speedtest")
        def speedtest():
            return Response(
                content=SPEEDTEST_PAYLOAD,
                media_type="application/octet-stream",
                headers={"Content-Encoding": "identity", **CORS_HEADERS},
            )

    return app


__all__ = ["create_app", "SPEEDTEST_SIZE"]

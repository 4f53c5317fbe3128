"""Tests for the keep-alive watchdog."""

from __future__ import annotations

import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest import mock

import pytest
import requests

from syswatch.config import KeepAliveConfig, KeepAliveTarget
from syswatch.monitoring.prom_metrics import AliveStatus
from syswatch.watchdog import Watchdog

FAST_A = KeepAliveTarget("gpu01", "http://gpu01:9101/status")
FAST_B = KeepAliveTarget("gpu02", "http://gpu02:9101/status")
HUNG = KeepAliveTarget("gpu03", "http://gpu03:9101/status")


def _response(status_code: int) -> mock.Mock:
    r = mock.Mock()
    r.status_code = status_code
    return r


@pytest.fixture
def release():
    event = threading.Event()
    yield event
    event.set()


def _make(targets, interval=9, timeout=None):
    config = KeepAliveConfig(interval=interval, items=tuple(targets), timeout=timeout)
    alive = AliveStatus(config.items)
    return Watchdog(config, alive), alive


class TestProbe:
    @pytest.mark.parametrize("status,expected", [(200, True), (204, True), (301, False),
                                                 (404, False), (500, False)])
    def test_alive_iff_2xx(self, status, expected) -> None:
        watchdog, _ = _make([FAST_A])
        with mock.patch("syswatch.watchdog.requests.get", return_value=_response(status)) as get:
            assert watchdog.probe(FAST_A) is expected
        get.assert_called_once_with(FAST_A.url, timeout=9.0, allow_redirects=False, stream=True)
        watchdog.stop()

    def test_response_is_closed_unread(self) -> None:
        watchdog, _ = _make([FAST_A])
        response = _response(200)
        with mock.patch("syswatch.watchdog.requests.get", return_value=response):
            assert watchdog.probe(FAST_A) is True
        response.close.assert_called_once_with()
        watchdog.stop()

    def test_transport_error_is_dead(self) -> None:
        watchdog, _ = _make([FAST_A])
        with mock.patch("syswatch.watchdog.requests.get", side_effect=requests.ConnectionError("refused")):
            assert watchdog.probe(FAST_A) is False
        watchdog.stop()

    def test_probe_timeout_splits_interval(self) -> None:
        watchdog, _ = _make([FAST_A, FAST_B, HUNG], interval=9)
        assert watchdog.probe_timeout == pytest.approx(3.0)
        watchdog.stop()

    def test_configured_timeout_wins(self) -> None:
        watchdog, _ = _make([FAST_A, FAST_B, HUNG], interval=9, timeout=1.5)
        assert watchdog.probe_timeout == pytest.approx(1.5)
        watchdog.stop()


class TestTick:
    def test_unresponsive_target_does_not_delay_others(self, release) -> None:
        watchdog, alive = _make([FAST_A, HUNG, FAST_B], interval=9)

        def fake_get(url, timeout, allow_redirects, stream):
            if url == HUNG.url:
                release.wait(10)
                raise requests.Timeout("read timed out")
            return _response(200)

        with mock.patch("syswatch.watchdog.requests.get", side_effect=fake_get):
            started = time.monotonic()
            tick = threading.Thread(target=watchdog.run_tick)
            tick.start()

            deadline = started + watchdog.probe_timeout
            while time.monotonic() < deadline and not (alive.get(FAST_A) and alive.get(FAST_B)):
                time.sleep(0.01)
            assert alive.get(FAST_A) is True
            assert alive.get(FAST_B) is True
            assert time.monotonic() - started < watchdog.probe_timeout
            assert alive.get(HUNG) is None

            tick.join(timeout=watchdog.probe_timeout + 2)
            assert not tick.is_alive()
            assert alive.get(HUNG) is False
            assert time.monotonic() - started < watchdog.probe_timeout + 1

        release.set()
        watchdog.stop()

    def test_state_follows_latest_probe(self) -> None:
        watchdog, alive = _make([FAST_A], interval=2)
        outcomes = [_response(200), requests.ConnectionError("down"), _response(200)]
        seen = []
        with mock.patch("syswatch.watchdog.requests.get", side_effect=outcomes):
            for _ in outcomes:
                watchdog.run_tick()
                seen.append(alive.get(FAST_A))
        assert seen == [True, False, True]
        watchdog.stop()

    def test_unexpected_probe_error_is_dead_not_fatal(self) -> None:
        watchdog, alive = _make([FAST_A, FAST_B])

        def fake_get(url, timeout, allow_redirects, stream):
            if url == FAST_A.url:
                raise ValueError("bad header")
            return _response(200)

        with mock.patch("syswatch.watchdog.requests.get", side_effect=fake_get):
            results = watchdog.run_tick()
        assert results == {FAST_A: False, FAST_B: True}
        assert alive.get(FAST_A) is False
        watchdog.stop()

    def test_stuck_target_gets_no_second_request(self, release) -> None:
        watchdog, alive = _make([FAST_A, HUNG], interval=9, timeout=0.2)
        hung_calls = []

        def fake_get(url, timeout, allow_redirects, stream):
            if url == HUNG.url:
                hung_calls.append(url)
                if len(hung_calls) == 1:
                    release.wait(10)
                    raise requests.Timeout("read timed out")
            return _response(200)

        with mock.patch("syswatch.watchdog.requests.get", side_effect=fake_get):
            seen = [watchdog.run_tick() for _ in range(4)]
            assert seen == [{FAST_A: True, HUNG: False}] * 4
            assert len(hung_calls) == 1

            release.set()
            deadline = time.monotonic() + 5
            while watchdog.run_tick()[HUNG] is False and time.monotonic() < deadline:
                time.sleep(0.05)
            assert alive.get(HUNG) is True
            assert len(hung_calls) == 2

        watchdog.stop()

class TestLoop:
    def test_start_probes_immediately_and_stops(self) -> None:
        watchdog, alive = _make([FAST_A], interval=60)
        with mock.patch("syswatch.watchdog.requests.get", return_value=_response(200)):
            watchdog.start()
            deadline = time.monotonic() + 5
            while alive.get(FAST_A) is None and time.monotonic() < deadline:
                time.sleep(0.01)
            assert alive.get(FAST_A) is True
            assert watchdog.running
            watchdog.stop()
        assert not watchdog.running
        assert watchdog.ticks == 1


class _OkHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:
        self.send_response(200)
        self.send_header("Content-Length", "2")
        self.end_headers()
        self.wfile.write(b"ok")

    def log_message(self, *args) -> None:
        pass


@pytest.fixture
def ok_url(monkeypatch):
    monkeypatch.setenv("NO_PROXY", "127.0.0.1")
    monkeypatch.setenv("no_proxy", "127.0.0.1")
    server = ThreadingHTTPServer(("127.0.0.1", 0), _OkHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}/status"
    server.shutdown()
    server.server_close()


@pytest.fixture
def trickling_url():
    """Accepts connections, then sends one header line every 0.1s and never ends the headers"""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen()
    listener.settimeout(0.1)
    done = threading.Event()
    conns = []

    def serve() -> None:
        while not done.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                pass
            else:
                conn.sendall(b"HTTP/1.1 200 OK\r\n")
                conns.append(conn)
            for conn in conns:
                try:
                    conn.sendall(b"X-A: b\r\n")
                except OSError:
                    pass

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{listener.getsockname()[1]}/status"
    done.set()
    thread.join(timeout=2)
    for conn in conns:
        conn.close()
    listener.close()


class TestRealSockets:
    def test_trickling_peer_never_marks_healthy_peer_dead(self, ok_url, trickling_url) -> None:
        healthy = KeepAliveTarget("gpu01", ok_url)
        slow = KeepAliveTarget("gpu02", trickling_url)
        watchdog, alive = _make([healthy, slow], interval=1)
        assert watchdog.probe_timeout == pytest.approx(0.5)

        seen = []
        for _ in range(6):
            results = watchdog.run_tick()
            seen.append((results[healthy], results[slow]))
        watchdog.stop()

        assert seen == [(True, False)] * 6
        assert alive.get(healthy) is True

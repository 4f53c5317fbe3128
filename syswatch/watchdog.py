"""
Keep-alive watchdog
===================

Background thread that probes every configured target once per interval and
records the outcome in an ``AliveStatus``:

- probes of one tick run concurrently on a thread pool with one worker per
  target
- each probe has its own timeout; a probe still running when the budget
  elapses is recorded dead, without holding up the other targets
- a target whose previous probe is still stuck (e.g. a peer trickling header
  bytes) is recorded dead without a new request, so it never occupies more
  than its own worker
- ticks are scheduled on a fixed wall-clock grid; an overrunning tick starts
  the next one immediately
- probe errors are never fatal to the loop
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout, as_completed
from typing import Dict, Optional

import requests

from .config import KeepAliveConfig, KeepAliveTarget
from .monitoring.prom_metrics import AliveStatus

logger = logging.getLogger(__name__)


class Watchdog:
    """
    Typical usage:
        watchdog = Watchdog(keep_alive_config, alive_status)
        watchdog.start()
        ...
        watchdog.stop()
    """

    def __init__(self, config: KeepAliveConfig, alive: AliveStatus):
        self.config = config
        self.alive = alive
        self.interval = float(config.interval)
        self.probe_timeout = float(config.probe_timeout)
        self._executor = ThreadPoolExecutor(
            max_workers=len(config.items),
            thread_name_prefix="syswatch-probe",
        )
        # Probes that outlived their tick, by target
        self._in_flight: Dict[KeepAliveTarget, Future] = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0

    # ----------------------------------------------------------------- probes
    def probe(self, target: KeepAliveTarget) -> bool:
        """Alive iff the target answers with a 2xx status (redirects not followed, body not read)"""
        try:
            r = requests.get(target.url, timeout=self.probe_timeout, allow_redirects=False, stream=True)
        except requests.RequestException as e:
            logger.debug(f"Probe {target.hostname} ({target.url}) failed: {e}")
            return False
        try:
            alive = 200 <= r.status_code < 300
        finally:
            r.close()
        if not alive:
            logger.debug(f"Probe {target.hostname} ({target.url}) returned HTTP {r.status_code}")
        return alive

    def _record(self, target: KeepAliveTarget, alive: bool) -> None:
        previous = self.alive.get(target)
        self.alive.update(target, alive)
        if previous is not None and previous != alive:
            state = "alive" if alive else "dead"
            logger.info(f"{target.hostname} ({target.url}) is now {state}")

    def _submit(self, target: KeepAliveTarget) -> Optional[Future]:
        stuck = self._in_flight.get(target)
        if stuck is not None:
            if not stuck.done():
                return None
            del self._in_flight[target]
        return self._executor.submit(self.probe, target)

    def run_tick(self) -> Dict[KeepAliveTarget, bool]:
        """Probe all targets once; returns what was recorded"""
        results: Dict[KeepAliveTarget, bool] = {}
        futures: Dict[Future, KeepAliveTarget] = {}
        for target in self.config.items:
            fut = self._submit(target)
            if fut is None:
                logger.debug(f"Probe {target.hostname} ({target.url}) still running from an earlier tick")
                results[target] = False
                self._record(target, False)
            else:
                futures[fut] = target

        try:
            for fut in as_completed(futures, timeout=self.probe_timeout):
                target = futures[fut]
                try:
                    alive = fut.result()
                except Exception as e:
                    logger.warning(f"Probe {target.hostname} raised {type(e).__name__}: {e}")
                    alive = False
                results[target] = alive
                self._record(target, alive)
        except FuturesTimeout:
            for fut, target in futures.items():
                if target in results:
                    continue
                self._in_flight[target] = fut
                logger.debug(f"Probe {target.hostname} ({target.url}) timed out after {self.probe_timeout:.2f}s")
                results[target] = False
                self._record(target, False)

        self.ticks += 1
        return results

    # ------------------------------------------------------------------- loop
    def _run(self) -> None:
        next_tick = time.monotonic()
        while not self._stop.is_set():
            try:
                self.run_tick()
            except Exception as e:
                logger.error(f"Watchdog tick failed: {e}", exc_info=True)

            next_tick += self.interval
            delay = next_tick - time.monotonic()
            if delay < 0:
                logger.warning(f"Watchdog tick overran its {self.interval:.0f}s interval by {-delay:.2f}s")
                next_tick = time.monotonic()
                delay = 0
            if self._stop.wait(delay):
                break

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="syswatch-watchdog", daemon=True)
        self._thread.start()
        logger.info(
            f"Watchdog started: {len(self.config.items)} target(s), interval {self.interval:.0f}s, "
            f"probe timeout {self.probe_timeout:.2f}s"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout if timeout is not None else self.probe_timeout + 1)
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Watchdog stopped")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())


__all__ = ["Watchdog"]

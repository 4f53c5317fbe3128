"""
Prometheus metrics for syswatch
===============================

- ``MetricState``: gauge families projected from the latest Snapshot, plus
  the ``health`` gauge. Collection, ingest and render of one scrape run under
  a single lock so a reader never sees series from two different cycles.
- ``AliveStatus``: last probe outcome per watchdog target, written by the
  watchdog thread and rendered by the scrape path.

Everything lives in a private ``CollectorRegistry`` so the output only
contains syswatch families (no process/platform collectors).
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple, Union

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from ..config import KeepAliveTarget
from ..errors import TelemetryError
from .home_usage import HomeUsageReport
from .telemetry import Snapshot, SnapshotBuilder

logger = logging.getLogger(__name__)

# Pinned: newer prometheus_client releases advertise exposition 1.0.0 in CONTENT_TYPE_LATEST
CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

CycleOutcome = Union[Snapshot, BaseException]


class AliveStatus:
    """
    Thread-safe map of watchdog target -> last reachability.

    ``None`` means the target has not been probed yet; such targets are not
    rendered.
    """

    def __init__(self, targets: Iterable[KeepAliveTarget] = ()):
        self._lock = threading.Lock()
        self._status: Dict[KeepAliveTarget, Optional[bool]] = {t: None for t in targets}

    def update(self, target: KeepAliveTarget, alive: bool) -> None:
        with self._lock:
            self._status[target] = bool(alive)

    def get(self, target: KeepAliveTarget) -> Optional[bool]:
        with self._lock:
            return self._status.get(target)

    def items(self) -> List[Tuple[KeepAliveTarget, Optional[bool]]]:
        with self._lock:
            return list(self._status.items())


class MetricState:
    """
    Gauge families for the GPU exporter.

    Typical usage:
        state = MetricState(alive=alive_status)
        body = state.scrape(builder)     # collect + ingest + render, locked
    """

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        alive: Optional[AliveStatus] = None,
        home_usage: Optional[HomeUsageReport] = None,
    ):
        self.registry = registry or CollectorRegistry(auto_describe=True)
        self.alive = alive
        self.home_usage = home_usage
        self._lock = threading.Lock()
        self._init_driver_metrics()
        self._init_device_metrics()
        self._init_user_metrics()
        self._init_node_metrics()

    # ------------------------------------------------------------------ init
    def _init_driver_metrics(self) -> None:
        self.health = Gauge(
            "node_nvidia_driver_status",
            "Whether the last NVML collection cycle succeeded (1) or failed (0)",
            registry=self.registry,
        )
        self.driver_version = Gauge(
            "node_nvidia_driver_version",
            "NVIDIA driver version",
            ["version"],
            registry=self.registry,
        )

    def _init_device_metrics(self) -> None:
        self.device_info = Gauge(
            "node_nvidia_device_info",
            "GPU device information",
            ["index", "minor_number", "name", "uuid"],
            registry=self.registry,
        )
        self.fan_speed = Gauge(
            "nvidia_fan_speed",
            "Fan speed (percent of maximum)",
            ["minor_number"],
            registry=self.registry,
        )
        self.memory_total = Gauge(
            "node_nvidia_total_memory_bytes",
            "Total GPU memory (bytes)",
            ["minor_number"],
            registry=self.registry,
        )
        self.memory_used = Gauge(
            "nvidia_used_memory_bytes",
            "Used GPU memory (bytes)",
            ["minor_number"],
            registry=self.registry,
        )
        self.power_usage = Gauge(
            "node_nvidia_power_usage",
            "GPU power usage (milliwatts)",
            ["minor_number"],
            registry=self.registry,
        )
        self.temperature = Gauge(
            "node_nvidia_temperature_celsius",
            "GPU temperature (C)",
            ["minor_number"],
            registry=self.registry,
        )
        self.utilization_gpu = Gauge(
            "node_nvidia_utilization_gpu_ratio",
            "GPU utilization (0-1)",
            ["minor_number"],
            registry=self.registry,
        )
        self.utilization_memory = Gauge(
            "node_nvidia_utilization_memory_ratio",
            "GPU memory controller utilization (0-1)",
            ["minor_number"],
            registry=self.registry,
        )

    def _init_user_metrics(self) -> None:
        self.user_memory = Gauge(
            "node_nvidia_user_used_memory_bytes",
            "GPU memory used by each user (bytes)",
            ["index", "user_name", "uid"],
            registry=self.registry,
        )
        self.user_cards = Gauge(
            "node_nvidia_user_cards",
            "Number of GPUs on which each user holds memory",
            ["user_name"],
            registry=self.registry,
        )

    def _init_node_metrics(self) -> None:
        self.alive_status = Gauge(
            "node_alive_status",
            "Alive status of machine",
            ["hostname", "url"],
            registry=self.registry,
        )
        self.home_disk_usage = Gauge(
            "node_user_home_disk_usage_bytes",
            "Disk usage of each user's home directory (bytes)",
            ["user_name"],
            registry=self.registry,
        )

    # ---------------------------------------------------------------- update
    def _cycle_families(self) -> List[Gauge]:
        return [
            self.driver_version,
            self.device_info,
            self.fan_speed,
            self.memory_total,
            self.memory_used,
            self.power_usage,
            self.temperature,
            self.utilization_gpu,
            self.utilization_memory,
            self.user_memory,
            self.user_cards,
        ]

    def _clear_cycle(self) -> None:
        for family in self._cycle_families():
            family.clear()

    def ingest(self, outcome: CycleOutcome) -> None:
        """
        Replace every device/user series with ``outcome``.

        A Snapshot repopulates all families and sets health to 1; an exception
        clears them and sets health to 0. Never raises for a failed cycle.
        """
        self._clear_cycle()

        if isinstance(outcome, BaseException):
            logger.error(f"GPU collection failed: {outcome}")
            self.health.set(0)
            return

        snapshot = outcome
        self.driver_version.labels(version=snapshot.driver_version).set(1)

        for d in snapshot.devices:
            minor = str(d.minor_number)
            self.device_info.labels(
                index=str(d.index), minor_number=minor, name=d.name, uuid=d.uuid
            ).set(1)
            self.fan_speed.labels(minor_number=minor).set(d.fan_speed)
            self.memory_total.labels(minor_number=minor).set(d.memory_total)
            self.memory_used.labels(minor_number=minor).set(d.memory_used)
            self.power_usage.labels(minor_number=minor).set(d.power_usage)
            self.temperature.labels(minor_number=minor).set(d.temperature)
            self.utilization_gpu.labels(minor_number=minor).set(d.utilization_gpu / 100)
            self.utilization_memory.labels(minor_number=minor).set(d.utilization_memory / 100)

        for agg in snapshot.user_aggregates:
            self.user_memory.labels(
                index=str(agg.device_index), user_name=agg.display_name, uid=str(agg.uid)
            ).set(agg.used_memory_bytes)

        for user_name, count in snapshot.user_cards.items():
            self.user_cards.labels(user_name=user_name).set(count)

        self.health.set(1)

    def update_home_usage(self) -> None:
        self.home_disk_usage.clear()
        if self.home_usage is None:
            return
        usage = self.home_usage.read()
        if usage is None:
            return
        for user_name, used in usage.items():
            self.home_disk_usage.labels(user_name=user_name).set(used)

    def update_alive_status(self) -> None:
        self.alive_status.clear()
        if self.alive is None:
            return
        for target, alive in self.alive.items():
            if alive is None:
                continue
            self.alive_status.labels(hostname=target.hostname, url=target.url).set(1 if alive else 0)

    def render(self) -> bytes:
        """Exposition text for the current state"""
        self.update_alive_status()
        return generate_latest(self.registry)

    def scrape(self, builder: SnapshotBuilder) -> bytes:
        """Run one collection cycle and render it, all under the state lock"""
        with self._lock:
            try:
                outcome: CycleOutcome = builder.build()
            except TelemetryError as e:
                outcome = e
            except Exception as e:
                logger.error(f"Collection cycle raised {type(e).__name__}", exc_info=True)
                outcome = e
            self.ingest(outcome)
            self.update_home_usage()
            return self.render()


__all__ = ["MetricState", "AliveStatus", "CycleOutcome", "CONTENT_TYPE"]

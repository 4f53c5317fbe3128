"""
GPU telemetry collection for syswatch
=====================================

- ``TelemetrySource``: the queryable hardware interface (NVML in production,
  fakes in tests)
- ``NvmlTelemetrySource``: pynvml implementation; process owners via psutil
- ``SnapshotBuilder``: one immutable ``Snapshot`` per collection cycle, or a
  ``TelemetryError`` and nothing at all
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Tuple, runtime_checkable

import psutil
import pynvml

from ..errors import TelemetryError
from .attribution import Attributor, ProcessUsage, UserAggregate, sum_by_uid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Device:
    """Sensor readings of one GPU for one cycle, keyed by ``minor_number``"""

    index: int
    minor_number: int
    name: str
    uuid: str
    temperature: int          # Celsius
    power_usage: int          # milliwatts, as reported by NVML
    fan_speed: int            # percent, fan 0
    memory_total: int         # bytes
    memory_used: int          # bytes
    utilization_gpu: int      # 0-100
    utilization_memory: int   # 0-100


@dataclass(frozen=True)
class Snapshot:
    driver_version: str
    devices: Tuple[Device, ...] = ()
    user_aggregates: Tuple[UserAggregate, ...] = ()
    user_cards: Mapping[str, int] = field(default_factory=dict)


@runtime_checkable
class TelemetrySource(Protocol):
    """Structural protocol for GPU telemetry backends. Failures raise TelemetryError."""

    def driver_version(self) -> str: ...

    def device_count(self) -> int: ...

    def read_device(self, index: int) -> Device: ...

    def process_usage(self, index: int) -> List[ProcessUsage]: ...


def _decode(value: Any) -> str:
    # nvidia-ml-py < 11.515 returns bytes
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class NvmlTelemetrySource:
    """NVIDIA telemetry through pynvml (package ``nvidia-ml-py``)."""

    def __init__(self) -> None:
        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as e:
            raise TelemetryError(f"NVML initialization failed: {e}") from e
        self._initialized = True
        logger.info(f"NVML initialized, driver {self.driver_version()}, {self.device_count()} GPU(s)")

    def shutdown(self) -> None:
        if not self._initialized:
            return
        try:
            pynvml.nvmlShutdown()
        except pynvml.NVMLError as e:
            logger.warning(f"NVML shutdown failed: {e}")
        self._initialized = False

    def driver_version(self) -> str:
        try:
            return _decode(pynvml.nvmlSystemGetDriverVersion())
        except pynvml.NVMLError as e:
            raise TelemetryError(f"Cannot read driver version: {e}") from e

    def device_count(self) -> int:
        try:
            return int(pynvml.nvmlDeviceGetCount())
        except pynvml.NVMLError as e:
            raise TelemetryError(f"Cannot enumerate GPUs: {e}") from e

    def read_device(self, index: int) -> Device:
        try:
            h = pynvml.nvmlDeviceGetHandleByIndex(index)
            mem = pynvml.nvmlDeviceGetMemoryInfo(h)
            util = pynvml.nvmlDeviceGetUtilizationRates(h)
            return Device(
                index=index,
                minor_number=int(pynvml.nvmlDeviceGetMinorNumber(h)),
                name=_decode(pynvml.nvmlDeviceGetName(h)),
                uuid=_decode(pynvml.nvmlDeviceGetUUID(h)),
                temperature=int(pynvml.nvmlDeviceGetTemperature(h, pynvml.NVML_TEMPERATURE_GPU)),
                power_usage=int(pynvml.nvmlDeviceGetPowerUsage(h)),
                fan_speed=int(pynvml.nvmlDeviceGetFanSpeed_v2(h, 0)),
                memory_total=int(mem.total),
                memory_used=int(mem.used),
                utilization_gpu=int(util.gpu),
                utilization_memory=int(util.memory),
            )
        except pynvml.NVMLError as e:
            raise TelemetryError(f"Cannot read GPU {index}: {e}") from e

    def process_usage(self, index: int) -> List[ProcessUsage]:
        try:
            h = pynvml.nvmlDeviceGetHandleByIndex(index)
            processes = list(pynvml.nvmlDeviceGetComputeRunningProcesses(h))
            processes += list(pynvml.nvmlDeviceGetGraphicsRunningProcesses(h))
        except pynvml.NVMLError as e:
            raise TelemetryError(f"Cannot list processes on GPU {index}: {e}") from e

        owned = []
        for proc in processes:
            try:
                uid = psutil.Process(proc.pid).uids().real
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                # Exited since NVML listed it, or owner unreadable
                continue
            owned.append((uid, getattr(proc, "usedGpuMemory", None)))
        return sum_by_uid(owned)


class SnapshotBuilder:
    """
    Build one Snapshot per collection cycle.

    Any TelemetryError from the source propagates: a cycle either yields a
    complete Snapshot or nothing.
    """

    def __init__(self, source: TelemetrySource, attributor: Attributor):
        self.source = source
        self.attributor = attributor

    def build(self) -> Snapshot:
        version = self.source.driver_version()
        devices: List[Device] = []
        usage: Dict[int, Sequence[ProcessUsage]] = {}
        for index in range(self.source.device_count()):
            devices.append(self.source.read_device(index))
            usage[index] = self.source.process_usage(index)

        attribution = self.attributor.attribute(usage)
        return Snapshot(
            driver_version=version,
            devices=tuple(devices),
            user_aggregates=attribution.aggregates,
            user_cards=dict(attribution.user_cards),
        )


__all__ = ["Device", "Snapshot", "TelemetrySource", "NvmlTelemetrySource", "SnapshotBuilder"]

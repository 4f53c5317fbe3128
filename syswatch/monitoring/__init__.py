"""
GPU monitoring and metric state for syswatch
============================================

This package provides:
- OS account directory and GPU memory attribution
- NVML telemetry collection into per-cycle snapshots
- Prometheus metric state and watchdog alive status
- Optional home directory disk usage report
"""

from .users import UserDirectory, UserIdentity
from .attribution import Attributor, ProcessUsage, UserAggregate
from .telemetry import Device, Snapshot, SnapshotBuilder, TelemetrySource, NvmlTelemetrySource
from .prom_metrics import MetricState, AliveStatus
from .home_usage import HomeUsageReport

__all__ = [
    'UserDirectory',
    'UserIdentity',
    'Attributor',
    'ProcessUsage',
    'UserAggregate',
    'Device',
    'Snapshot',
    'SnapshotBuilder',
    'TelemetrySource',
    'NvmlTelemetrySource',
    'MetricState',
    'AliveStatus',
    'HomeUsageReport',
]

"""
syswatch - GPU metrics exporter
===============================

Samples NVIDIA GPU state and per-process GPU memory, attributes the memory to
operating-system users, and serves the result as Prometheus exposition text.

Key Features:
- Per-device sensor gauges and a driver health gauge
- Per-user GPU memory and card counts
- Optional merge with a node_exporter running on the same host
- Optional watchdog probing a list of remote endpoints
- Optional per-user home directory disk usage from a report file

Quick Start:
-----------
```
syswatch --port 9101 --combine-with-upstream --upstream-port 9100
curl http://localhost:9101/metrics
```

Architecture:
- cli.py: Command line entry point
- server.py: FastAPI application (/metrics, /, /status, /speedtest)
- monitoring/: Users, attribution, NVML telemetry, Prometheus state
- upstream.py: Peer exporter merge
- watchdog.py: Background reachability probes
- config/: Settings, environment overrides, keep-alive config
- utils/: Logging and validation helpers
"""

__version__ = "0.1.0"
__description__ = "Prometheus exporter for NVIDIA GPU and per-user GPU memory usage"


def get_version():
    """Get the current version of syswatch"""
    return __version__


__all__ = ['__version__', 'get_version']

"""
syswatch command line
=====================

Usage:
    syswatch [options]

Options:
    -a, --address               Listen address (default: 0.0.0.0)
    -p, --port                  Listen port (default: 9101)
    -s, --show-all-users        Also report system accounts and unknown uids
    -c, --combine-with-upstream Prepend the upstream exporter's /metrics
    -u, --upstream-port         Upstream exporter port (default: 9100)
    --alive-check               Enable the keep-alive watchdog
    --alive-check-config        Watchdog target file (TOML or YAML)
    --home-usage-report         du -sb report for per-user home usage

Every default can also be given as a SYSWATCH_* environment variable or in a
.env file, e.g. SYSWATCH_PORT=9400.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

from . import __version__
from .config import (
    DEFAULT_ADDRESS,
    DEFAULT_ALIVE_CHECK_CONFIG,
    DEFAULT_LOGIN_DEFS,
    DEFAULT_PORT,
    DEFAULT_UPSTREAM_PORT,
    DEFAULT_UPSTREAM_TIMEOUT,
    ExporterConfig,
    env_default,
    env_flag,
    load_environment,
    load_keep_alive_config,
)
from .errors import SyswatchError
from .monitoring import (
    AliveStatus,
    Attributor,
    HomeUsageReport,
    MetricState,
    NvmlTelemetrySource,
    SnapshotBuilder,
    UserDirectory,
)
from .server import create_app
from .upstream import UpstreamMerger
from .utils.logging import setup_logging
from .utils.validation import SyswatchValidator
from .watchdog import Watchdog

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="syswatch",
        description="Prometheus exporter for NVIDIA GPUs and per-user GPU memory usage",
    )
    parser.add_argument('-a', '--address', default=env_default('ADDRESS', DEFAULT_ADDRESS),
                        help='Listen address (default: %(default)s)')
    parser.add_argument('-p', '--port', type=int, default=env_default('PORT', DEFAULT_PORT, int),
                        help='Listen port (default: %(default)s)')
    parser.add_argument('-s', '--show-all-users', action='store_true', default=env_flag('SHOW_ALL_USERS'),
                        help='Show system accounts and unresolvable uids too')
    parser.add_argument('-c', '--combine-with-upstream', action='store_true',
                        default=env_flag('COMBINE_WITH_UPSTREAM'),
                        help='Prepend the upstream exporter output to /metrics')
    parser.add_argument('-u', '--upstream-port', type=int,
                        default=env_default('UPSTREAM_PORT', DEFAULT_UPSTREAM_PORT, int),
                        help='Upstream exporter port on 127.0.0.1 (default: %(default)s)')
    parser.add_argument('--upstream-timeout', type=float,
                        default=env_default('UPSTREAM_TIMEOUT', DEFAULT_UPSTREAM_TIMEOUT, float),
                        help='Upstream request timeout in seconds (default: %(default)s)')
    parser.add_argument('--alive-check', action='store_true', default=env_flag('ALIVE_CHECK'),
                        help='Enable the keep-alive watchdog')
    parser.add_argument('--alive-check-config', type=Path,
                        default=env_default('ALIVE_CHECK_CONFIG', DEFAULT_ALIVE_CHECK_CONFIG, Path),
                        help='Keep-alive target file (default: %(default)s)')
    parser.add_argument('--home-usage-report', type=Path,
                        default=env_default('HOME_USAGE_REPORT', None, Path),
                        help='Per-user home usage report in "du -sb" format')
    parser.add_argument('--disable-speedtest', action='store_true', default=env_flag('DISABLE_SPEEDTEST'),
                        help='Do not serve /speedtest')
    parser.add_argument('--login-defs', type=Path,
                        default=env_default('LOGIN_DEFS', DEFAULT_LOGIN_DEFS, Path),
                        help='File providing UID_MIN/UID_MAX (default: %(default)s)')
    parser.add_argument('--log-level', default=env_default('LOG_LEVEL', 'INFO'),
                        help='Logging level (default: %(default)s)')
    parser.add_argument('--log-json', action='store_true', default=env_flag('LOG_JSON'),
                        help='Log one JSON object per line')
    parser.add_argument('-V', '--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def parse_args(argv: Optional[List[str]] = None) -> ExporterConfig:
    """Parse the command line into a validated ExporterConfig"""
    args = build_parser().parse_args(argv)
    address, port = SyswatchValidator.validate_listen_address(args.address, args.port)
    SyswatchValidator.validate_port(args.upstream_port, "upstream port")
    SyswatchValidator.validate_timeout(args.upstream_timeout)
    return ExporterConfig(
        address=address,
        port=port,
        show_all_users=args.show_all_users,
        combine_with_upstream=args.combine_with_upstream,
        upstream_port=args.upstream_port,
        upstream_timeout=args.upstream_timeout,
        alive_check=args.alive_check,
        alive_check_config=args.alive_check_config,
        home_usage_report=args.home_usage_report,
        enable_speedtest=not args.disable_speedtest,
        login_defs=args.login_defs,
        log_level=SyswatchValidator.validate_log_level(args.log_level),
        log_json=args.log_json,
    )


def _fatal(message: str) -> None:
    logger.critical(message)
    sys.exit(1)


def main(argv: Optional[List[str]] = None) -> None:
    load_environment()
    setup_logging(level="INFO")

    try:
        config = parse_args(argv)
    except SyswatchError as e:
        _fatal(str(e))

    setup_logging(level=config.log_level, enable_json=config.log_json)

    # Everything that can fail fatally happens before the socket is bound
    try:
        keep_alive = load_keep_alive_config(config.alive_check_config) if config.alive_check else None
        directory = UserDirectory(login_defs=config.login_defs)
        source = NvmlTelemetrySource()
    except SyswatchError as e:
        _fatal(str(e))

    alive = AliveStatus(keep_alive.items if keep_alive else ())
    home_usage = HomeUsageReport(config.home_usage_report) if config.home_usage_report else None
    state = MetricState(alive=alive, home_usage=home_usage)
    builder = SnapshotBuilder(source, Attributor(directory, show_unknown_users=config.show_all_users))
    upstream = (
        UpstreamMerger(config.upstream_base_url, timeout=config.upstream_timeout)
        if config.combine_with_upstream else None
    )
    app = create_app(state, builder, upstream=upstream, enable_speedtest=config.enable_speedtest)

    logger.info(f"Listening on {config.listen_url}")
    if upstream is not None:
        logger.info(f"Combining with upstream exporter on port {config.upstream_port}")
    if config.show_all_users:
        logger.info("Showing all users, including system accounts")

    watchdog = None
    if keep_alive is not None:
        logger.info(f"Alive check is enabled. Interval = {keep_alive.interval} s")
        for target in keep_alive.items:
            logger.info(f"  {target.hostname}: {target.url}")
        watchdog = Watchdog(keep_alive, alive)
        watchdog.start()

    try:
        uvicorn.run(app, host=config.address, port=config.port, log_config=None)
    finally:
        if watchdog is not None:
            watchdog.stop()
        if upstream is not None:
            upstream.close()
        source.shutdown()


if __name__ == '__main__':
    main()

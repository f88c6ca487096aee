"""
Command line interface

    bakerwatch check [network] [max_lag] [--quick|--monitor]
    bakerwatch healthcheck [node|baker|endorser|all]

Exit codes:
  0  node synchronized / healthy
  1  not synchronized, lag too high, monitoring timed out or cancelled
  N  healthcheck: number of failed (critical) checks
  2  invalid arguments or configuration

For healthcheck the codes overlap: 1 or 2 failed checks exit with the same
status as a sync failure or a configuration error. A configuration error is
always preceded by a "VALIDATION ERROR" record and never by a HEALTH record.
"""

import argparse
import asyncio
import logging
import signal
import sys
import aiohttp
from datetime import datetime
from typing import List, Optional

from . import __version__, report
from .config import DEFAULT_HEALTH_MAX_LAG, NETWORKS, MonitorConfig, parse_count
from .errors import ConfigError
from .loop import PollingLoop
from .models import Outcome, SessionVerdict, Source, exit_code
from .node import LocalNode
from .probes import COMPONENTS
from .report import ReportSink, setup_logging
from .rpc import MetricSource

CONFIG_ERROR_EXIT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bakerwatch",
        description="Tezos node synchronization and health monitoring",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--log-dir", help="directory for step log files (env LOG_DIR)")
    parser.add_argument("--rpc-url", help="local node RPC endpoint (env TEZOS_RPC_URL)")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="check node synchronization against the network")
    check.add_argument(
        "network", nargs="?", help=f"network to check ({'|'.join(sorted(NETWORKS))})"
    )
    check.add_argument("max_lag", nargs="?", help="maximum acceptable head lag in blocks")
    mode = check.add_mutually_exclusive_group()
    mode.add_argument(
        "--quick", dest="mode", action="store_const", const="quick",
        help="single check and exit (default)",
    )
    mode.add_argument(
        "--monitor", dest="mode", action="store_const", const="monitor",
        help="monitor until stable sync is achieved",
    )
    check.set_defaults(mode="quick")
    check.add_argument("--interval", type=float, help="seconds between checks")
    check.add_argument("--max-checks", type=int, help="maximum number of checks")
    check.add_argument("--required", type=int, help="consecutive good checks required")
    check.add_argument("--timeout", type=float, help="cancel monitoring after this many seconds")

    health = sub.add_parser("healthcheck", help="run node/baker/endorser health checks")
    health.add_argument("component", nargs="?", default="all", choices=COMPONENTS)
    return parser


def resolve_config(args: argparse.Namespace) -> MonitorConfig:
    """Merge environment configuration with command line arguments"""
    if args.command == "healthcheck":
        config = MonitorConfig.from_env(default_max_lag=DEFAULT_HEALTH_MAX_LAG)
        return config.with_overrides(rpc_url=args.rpc_url, log_dir=args.log_dir)

    config = MonitorConfig.from_env()
    max_lag = parse_count(args.max_lag, "max_lag") if args.max_lag is not None else None
    return config.with_overrides(
        network=args.network,
        max_lag=max_lag,
        poll_interval=args.interval,
        max_rounds=args.max_checks,
        required_consecutive=args.required,
        rpc_url=args.rpc_url,
        log_dir=args.log_dir,
    )


def print_summary(verdict: SessionVerdict, component: str) -> None:
    print(f"Tezos Health Check - {datetime.now():%Y-%m-%d %H:%M:%S}")
    print(f"Component: {component}\n")
    for result in verdict.probe_results:
        print(f"{result.symbol} {result.name}: {result.message}")
    print()
    if verdict.outcome is Outcome.PASSED:
        print("✓ Health check passed")
    else:
        print(f"✗ Health check failed with {verdict.error_count} errors")


async def run(args: argparse.Namespace, config: MonitorConfig, sink: ReportSink) -> SessionVerdict:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            pass
    timeout = getattr(args, "timeout", None)
    if timeout:
        loop.call_later(timeout, cancel_event.set)

    async with aiohttp.ClientSession() as local_session, aiohttp.ClientSession() as remote_session:
        node = LocalNode(config, local_session)
        poller = PollingLoop(
            config,
            node,
            remote=MetricSource(Source.REMOTE, remote_session),
            local=MetricSource(Source.LOCAL, local_session),
            sink=sink,
            cancel_event=cancel_event,
        )
        if args.command == "healthcheck":
            return await poller.health_pass(args.component)
        if args.mode == "monitor":
            return await poller.sync_wait()
        return await poller.quick_check()


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    args = build_parser().parse_args(argv)
    sink = ReportSink()

    try:
        config = resolve_config(args)
    except ConfigError as e:
        setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
        sink.step("VALIDATION", report.ERROR, str(e))
        return CONFIG_ERROR_EXIT

    log_file = setup_logging(
        config.log_dir, args.command, logging.DEBUG if args.verbose else logging.INFO
    )
    sink.session_start(_describe(args, config), argv, log_file)
    sink.system_info()
    sink.step("VALIDATION", report.SUCCESS, f"Network '{config.network}' is valid")
    sink.step("VALIDATION", report.SUCCESS, f"Maximum acceptable lag: {config.max_lag} blocks")

    verdict = asyncio.run(run(args, config, sink))
    if args.command == "healthcheck":
        print_summary(verdict, args.component)

    code = exit_code(verdict)
    sink.session_end(code)
    return code


def _describe(args: argparse.Namespace, config: MonitorConfig) -> str:
    if args.command == "healthcheck":
        return f"Health check of {args.component} on {config.network}"
    return f"Check {config.network} node synchronization (max lag: {config.max_lag})"


if __name__ == "__main__":
    sys.exit(main())

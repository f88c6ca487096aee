"""
Polling loop

Drives a monitoring session in one of three modes:

- sync_wait: poll every `poll_interval` seconds until the convergence gate
  reaches a terminal phase (converged, exhausted or cancelled)
- quick_check: a single sync round
- health_pass: run a component's health probes once

Cancellation is cooperative. It is checked at the top of each round, after a
round's fetches have joined and during the sleep between rounds; fetches in
flight are left to run to their own timeout and their results are dropped.
"""

import asyncio
from typing import Optional, Tuple

from . import report
from .config import MonitorConfig
from .errors import EvalError, NodeQueryError
from .gate import ConvergenceGate, GatePhase
from .lag import evaluate
from .models import (
    LagResult,
    Observation,
    Outcome,
    SessionVerdict,
    Severity,
    Source,
)
from .node import NodeQuery
from .probes import ProbeContext, probes_for
from .report import ReportSink
from .rpc import MetricSource

STATUS_BY_SEVERITY = {
    Severity.OK: report.SUCCESS,
    Severity.WARNING: report.WARNING,
    Severity.CRITICAL: report.ERROR,
}

OUTCOME_BY_PHASE = {
    GatePhase.CONVERGED: Outcome.CONVERGED,
    GatePhase.EXHAUSTED: Outcome.TIMED_OUT,
    GatePhase.CANCELLED: Outcome.CANCELLED,
}


class PollingLoop:
    def __init__(
        self,
        config: MonitorConfig,
        node: NodeQuery,
        remote: MetricSource,
        sink: Optional[ReportSink] = None,
        local: Optional[MetricSource] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.config = config
        self.node = node
        self.remote = remote
        self.local = local or MetricSource(Source.LOCAL, remote.session)
        self.sink = sink or ReportSink()
        self.cancel_event = cancel_event or asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    # ============================================
    # Sync rounds
    # ============================================

    async def _bootstrapped(self) -> bool:
        try:
            return await self.node.is_bootstrapped()
        except NodeQueryError as e:
            self.sink.step("BOOTSTRAP_CHECK", report.INFO, f"Bootstrap status unknown: {e}")
            return False

    async def _observe(self) -> Tuple[Observation, Observation, bool]:
        cfg = self.config
        step = self.sink.step
        step("NETWORK_HEAD", report.START, f"Fetching current network head from {cfg.remote_url}")
        local, remote, bootstrapped = await asyncio.gather(
            self.local.fetch(cfg.rpc_url, cfg.fetch_timeout),
            self.remote.fetch(cfg.remote_url, cfg.fetch_timeout),
            self._bootstrapped(),
        )

        for name, label, obs in (
            ("NETWORK_HEAD", "network", remote),
            ("LOCAL_HEAD", "local", local),
        ):
            if obs.ok:
                step(name, report.SUCCESS, f"{label.capitalize()} head: {obs.height}")
            else:
                step(name, report.ERROR, f"Failed to fetch {label} head: {obs.error}")

        if bootstrapped:
            step("BOOTSTRAP_CHECK", report.SUCCESS, "Node is bootstrapped")
        else:
            step("BOOTSTRAP_CHECK", report.INFO, "Node is not yet bootstrapped")
        return local, remote, bootstrapped

    def _judge(
        self, local: Observation, remote: Observation, bootstrapped: bool
    ) -> Tuple[bool, Optional[LagResult]]:
        step = self.sink.step
        max_lag = self.config.max_lag
        try:
            lag = evaluate(local, remote, max_lag)
        except EvalError as e:
            step("HEAD_LAG", report.WARNING, f"Head lag undetermined: {e}")
            return False, None

        step(
            "HEAD_LAG",
            report.INFO,
            f"Head lag calculation: {lag.remote_height} - {lag.local_height} = "
            f"{lag.lag} blocks",
        )
        if lag.within_threshold:
            step(
                "HEAD_LAG",
                report.SUCCESS,
                f"Head lag is acceptable: {lag.lag} blocks (max: {max_lag})",
            )
        else:
            step(
                "HEAD_LAG",
                report.WARNING,
                f"Head lag is high: {lag.lag} blocks (max: {max_lag})",
            )
        return bootstrapped and lag.within_threshold, lag

    async def _sleep(self) -> None:
        """Wait out the poll interval, returning early on cancellation"""
        try:
            await asyncio.wait_for(self.cancel_event.wait(), self.config.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _run_gate(self, gate: ConvergenceGate, name: str) -> SessionVerdict:
        step = self.sink.step
        last_lag: Optional[LagResult] = None
        while not gate.done:
            if self.cancelled:
                gate.cancel()
                break

            step(name, report.INFO, f"Check {gate.rounds_elapsed + 1}/{gate.max_rounds}")
            local, remote, bootstrapped = await self._observe()
            if self.cancelled:
                step(name, report.INFO, "Cancelled, discarding round results")
                gate.cancel()
                break

            good, lag = self._judge(local, remote, bootstrapped)
            if lag is not None:
                last_lag = lag
            phase = gate.record(good)
            if good:
                step(
                    name,
                    report.SUCCESS,
                    f"Sync check passed ({gate.consecutive_good}/"
                    f"{gate.required_consecutive} consecutive)",
                )
            else:
                step(name, report.INFO, "Sync check failed, resetting consecutive counter")

            if phase is GatePhase.ACCUMULATING:
                interval = self.config.poll_interval
                step(name, report.INFO, f"Waiting {interval:g}s before next check...")
                await self._sleep()

        return SessionVerdict(
            outcome=OUTCOME_BY_PHASE[gate.phase],
            final_lag=last_lag.lag if last_lag else None,
            rounds=gate.rounds_elapsed,
        )

    async def sync_wait(self) -> SessionVerdict:
        """Poll until the node converges, runs out of rounds or is cancelled"""
        cfg = self.config
        step = self.sink.step
        gate = ConvergenceGate(cfg.required_consecutive, cfg.max_rounds)
        step(
            "SYNC_MONITOR",
            report.START,
            f"Monitoring synchronization (max {cfg.max_rounds} checks, "
            f"{cfg.poll_interval:g}s interval)",
        )
        verdict = await self._run_gate(gate, "SYNC_MONITOR")

        if verdict.outcome is Outcome.CANCELLED:
            step(
                "SYNC_MONITOR",
                report.ERROR,
                f"Monitoring cancelled after {gate.rounds_elapsed} checks",
            )
            return verdict

        if verdict.outcome is Outcome.CONVERGED:
            step(
                "SYNC_MONITOR",
                report.SUCCESS,
                f"Node is well synchronized ({gate.consecutive_good} consecutive good checks)",
            )
        else:
            step(
                "SYNC_MONITOR",
                report.ERROR,
                "Node failed to achieve stable synchronization after "
                f"{gate.rounds_elapsed} checks",
            )
        await self.sync_stats()
        return verdict

    async def quick_check(self) -> SessionVerdict:
        """Single synchronization check"""
        step = self.sink.step
        step("QUICK_CHECK", report.START, "Performing single synchronization check")
        await self.sync_stats()
        verdict = await self._run_gate(ConvergenceGate(1, 1), "QUICK_CHECK")
        if verdict.outcome is Outcome.CONVERGED:
            step("QUICK_CHECK", report.SUCCESS, "Node is synchronized")
        elif verdict.outcome is Outcome.TIMED_OUT:
            step("QUICK_CHECK", report.WARNING, "Node is not optimally synchronized")
        return verdict

    async def sync_stats(self) -> None:
        """Report head block, peer and mempool statistics; failures are skipped"""
        step = self.sink.step
        step("SYNC_STATS", report.START, "Gathering node synchronization statistics")
        try:
            block = await self.node.head_block()
        except NodeQueryError:
            pass
        else:
            step("SYNC_STATS", report.INFO, f"Block level: {block.level}")
            step("SYNC_STATS", report.INFO, f"Block timestamp: {block.timestamp}")
            step("SYNC_STATS", report.INFO, f"Block hash: {block.hash[:20]}...")

        try:
            peers = await self.node.peer_count()
        except NodeQueryError:
            pass
        else:
            step("SYNC_STATS", report.INFO, f"Connected peers: {peers}")
            if peers < self.config.min_peers:
                step(
                    "SYNC_STATS",
                    report.WARNING,
                    f"Low peer count: {peers} (minimum: {self.config.min_peers})",
                )

        try:
            pending = await self.node.mempool_size()
        except NodeQueryError:
            pass
        else:
            step("SYNC_STATS", report.INFO, f"Mempool size: {pending} operations")

    # ============================================
    # Health pass
    # ============================================

    async def health_pass(self, component: str = "all") -> SessionVerdict:
        """Run a component's probes once and fold their severities"""
        step = self.sink.step
        probes = probes_for(component, self.config)
        context = ProbeContext(node=self.node, config=self.config, remote=self.remote)
        step("HEALTH", report.START, f"Health check for component '{component}'")

        results = tuple(await asyncio.gather(*(p.run(context) for p in probes)))
        for result in results:
            step(
                "HEALTH",
                STATUS_BY_SEVERITY[result.severity],
                f"{result.symbol} {result.name}: {result.message}",
            )

        errors = sum(1 for r in results if r.severity is Severity.CRITICAL)
        if errors:
            step("HEALTH", report.ERROR, f"Health check failed with {errors} errors")
            outcome = Outcome.FAILED
        else:
            step("HEALTH", report.SUCCESS, "Health check passed")
            outcome = Outcome.PASSED
        return SessionVerdict(outcome=outcome, probe_results=results, rounds=1)

"""
Value types shared by the monitoring engine.

All of these are produced fresh for a single run and never persisted:

- Observation: one height sample from the local node or the network
- LagResult: the lag derived from a pair of observations
- ProbeResult: the outcome of one health probe
- ConvergenceState: counters owned by the convergence gate
- SessionVerdict: the terminal value of a monitoring session
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Tuple

from .errors import FetchError


class Source(Enum):
    LOCAL = "local"
    REMOTE = "remote"


class Severity(Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class Outcome(Enum):
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"
    PASSED = "passed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Observation:
    """A single head level sample"""

    source: Source
    height: Optional[int] = None
    fetched_at: datetime = field(default_factory=utcnow)
    error: Optional[FetchError] = None
    endpoint: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and self.height is not None


@dataclass(frozen=True)
class LagResult:
    local_height: int
    remote_height: int
    lag: int
    within_threshold: bool


@dataclass(frozen=True)
class ProbeResult:
    name: str
    severity: Severity
    message: str

    @property
    def symbol(self) -> str:
        return {
            Severity.OK: "✓",
            Severity.WARNING: "⚠",
            Severity.CRITICAL: "✗",
        }[self.severity]


@dataclass(frozen=True)
class ConvergenceState:
    consecutive_good: int
    required_consecutive: int
    rounds_elapsed: int
    max_rounds: int


@dataclass(frozen=True)
class SessionVerdict:
    """Terminal result of a sync-wait session or a health pass"""

    outcome: Outcome
    final_lag: Optional[int] = None
    probe_results: Tuple[ProbeResult, ...] = ()
    rounds: int = 0

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.probe_results if r.severity is Severity.CRITICAL)

    @property
    def severity(self) -> Severity:
        return aggregate_severity(self.probe_results)


def aggregate_severity(results: Iterable[ProbeResult]) -> Severity:
    """Fold probe severities: any Critical wins, then any Warning, else Ok"""
    worst = Severity.OK
    for result in results:
        if result.severity is Severity.CRITICAL:
            return Severity.CRITICAL
        if result.severity is Severity.WARNING:
            worst = Severity.WARNING
    return worst


def exit_code(verdict: SessionVerdict) -> int:
    """
    Map a verdict to a process exit status.

    0 for a converged session or a passing health pass. A failed health pass
    exits with its number of Critical probes. Timeouts, cancellations and any
    other failure exit 1.
    """
    if verdict.outcome in (Outcome.CONVERGED, Outcome.PASSED):
        return 0
    if verdict.outcome is Outcome.FAILED and verdict.error_count:
        return min(verdict.error_count, 255)
    return 1

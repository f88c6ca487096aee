"""Sync and health monitoring for Tezos baker nodes"""

__version__ = "0.1.0"

from .config import MonitorConfig, NETWORKS
from .gate import ConvergenceGate, GatePhase
from .lag import evaluate
from .loop import PollingLoop
from .models import (
    LagResult,
    Observation,
    Outcome,
    ProbeResult,
    SessionVerdict,
    Severity,
    Source,
    aggregate_severity,
    exit_code,
)
from .node import LocalNode, NodeQuery
from .report import ReportSink, setup_logging
from .rpc import MetricSource

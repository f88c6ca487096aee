"""
Health probes

Each probe answers one question about the node and returns a ProbeResult
with a graded severity:

- OK: healthy
- WARNING: degraded service (low peers, low disk, high head lag); reported
  but never fails a run on its own
- CRITICAL: the component is unusable (RPC down, not bootstrapped, process
  missing); counted as an error

Probes keep no state between calls and never raise: query failures are
turned into results.
"""

from dataclasses import dataclass
from typing import List, Optional

from .config import MonitorConfig
from .errors import EvalError, NodeQueryError
from .lag import evaluate
from .models import Observation, ProbeResult, Severity, Source, utcnow
from .node import NodeQuery
from .rpc import MetricSource

COMPONENTS = ("node", "baker", "endorser", "all")


@dataclass
class ProbeContext:
    node: NodeQuery
    config: MonitorConfig
    remote: Optional[MetricSource] = None


class HealthProbe:
    name = "probe"

    async def run(self, context: ProbeContext) -> ProbeResult:
        try:
            return await self.check(context)
        except NodeQueryError as e:
            return self.on_query_error(e)

    async def check(self, context: ProbeContext) -> ProbeResult:
        raise NotImplementedError

    def on_query_error(self, error: NodeQueryError) -> ProbeResult:
        return self.result(Severity.CRITICAL, f"query failed: {error}")

    def result(self, severity: Severity, message: str) -> ProbeResult:
        return ProbeResult(name=self.name, severity=severity, message=message)


class RpcReachability(HealthProbe):
    name = "rpc"

    async def check(self, context):
        level = await context.node.local_height()
        return self.result(Severity.OK, f"RPC responding (head level {level})")

    def on_query_error(self, error):
        return self.result(Severity.CRITICAL, f"RPC not responding: {error}")


class Bootstrapped(HealthProbe):
    name = "bootstrapped"

    async def check(self, context):
        if await context.node.is_bootstrapped():
            return self.result(Severity.OK, "Node bootstrapped")
        return self.result(Severity.CRITICAL, "Node not bootstrapped")

    def on_query_error(self, error):
        return self.result(Severity.CRITICAL, f"Bootstrap status unknown: {error}")


class PeerCount(HealthProbe):
    name = "peers"

    def __init__(self, minimum: int = 5):
        self.minimum = minimum

    async def check(self, context):
        count = await context.node.peer_count()
        if count < self.minimum:
            return self.result(
                Severity.WARNING,
                f"Low peer count: {count} connected (minimum: {self.minimum})",
            )
        return self.result(Severity.OK, f"Peers: {count} connected")

    def on_query_error(self, error):
        return self.result(Severity.CRITICAL, f"Peers: unable to determine ({error})")


class DiskSpace(HealthProbe):
    name = "disk"

    def __init__(self, path: str, minimum_gb: int = 5):
        self.path = path
        self.minimum_gb = minimum_gb

    async def check(self, context):
        free_gb = await context.node.free_disk_gb(self.path)
        if free_gb is None:
            return self.result(
                Severity.CRITICAL, f"Data directory not found: {self.path}"
            )
        if free_gb < self.minimum_gb:
            return self.result(
                Severity.WARNING,
                f"Low disk space: {free_gb}GB free (< {self.minimum_gb}GB)",
            )
        return self.result(Severity.OK, f"Disk space: {free_gb}GB free")


class ProcessLiveness(HealthProbe):
    def __init__(self, process_name: str, label: Optional[str] = None):
        self.process_name = process_name
        self.name = f"process:{label or process_name}"

    async def check(self, context):
        if await context.node.process_alive(self.process_name):
            return self.result(Severity.OK, f"{self.process_name}: running")
        return self.result(Severity.CRITICAL, f"{self.process_name}: not running")


class HeadLag(HealthProbe):
    """Warns when the node trails the network head; never critical"""

    name = "head_lag"

    def __init__(self, max_lag: int):
        self.max_lag = max_lag

    async def check(self, context):
        if context.remote is None:
            return self.result(Severity.WARNING, "Unable to determine head lag")
        local = await self._local(context)
        remote = await context.remote.fetch(
            context.config.remote_url, context.config.fetch_timeout
        )
        try:
            lag = evaluate(local, remote, self.max_lag)
        except EvalError as e:
            return self.result(Severity.WARNING, f"Unable to determine head lag: {e}")
        if lag.within_threshold:
            return self.result(Severity.OK, f"Head lag: {lag.lag} blocks (acceptable)")
        return self.result(
            Severity.WARNING,
            f"Head lag: {lag.lag} blocks (too high, max: {self.max_lag})",
        )

    @staticmethod
    async def _local(context) -> Observation:
        try:
            height = await context.node.local_height()
        except NodeQueryError:
            return Observation(source=Source.LOCAL, fetched_at=utcnow())
        return Observation(source=Source.LOCAL, height=height, fetched_at=utcnow())

    def on_query_error(self, error):
        return self.result(Severity.WARNING, f"Unable to determine head lag: {error}")


class BakerKey(HealthProbe):
    name = "baker_key"

    def __init__(self, alias: str):
        self.alias = alias

    async def check(self, context):
        try:
            await context.node.local_height()
        except NodeQueryError:
            return self.result(
                Severity.WARNING, f"RPC unreachable, key '{self.alias}' not checked"
            )
        if await context.node.key_known(self.alias):
            return self.result(Severity.OK, f"Baker key '{self.alias}' available")
        return self.result(Severity.CRITICAL, f"Baker key '{self.alias}' not found")


def node_probes(config: MonitorConfig) -> List[HealthProbe]:
    return [
        RpcReachability(),
        Bootstrapped(),
        HeadLag(config.max_lag),
        PeerCount(config.min_peers),
        DiskSpace(config.data_dir, config.min_free_gb),
        ProcessLiveness(config.node_process, "node"),
    ]


def baker_probes(config: MonitorConfig) -> List[HealthProbe]:
    return [ProcessLiveness(config.baker_process, "baker"), BakerKey(config.baker_alias)]


def endorser_probes(config: MonitorConfig) -> List[HealthProbe]:
    return [ProcessLiveness(config.endorser_process, "endorser")]


def probes_for(component: str, config: MonitorConfig) -> List[HealthProbe]:
    """Probe set for a component; unknown names get every probe"""
    if component == "node":
        return node_probes(config)
    if component == "baker":
        return baker_probes(config)
    if component == "endorser":
        return endorser_probes(config)
    return node_probes(config) + baker_probes(config) + endorser_probes(config)

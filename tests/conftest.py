"""Shared fakes for the monitoring engine tests"""

import pytest
from typing import Iterable, List, Optional, Union

from bakerwatch.config import MonitorConfig
from bakerwatch.errors import FetchError, NodeQueryError
from bakerwatch.models import Observation, Source, utcnow
from bakerwatch.node import HeadBlock, NodeQuery
from bakerwatch.report import ReportSink
from bakerwatch.rpc import MetricSource


def _answer(value):
    if isinstance(value, Exception):
        raise value
    return value


class FakeNode(NodeQuery):
    """NodeQuery with canned answers; an exception value is raised instead"""

    def __init__(
        self,
        height: Union[int, Exception] = 100,
        bootstrapped: Union[bool, Exception] = True,
        peers: Union[int, Exception] = 10,
        disk_gb: Union[Optional[int], Exception] = 50,
        processes: Iterable[str] = ("tezos-node", "tezos-baker", "tezos-endorser"),
        keys: Iterable[str] = ("baker",),
    ):
        self.height = height
        self.bootstrapped = bootstrapped
        self.peers = peers
        self.disk_gb = disk_gb
        self.processes = set(processes)
        self.keys = set(keys)
        self.calls: List[str] = []

    async def local_height(self):
        self.calls.append("local_height")
        return _answer(self.height)

    async def is_bootstrapped(self):
        self.calls.append("is_bootstrapped")
        return _answer(self.bootstrapped)

    async def peer_count(self):
        self.calls.append("peer_count")
        return _answer(self.peers)

    async def free_disk_gb(self, path):
        self.calls.append("free_disk_gb")
        return _answer(self.disk_gb)

    async def process_alive(self, name):
        self.calls.append("process_alive")
        return name in self.processes

    async def key_known(self, alias):
        self.calls.append("key_known")
        return alias in self.keys

    async def head_block(self):
        return HeadBlock(
            level=_answer(self.height),
            timestamp="2024-05-01T12:00:00Z",
            hash="BLockGenesisGenesisGenesis",
        )

    async def mempool_size(self):
        return 4


class ScriptedSource(MetricSource):
    """
    MetricSource replaying a script of heights, one per fetch.

    None in the script is a failed fetch. The last entry repeats once the
    script runs out.
    """

    def __init__(self, source: Source, script: List[Optional[int]], on_fetch=None):
        super().__init__(source)
        self.script = list(script)
        self.fetches = 0
        self.on_fetch = on_fetch

    async def fetch(self, endpoint, timeout):
        index = min(self.fetches, len(self.script) - 1)
        self.fetches += 1
        if self.on_fetch is not None:
            self.on_fetch()
        height = self.script[index]
        if height is None:
            return Observation(
                source=self.source,
                endpoint=endpoint,
                fetched_at=utcnow(),
                error=FetchError(endpoint, f"timed out after {timeout:g}s"),
            )
        return Observation(
            source=self.source, endpoint=endpoint, fetched_at=utcnow(), height=height
        )


@pytest.fixture
def config():
    """Fast configuration: no sleeping between rounds"""
    return MonitorConfig(
        network="ghostnet",
        max_lag=2,
        poll_interval=0,
        required_consecutive=3,
        max_rounds=10,
        min_peers=5,
        min_free_gb=5,
        data_dir="/var/lib/tezos",
    )


@pytest.fixture
def node():
    return FakeNode()


@pytest.fixture
def sink():
    return ReportSink()


@pytest.fixture
def unreachable():
    return NodeQueryError("http://127.0.0.1:8732/chains/main/blocks/head/header: request failed")

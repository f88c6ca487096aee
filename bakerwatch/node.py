"""
Node queries

The monitoring engine only ever talks to the node through NodeQuery. The
LocalNode implementation answers those queries from the node's RPC, the
local filesystem and process table (psutil), and the Tezos client binary.
"""

import asyncio
import os
import aiohttp
import psutil
from dataclasses import dataclass
from typing import Any, Optional

from .config import MonitorConfig
from .errors import FetchError, NodeQueryError
from .rpc import NodeRPCClient

BOOTSTRAPPED_PATH = "/chains/main/is_bootstrapped"
CONNECTIONS_PATH = "/network/connections"
HEAD_BLOCK_PATH = "/chains/main/blocks/head"
MEMPOOL_PATH = "/chains/main/mempool/pending_operations"

GIB = 1024 ** 3


@dataclass(frozen=True)
class HeadBlock:
    level: Optional[int]
    timestamp: str
    hash: str


class NodeQuery:
    """Read-only view of a node used by the sync loop and the health probes"""

    async def local_height(self) -> int:
        raise NotImplementedError

    async def is_bootstrapped(self) -> bool:
        raise NotImplementedError

    async def peer_count(self) -> int:
        raise NotImplementedError

    async def free_disk_gb(self, path: str) -> Optional[int]:
        """Free space in whole GiB, or None when the path does not exist"""
        raise NotImplementedError

    async def process_alive(self, name: str) -> bool:
        raise NotImplementedError

    async def key_known(self, alias: str) -> bool:
        raise NodeQueryError("key lookup not supported")

    async def head_block(self) -> HeadBlock:
        raise NodeQueryError("head block lookup not supported")

    async def mempool_size(self) -> int:
        raise NodeQueryError("mempool lookup not supported")


class LocalNode(NodeQuery):
    """NodeQuery backed by a node RPC endpoint on this host"""

    def __init__(
        self, config: MonitorConfig, session: Optional[aiohttp.ClientSession] = None
    ):
        self.config = config
        self.client = NodeRPCClient(config.rpc_url, session)

    async def _get(self, path: str) -> Any:
        try:
            return await self.client.get_json(path, self.config.fetch_timeout)
        except FetchError as e:
            raise NodeQueryError(str(e)) from e

    async def local_height(self) -> int:
        try:
            return await self.client.get_head_level(self.config.fetch_timeout)
        except FetchError as e:
            raise NodeQueryError(str(e)) from e

    async def is_bootstrapped(self) -> bool:
        result = await self._get(BOOTSTRAPPED_PATH)
        if not isinstance(result, dict) or "bootstrapped" not in result:
            raise NodeQueryError(f"unexpected bootstrap response: {result!r:.80}")
        return result["bootstrapped"] is True

    async def peer_count(self) -> int:
        connections = await self._get(CONNECTIONS_PATH)
        if not isinstance(connections, list):
            raise NodeQueryError(f"unexpected connections response: {connections!r:.80}")
        return len(connections)

    async def free_disk_gb(self, path: str) -> Optional[int]:
        if not os.path.isdir(path):
            return None
        try:
            usage = await asyncio.to_thread(psutil.disk_usage, path)
        except OSError as e:
            raise NodeQueryError(f"cannot stat {path}: {e}") from e
        return usage.free // GIB

    async def process_alive(self, name: str) -> bool:
        return await asyncio.to_thread(find_process, name)

    async def key_known(self, alias: str) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.config.client_binary,
                "--endpoint",
                self.config.rpc_url,
                "show",
                "address",
                alias,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise NodeQueryError(f"cannot run {self.config.client_binary}: {e}") from e
        try:
            code = await asyncio.wait_for(proc.wait(), self.config.fetch_timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise NodeQueryError(
                f"{self.config.client_binary} timed out looking up '{alias}'"
            ) from None
        return code == 0

    async def head_block(self) -> HeadBlock:
        block = await self._get(HEAD_BLOCK_PATH)
        if not isinstance(block, dict):
            raise NodeQueryError(f"unexpected head block response: {block!r:.80}")
        header = block.get("header") or {}
        return HeadBlock(
            level=header.get("level"),
            timestamp=str(header.get("timestamp", "unknown")),
            hash=str(block.get("hash", "unknown")),
        )

    async def mempool_size(self) -> int:
        return count_operations(await self._get(MEMPOOL_PATH))


def find_process(name: str) -> bool:
    """True if any process name or command line contains `name`"""
    for proc in psutil.process_iter(["name", "cmdline"]):
        info = proc.info
        if name in (info.get("name") or ""):
            return True
        if name in " ".join(info.get("cmdline") or []):
            return True
    return False


def count_operations(pending: Any) -> int:
    """Count operations in a pending_operations response"""
    if isinstance(pending, list):
        return len(pending)
    if isinstance(pending, dict):
        return sum(len(v) for v in pending.values() if isinstance(v, list))
    raise NodeQueryError(f"unexpected mempool response: {pending!r:.80}")

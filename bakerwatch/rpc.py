"""
Tezos RPC access

Two kinds of readers live here:

- NodeRPCClient: JSON GET against a node's RPC root, raising FetchError
- MetricSource: reads the head level of an endpoint and always returns an
  Observation, with the failure recorded on it instead of raised

Both use aiohttp. A session can be shared across calls; when none is given a
short-lived session is opened per request.
"""

import asyncio
import aiohttp
from typing import Any, Optional

from .errors import FetchError
from .models import Observation, Source, utcnow

HEAD_HEADER_PATH = "/chains/main/blocks/head/header"


class NodeRPCClient:
    """JSON RPC client for a single Tezos node endpoint"""

    def __init__(self, rpc_url: str, session: Optional[aiohttp.ClientSession] = None):
        self.rpc_url = rpc_url.rstrip("/")
        self.session = session

    def url(self, path: str) -> str:
        return f"{self.rpc_url}{path}"

    async def get_json(self, path: str, timeout: float) -> Any:
        """GET a path and decode the JSON body"""
        url = self.url(path)
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        try:
            if self.session is not None:
                return await self._fetch(self.session, url, client_timeout)
            async with aiohttp.ClientSession() as session:
                return await self._fetch(session, url, client_timeout)
        except aiohttp.InvalidURL:
            raise FetchError(url, "invalid RPC URL") from None
        except asyncio.TimeoutError:
            raise FetchError(url, f"timed out after {timeout:g}s") from None
        except (aiohttp.ContentTypeError, ValueError):
            raise FetchError(url, "response is not JSON") from None
        except aiohttp.ClientResponseError as e:
            raise FetchError(url, f"HTTP {e.status}") from None
        except aiohttp.ClientError as e:
            raise FetchError(url, f"request failed: {e}") from None

    @staticmethod
    async def _fetch(
        session: aiohttp.ClientSession, url: str, timeout: aiohttp.ClientTimeout
    ) -> Any:
        async with session.get(url, timeout=timeout) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def get_head_level(self, timeout: float) -> int:
        header = await self.get_json(HEAD_HEADER_PATH, timeout)
        return parse_level(header, self.url(HEAD_HEADER_PATH))


def parse_level(header: Any, url: str) -> int:
    """Extract the integer `level` field from a block header"""
    if not isinstance(header, dict) or "level" not in header:
        raise FetchError(url, f"invalid header response: {header!r:.80}")
    level = header["level"]
    # bool is an int subclass
    if isinstance(level, bool) or not isinstance(level, int) or level < 0:
        raise FetchError(url, f"invalid level: {level!r}")
    return level


class MetricSource:
    """Head level reader for either the local node or the network"""

    def __init__(self, source: Source, session: Optional[aiohttp.ClientSession] = None):
        self.source = source
        self.session = session

    async def fetch(self, endpoint: str, timeout: float) -> Observation:
        """Sample the head level; never raises for transport failures"""
        client = NodeRPCClient(endpoint, self.session)
        try:
            height = await client.get_head_level(timeout)
        except FetchError as e:
            return Observation(
                source=self.source, endpoint=endpoint, fetched_at=utcnow(), error=e
            )
        return Observation(
            source=self.source, endpoint=endpoint, fetched_at=utcnow(), height=height
        )

"""
Tests for RPC access and the LocalNode queries

These run against a throwaway aiohttp server on 127.0.0.1 that mimics the
Tezos node RPC endpoints.
"""

import asyncio
import aiohttp
import pytest
from aiohttp import web
from aiohttp import test_utils

from bakerwatch.config import MonitorConfig
from bakerwatch.errors import FetchError, NodeQueryError
from bakerwatch.models import Source
from bakerwatch.node import LocalNode, count_operations
from bakerwatch.rpc import MetricSource, NodeRPCClient, parse_level


def tezos_app(header=None, bootstrapped=None, connections=None, status=200, delay=0.0):
    async def head_header(request):
        if delay:
            await asyncio.sleep(delay)
        if status != 200:
            return web.Response(status=status, text="node error")
        return web.json_response(header if header is not None else {"level": 4242})

    async def is_bootstrapped(request):
        return web.json_response(
            bootstrapped if bootstrapped is not None else {"bootstrapped": True, "sync_state": "synced"}
        )

    async def network_connections(request):
        return web.json_response(connections if connections is not None else [{}] * 7)

    async def head_block(request):
        return web.json_response(
            {"hash": "BLxyz0123456789abcdefghij", "header": {"level": 4242, "timestamp": "2024-05-01T12:00:00Z"}}
        )

    async def pending_operations(request):
        return web.json_response({"validated": [{}, {}], "branch_delayed": [{}], "unprocessed": []})

    app = web.Application()
    app.router.add_get("/chains/main/blocks/head/header", head_header)
    app.router.add_get("/chains/main/is_bootstrapped", is_bootstrapped)
    app.router.add_get("/network/connections", network_connections)
    app.router.add_get("/chains/main/blocks/head", head_block)
    app.router.add_get("/chains/main/mempool/pending_operations", pending_operations)
    return app


def with_server(app, body):
    """Run `body(url)` while `app` is served locally"""

    async def runner():
        server = test_utils.TestServer(app)
        await server.start_server()
        try:
            return await body(f"http://{server.host}:{server.port}")
        finally:
            await server.close()

    return asyncio.run(runner())

# ============================================
# MetricSource
# ============================================


def test_fetch_head_level():
    async def body(url):
        return await MetricSource(Source.LOCAL).fetch(url, 5)

    obs = with_server(tezos_app(), body)

    assert obs.ok
    assert obs.height == 4242
    assert obs.source is Source.LOCAL
    assert obs.error is None


def test_fetch_with_shared_session():
    async def body(url):
        async with aiohttp.ClientSession() as session:
            source = MetricSource(Source.REMOTE, session)
            return [await source.fetch(url, 5), await source.fetch(url + "/", 5)]

    first, second = with_server(tezos_app(), body)

    assert first.height == second.height == 4242


def test_fetch_timeout_is_captured():
    async def body(url):
        return await MetricSource(Source.REMOTE).fetch(url, 0.05)

    obs = with_server(tezos_app(delay=0.5), body)

    assert not obs.ok
    assert obs.height is None
    assert "timed out" in obs.error.reason


def test_fetch_server_error_is_captured():
    async def body(url):
        return await MetricSource(Source.REMOTE).fetch(url, 5)

    obs = with_server(tezos_app(status=503), body)

    assert obs.height is None
    assert obs.error.reason == "HTTP 503"


def test_fetch_bad_payload_is_captured():
    async def body(url):
        return await MetricSource(Source.REMOTE).fetch(url, 5)

    obs = with_server(tezos_app(header={"hash": "BLxyz"}), body)

    assert obs.height is None
    assert "invalid header" in obs.error.reason


def test_fetch_connection_refused_is_captured():
    async def body(url):
        return url

    url = with_server(tezos_app(), body)
    obs = asyncio.run(MetricSource(Source.LOCAL).fetch(url, 2))

    assert not obs.ok
    assert obs.endpoint == url


def test_fetch_invalid_url_is_reported_as_such():
    obs = asyncio.run(MetricSource(Source.LOCAL).fetch("ftp://127.0.0.1:8732", 2))

    assert not obs.ok
    assert obs.error.reason == "invalid RPC URL"


@pytest.mark.parametrize("header", [{"level": "12"}, {"level": True}, {"level": -1}, [], None])
def test_parse_level_rejects_bad_levels(header):
    with pytest.raises(FetchError):
        parse_level(header, "http://node")


def test_client_strips_trailing_slash():
    assert NodeRPCClient("http://127.0.0.1:8732/").url("/network/connections") == (
        "http://127.0.0.1:8732/network/connections"
    )

# ============================================
# LocalNode
# ============================================


def local_node(url):
    return LocalNode(MonitorConfig(rpc_url=url, fetch_timeout=5))


def test_local_node_rpc_queries():
    async def body(url):
        node = local_node(url)
        return (
            await node.local_height(),
            await node.is_bootstrapped(),
            await node.peer_count(),
            await node.head_block(),
            await node.mempool_size(),
        )

    height, bootstrapped, peers, block, mempool = with_server(tezos_app(), body)

    assert height == 4242
    assert bootstrapped is True
    assert peers == 7
    assert block.level == 4242
    assert block.hash.startswith("BLxyz")
    assert mempool == 3


def test_local_node_not_bootstrapped():
    async def body(url):
        return await local_node(url).is_bootstrapped()

    app = tezos_app(bootstrapped={"bootstrapped": False, "sync_state": "unsynced"})
    assert with_server(app, body) is False


def test_local_node_wraps_fetch_errors():
    async def body(url):
        node = local_node(url)
        with pytest.raises(NodeQueryError):
            await node.local_height()
        with pytest.raises(NodeQueryError):
            await node.peer_count()

    with_server(tezos_app(status=500, connections={"unexpected": True}), body)


def test_free_disk_gb(tmp_path):
    node = local_node("http://127.0.0.1:8732")

    assert asyncio.run(node.free_disk_gb(str(tmp_path))) >= 0
    assert asyncio.run(node.free_disk_gb(str(tmp_path / "missing"))) is None


def test_process_alive_for_missing_process():
    node = local_node("http://127.0.0.1:8732")

    assert asyncio.run(node.process_alive("no-such-process-bakerwatch-test-3f9a")) is False


def test_key_known_missing_client():
    config = MonitorConfig(client_binary="/nonexistent/tezos-client")

    with pytest.raises(NodeQueryError):
        asyncio.run(LocalNode(config).key_known("baker"))


def test_count_operations():
    assert count_operations([{}, {}]) == 2
    assert count_operations({"applied": [{}], "refused": [], "version": 2}) == 1
    with pytest.raises(NodeQueryError):
        count_operations("oops")

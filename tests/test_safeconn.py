import asyncio
import json
from contextlib import asynccontextmanager

import aiohttp
import pytest
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from nfcagent.safeconn import ConnectionClosedError, SafeConn


@asynccontextmanager
async def _client_ws(handler):
    app = web.Application()
    app.router.add_get("/ws", handler)
    async with TestServer(app) as server:
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(server.make_url("/ws")) as ws:
                yield ws


def _collecting_handler(queue):
    async def handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for msg in ws:
            await queue.put((msg.type, msg.data))
        return ws

    return handler


@pytest.mark.asyncio
async def test_concurrent_writes_all_arrive_intact():
    received = asyncio.Queue()
    async with _client_ws(_collecting_handler(received)) as ws:
        conn = SafeConn(ws)

        async def writer(i):
            for j in range(20):
                await conn.write_json({"goroutine": i, "message": j})

        await asyncio.gather(*(writer(i) for i in range(50)))
        items = []
        for _ in range(1000):
            kind, data = await asyncio.wait_for(received.get(), 5)
            assert kind == WSMsgType.TEXT
            items.append(json.loads(data))

    pairs = {(d["goroutine"], d["message"]) for d in items}
    assert pairs == {(i, j) for i in range(50) for j in range(20)}


@pytest.mark.asyncio
async def test_write_message_text():
    received = asyncio.Queue()
    async with _client_ws(_collecting_handler(received)) as ws:
        conn = SafeConn(ws)
        await conn.write_message("test message")
        kind, data = await asyncio.wait_for(received.get(), 1)
    assert kind == WSMsgType.TEXT
    assert data == "test message"


@pytest.mark.asyncio
async def test_write_message_bytes():
    received = asyncio.Queue()
    async with _client_ws(_collecting_handler(received)) as ws:
        conn = SafeConn(ws)
        await conn.write_message(b"test message")
        kind, data = await asyncio.wait_for(received.get(), 1)
    assert kind == WSMsgType.BINARY
    assert data == b"test message"


async def _hello_handler(request):
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    await ws.send_str("hello from server")
    await ws.close()
    return ws


@pytest.mark.asyncio
async def test_read_message():
    async with _client_ws(_hello_handler) as ws:
        conn = SafeConn(ws)
        kind, data = await asyncio.wait_for(conn.read_message(), 1)
    assert kind == WSMsgType.TEXT
    assert data == "hello from server"


@pytest.mark.asyncio
async def test_read_after_server_close_raises():
    async with _client_ws(_hello_handler) as ws:
        conn = SafeConn(ws)
        await asyncio.wait_for(conn.read_message(), 1)
        with pytest.raises(ConnectionClosedError):
            await asyncio.wait_for(conn.read_message(), 1)


@pytest.mark.asyncio
async def test_close_closes_underlying_connection():
    received = asyncio.Queue()
    async with _client_ws(_collecting_handler(received)) as ws:
        conn = SafeConn(ws)
        assert conn.closed is False
        await conn.close()
        assert conn.closed is True
        assert ws.closed is True
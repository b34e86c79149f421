"""A WebSocket wrapper that serialises writes."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Tuple, Union

from aiohttp import ClientWebSocketResponse, WSMsgType, web

WebSocket = Union[ClientWebSocketResponse, web.WebSocketResponse]

_CLOSING_TYPES = {WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED, WSMsgType.ERROR}


class ConnectionClosedError(ConnectionError):
    """Raised when reading from a WebSocket that has closed."""


class SafeConn:
    """Wraps a WebSocket so that concurrent writers never interleave."""

    def __init__(self, conn: WebSocket) -> None:
        self.conn = conn
        self._lock = asyncio.Lock()

    async def write_json(self, value: Any) -> None:
        """Send a value encoded as a JSON text message."""
        text = json.dumps(value)
        async with self._lock:
            await self.conn.send_str(text)

    async def write_message(self, data: Union[str, bytes]) -> None:
        """Send text as a text message and bytes as a binary message."""
        async with self._lock:
            if isinstance(data, str):
                await self.conn.send_str(data)
            else:
                await self.conn.send_bytes(bytes(data))

    async def read_message(self) -> Tuple[WSMsgType, Union[str, bytes]]:
        """Receive the next data message as (type, data); raises when the connection closes."""
        msg = await self.conn.receive()
        if msg.type in _CLOSING_TYPES:
            raise ConnectionClosedError(f"websocket closed ({msg.type.name})")
        return msg.type, msg.data

    async def close(self) -> None:
        """Close the underlying connection."""
        await self.conn.close()

    @property
    def closed(self) -> bool:
        return self.conn.closed
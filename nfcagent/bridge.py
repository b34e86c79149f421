"""In-process bridge between the device side and the client side."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional, TypeVar

from nfcagent.writerequest import WriteRequest

BUFFER_SIZE = 10

_T = TypeVar("_T")


class BridgeClosedError(Exception):
    """Raised when an operation is attempted on a closed bridge."""

    def __init__(self, message: str = "bridge is closed") -> None:
        super().__init__(message)


@dataclass
class WriteResponseMessage:
    """Result of a write operation."""

    request_id: str
    success: bool
    error: str = ""
    payload: Any = None


@dataclass
class WriteRequestMessage:
    """A write request together with the client that made it."""

    request_id: str
    client_id: str
    request: WriteRequest
    response_future: Optional["asyncio.Future[WriteResponseMessage]"] = field(
        default=None, repr=False, compare=False
    )

    def respond(self, response: WriteResponseMessage) -> bool:
        """Deliver the response; False if the request was not sent or is already answered."""
        future = self.response_future
        if future is None or future.done():
            return False
        future.set_result(response)
        return True


class ServerBridge:
    """Bounded queues carrying tag data, device status and write requests."""

    def __init__(self) -> None:
        self.tag_data: asyncio.Queue = asyncio.Queue(maxsize=BUFFER_SIZE)
        self.write_requests: asyncio.Queue = asyncio.Queue(maxsize=BUFFER_SIZE)
        self.device_status: asyncio.Queue = asyncio.Queue(maxsize=BUFFER_SIZE)
        self.done = asyncio.Event()

    def close(self) -> None:
        """Signal every user of the bridge to stop."""
        self.done.set()

    def closed(self) -> bool:
        """Whether the bridge has been closed."""
        return self.done.is_set()

    def _offer(self, queue: asyncio.Queue, item: Any) -> bool:
        if self.closed():
            return False
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            return False
        return True

    def send_tag_data(self, data: Any) -> bool:
        """Queue tag data; False if the bridge is closed or the queue is full."""
        return self._offer(self.tag_data, data)

    def send_device_status(self, status: Any) -> bool:
        """Queue a device status; False if the bridge is closed or the queue is full."""
        return self._offer(self.device_status, status)

    async def _until_closed(self, awaitable: Awaitable[_T]) -> _T:
        task = asyncio.ensure_future(awaitable)
        closing = asyncio.ensure_future(self.done.wait())
        try:
            finished, _ = await asyncio.wait(
                {task, closing}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            closing.cancel()
            raise
        closing.cancel()
        if task in finished:
            return task.result()
        task.cancel()
        raise BridgeClosedError()

    async def send_write_request(self, msg: WriteRequestMessage) -> WriteResponseMessage:
        """Hand a write request to the device side and wait for its response."""
        if msg.response_future is None:
            msg.response_future = asyncio.get_running_loop().create_future()
        if self.closed():
            raise BridgeClosedError()
        await self._until_closed(self.write_requests.put(msg))
        return await self._until_closed(msg.response_future)
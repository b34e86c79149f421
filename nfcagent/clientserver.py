"""WebSocket server through which client applications consume NFC data."""

from __future__ import annotations

import asyncio
import base64
import dataclasses
import datetime
import hmac
import json
import logging
import ssl
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import WSMsgType, web

from nfcagent.bridge import (
    BridgeClosedError,
    ServerBridge,
    WriteRequestMessage,
    WriteResponseMessage,
)
from nfcagent.constants import (
    CORS_HEADERS,
    WS_MESSAGE_TYPE_DEVICE_STATUS,
    WS_MESSAGE_TYPE_ERROR,
    WS_MESSAGE_TYPE_TAG_DATA,
    WS_MESSAGE_TYPE_WRITE_REQUEST,
    WS_MESSAGE_TYPE_WRITE_RESPONSE,
)
from nfcagent.safeconn import ConnectionClosedError, SafeConn
from nfcagent.writerequest import WriteRequest

log = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 5.0


@dataclass
class ClientServerConfig:
    """Settings for the client server."""

    port: int = 0
    api_secret: str = ""
    cert_file: str = ""
    key_file: str = ""

    def tls_enabled(self) -> bool:
        """Whether both a certificate and a key are configured."""
        return bool(self.cert_file) and bool(self.key_file)


def _rfc3339(moment: datetime.datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    base = moment.strftime("%Y-%m-%dT%H:%M:%S")
    offset = moment.utcoffset()
    if not offset:
        return base + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    total = abs(total)
    return f"{base}{sign}{total // 3600:02d}:{total % 3600 // 60:02d}"


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return value


def _message_info(message: Any) -> tuple:
    """(text, message description) for an NDEF message or a raw text message."""
    if hasattr(message, "to_json_map"):
        try:
            text = message.get_text() or ""
        except Exception:
            text = ""
        return text, message.to_json_map()
    if hasattr(message, "text"):
        raw_bytes = getattr(message, "bytes", None)
        raw = raw_bytes() if callable(raw_bytes) else str(message.text).encode("utf-8")
        return message.text, {
            "type": "raw",
            "data": base64.b64encode(bytes(raw)).decode("ascii"),
        }
    return "", None


def tag_data_payload(data: Any) -> Dict[str, Any]:
    """The JSON payload sent to clients for one piece of tag data."""
    err = getattr(data, "err", None)
    err_text = str(err) if err is not None else None
    card = getattr(data, "card", None)
    if card is None:
        return {"uid": "", "text": "", "err": err_text}

    payload: Dict[str, Any] = {
        "uid": card.uid,
        "type": card.type,
        "technology": card.technology,
        "scannedAt": _rfc3339(card.scanned_at),
        "err": err_text,
    }
    try:
        message = card.read_message()
    except Exception:
        payload["text"] = ""
        return payload
    text, info = _message_info(message)
    payload["message"] = info
    payload["text"] = text
    return payload


def _error_response(request_id: str, code: str, message: str) -> Dict[str, Any]:
    return {
        "id": request_id,
        "type": WS_MESSAGE_TYPE_ERROR,
        "success": False,
        "error": message,
        "payload": {"code": code},
    }


@web.middleware
async def _cors_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    if request.method == "OPTIONS":
        return web.Response(status=200, headers=CORS_HEADERS)
    response = await handler(request)
    if not response.prepared:
        response.headers.update(CORS_HEADERS)
    return response


class ClientServer:
    """Serves WebSocket clients with tag data and forwards their write requests."""

    def __init__(self, config: ClientServerConfig, bridge: ServerBridge) -> None:
        self.config = config
        self.bridge = bridge
        self._clients: Dict[SafeConn, str] = {}
        self._last_card: Any = None
        self._tasks: list = []
        self._stopped = asyncio.Event()

    def build_app(self) -> web.Application:
        """The web application with its routes and bridge listeners."""
        app = web.Application(middlewares=[_cors_middleware])
        app.router.add_route("*", "/ws", self._handle_websocket)
        app.router.add_route("*", "/api/v1/health", self._handle_health)
        app.router.add_route("*", "/{tail:.*}", self._handle_root)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def start(self) -> None:
        """Serve until stop() is called."""
        log.info("[client] Starting Client Server on port %d...", self.config.port)
        self._stopped.clear()
        runner = web.AppRunner(self.build_app(), shutdown_timeout=SHUTDOWN_TIMEOUT)
        await runner.setup()
        ssl_context: Optional[ssl.SSLContext] = None
        if self.config.tls_enabled():
            ssl_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
            ssl_context.load_cert_chain(self.config.cert_file, self.config.key_file)
            log.info("[client] Listening on :%d (TLS)", self.config.port)
        else:
            log.info("[client] Listening on :%d", self.config.port)
        try:
            site = web.TCPSite(runner, port=self.config.port, ssl_context=ssl_context)
            await site.start()
            await self._stopped.wait()
            log.info("[client] Server context cancelled, shutting down...")
        finally:
            await runner.cleanup()

    def stop(self) -> None:
        """Ask a running server to shut down."""
        self._stopped.set()

    def client_count(self) -> int:
        """Number of connected clients."""
        return len(self._clients)

    def last_card(self) -> Any:
        """The most recently received card, or None."""
        return self._last_card

    async def _on_startup(self, app: web.Application) -> None:
        self._tasks = [
            asyncio.ensure_future(self._drain(self.bridge.tag_data, self._on_tag_data)),
            asyncio.ensure_future(
                self._drain(self.bridge.device_status, self._broadcast_device_status)
            ),
        ]

    async def _on_shutdown(self, app: web.Application) -> None:
        for conn in list(self._clients):
            await conn.close()

    async def _on_cleanup(self, app: web.Application) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _drain(
        self, queue: asyncio.Queue, handle: Callable[[Any], Awaitable[None]]
    ) -> None:
        while not self.bridge.closed():
            getter = asyncio.ensure_future(queue.get())
            closing = asyncio.ensure_future(self.bridge.done.wait())
            try:
                await asyncio.wait({getter, closing}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                closing.cancel()
                if not getter.done():
                    getter.cancel()
            if getter.cancelled() or not getter.done():
                return
            await handle(getter.result())

    async def _on_tag_data(self, data: Any) -> None:
        card = getattr(data, "card", None)
        if card is not None:
            self._last_card = card
        message = {"type": WS_MESSAGE_TYPE_TAG_DATA, "payload": tag_data_payload(data)}
        for conn in list(self._clients):
            try:
                await conn.write_json(message)
            except Exception as exc:
                log.warning("[client] Failed to send tag data: %s", exc)

    async def _broadcast_device_status(self, status: Any) -> None:
        message = {"type": WS_MESSAGE_TYPE_DEVICE_STATUS, "payload": _jsonable(status)}
        for conn in list(self._clients):
            try:
                await conn.write_json(message)
            except Exception as exc:
                log.warning("[client] Failed to send device status: %s", exc)

    async def _handle_root(self, request: web.Request) -> web.Response:
        return web.Response(text="NFC Client Server")

    async def _handle_health(self, request: web.Request) -> web.Response:
        if request.method != "GET":
            return web.Response(status=405, text="Method not allowed\n")
        body = {
            "status": "ok",
            "type": "client",
            "timestamp": _rfc3339(datetime.datetime.now().astimezone()),
            "clients": self.client_count(),
        }
        return web.Response(
            text=json.dumps(body, sort_keys=True) + "\n",
            content_type="application/json",
        )

    def _secret_ok(self, request: web.Request) -> bool:
        expected = self.config.api_secret
        if not expected:
            return True
        given = request.query.get("secret", "")
        return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))

    async def _handle_websocket(self, request: web.Request) -> web.StreamResponse:
        if not self._secret_ok(request):
            log.warning("[client] WebSocket connection rejected: invalid API secret")
            return web.Response(status=401, text="Unauthorized: Invalid API secret\n")

        ws = web.WebSocketResponse()
        if not ws.can_prepare(request).ok:
            log.warning("[client] WebSocket upgrade error: not a websocket request")
            return web.Response(status=400, text="Bad Request\n")
        ws.headers.update(CORS_HEADERS)
        await ws.prepare(request)

        conn = SafeConn(ws)
        client_id = str(uuid.uuid4())
        self._clients[conn] = client_id
        log.info(
            "[client] Client connected: %s (total: %d)", client_id[:8], self.client_count()
        )
        try:
            await self._serve_client(conn, client_id)
        finally:
            await conn.close()
            self._clients.pop(conn, None)
            log.info(
                "[client] Client disconnected: %s (total: %d)",
                client_id[:8],
                self.client_count(),
            )
        return ws

    async def _serve_client(self, conn: SafeConn, client_id: str) -> None:
        while True:
            try:
                msg_type, data = await conn.read_message()
            except ConnectionClosedError:
                return
            if msg_type not in (WSMsgType.TEXT, WSMsgType.BINARY):
                continue
            try:
                req = json.loads(data)
            except (ValueError, UnicodeDecodeError) as exc:
                log.warning("[client] Failed to parse message: %s", exc)
                await self._send_error(conn, "", "PARSE_ERROR", "Invalid message format")
                continue
            if req is None:
                req = {}
            if (
                not isinstance(req, dict)
                or not isinstance(req.get("id", ""), (str, type(None)))
                or not isinstance(req.get("type", ""), (str, type(None)))
            ):
                await self._send_error(conn, "", "PARSE_ERROR", "Invalid message format")
                continue

            request_id = req.get("id") or ""
            message_type = req.get("type") or ""
            if message_type == WS_MESSAGE_TYPE_WRITE_REQUEST:
                await self._handle_write_request(conn, client_id, request_id, req.get("payload"))
            else:
                log.warning("[client] Unknown message type: %s", message_type)
                await self._send_error(
                    conn,
                    request_id,
                    "UNKNOWN_TYPE",
                    f"Unknown message type: {message_type}",
                )

    async def _handle_write_request(
        self, conn: SafeConn, client_id: str, request_id: str, payload: Any
    ) -> None:
        try:
            write_req = WriteRequest.from_payload(payload)
        except ValueError as exc:
            log.warning("[client] Failed to parse write request: %s", exc)
            await self._send_error(
                conn, request_id, "INVALID_WRITE_REQUEST", "Failed to parse write request"
            )
            return

        msg = WriteRequestMessage(
            request_id=request_id or str(uuid.uuid4()),
            client_id=client_id,
            request=write_req,
        )
        try:
            response: WriteResponseMessage = await self.bridge.send_write_request(msg)
        except BridgeClosedError as exc:
            log.warning("[client] Write request failed: %s", exc)
            await self._send_error(conn, request_id, "WRITE_FAILED", str(exc))
            return

        reply: Dict[str, Any] = {
            "id": request_id,
            "type": WS_MESSAGE_TYPE_WRITE_RESPONSE,
            "success": response.success,
        }
        if response.success:
            reply["payload"] = {"message": "Write operation completed successfully"}
        else:
            reply["error"] = response.error
            reply["payload"] = {"code": "WRITE_FAILED"}
        try:
            await conn.write_json(reply)
        except Exception as exc:
            log.warning("[client] Failed to send write response: %s", exc)

    async def _send_error(
        self, conn: SafeConn, request_id: str, code: str, message: str
    ) -> None:
        try:
            await conn.write_json(_error_response(request_id, code, message))
        except Exception as exc:
            log.warning("[client] Failed to send error response: %s", exc)
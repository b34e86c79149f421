# nfcagent

The networking core of an NFC agent. Tag scans and device status updates are
put on an in-process bridge. Client applications receive them over WebSocket,
and can send write requests back through the same bridge. The package also
keeps a local certificate authority and server certificate so the WebSocket
server can run over TLS, and offers a small HTTP server that hands the CA
certificate out to phones and tablets.

Everything network-facing is built on `asyncio` and `aiohttp`.

## Modules

- `nfcagent.constants`: message type names (`tagData`, `deviceStatus`,
  `writeRequest`, `writeResponse`, `error`), mDNS service names and the CORS
  headers used by the servers.
- `nfcagent.bridge`: `ServerBridge`, with three bounded `asyncio.Queue`s of ten
  items each (`tag_data`, `device_status`, `write_requests`) and a `done` event.
  - `send_tag_data()` and `send_device_status()` return `False` instead of
    waiting when the bridge is closed or the queue is full.
  - `send_write_request()` puts a `WriteRequestMessage` on the queue and waits
    for its `WriteResponseMessage`. It raises `BridgeClosedError` if the bridge
    is closed before or while it waits.
  - `close()` and `closed()` control and report shutdown.
- `nfcagent.registry`: `HandlerRegistry`, a thread-safe map from message types
  to handlers.
  - `handle()` raises `ValueError` for a missing handler, an empty type or a
    duplicate.
  - `get()` returns `None` when nothing is registered.
  - The registry also keeps custom WebSocket matchers
    (`handle_websocket()`, `try_custom_websocket_handler()`) and lifecycle
    starters (`register_lifecycle()`, `start_lifecycle_handlers()`).
- `nfcagent.safeconn`: `SafeConn` wraps an aiohttp WebSocket so that
  concurrent writers never interleave.
  - `write_json()` and `write_message()` send messages.
  - `read_message()` returns `(type, data)` and raises `ConnectionClosedError`
    once the connection closes.
- `nfcagent.writerequest`: `WriteRequest` and `WriteRecord` describe a
  complete overwrite of a card's NDEF message.
  - `from_payload()` parses a decoded JSON payload.
  - `normalized_records()` applies the defaults: no type means `text`, and a
    text record with no language gets `en`. It raises `ValueError` for an empty
    list or a type other than `text` or `uri`.
- `nfcagent.network`: `get_lan_ips()` returns the non-loopback IPv4 addresses
  of the interfaces that are up. `get_all_hosts()` returns `localhost`,
  `127.0.0.1` and those addresses.
- `nfcagent.certmanager`: `CertificateManager`, described under TLS below.
- `nfcagent.bootstrap`: `BootstrapServer` and `format_ip_links()`.
- `nfcagent.clientserver`: `ClientServer`, `ClientServerConfig` and
  `tag_data_payload()`.

## Write requests

```python
from nfcagent.writerequest import WriteRequest

request = WriteRequest.from_payload({
    "records": [
        {"type": "text", "content": "Hello, NFC!"},
        {"content": "no type, so text in English"},
        {"type": "uri", "content": "https://example.com"},
    ]
})
for record in request.normalized_records():
    print(record.type, record.language, record.content)
```

## Bridge

The device side of an application reads write requests from the bridge and
answers each one with `respond()`:

```python
import asyncio

from nfcagent.bridge import ServerBridge, WriteResponseMessage


async def device_side(bridge: ServerBridge) -> None:
    while not bridge.closed():
        msg = await bridge.write_requests.get()
        try:
            records = msg.request.normalized_records()
        except ValueError as exc:
            msg.respond(WriteResponseMessage(msg.request_id, False, str(exc)))
            continue
        # ... write `records` to the card ...
        msg.respond(WriteResponseMessage(msg.request_id, True))


async def main() -> None:
    bridge = ServerBridge()
    bridge.send_device_status({"connected": True})
    task = asyncio.create_task(device_side(bridge))
    ...
    bridge.close()
    task.cancel()
```

## Client server

```python
import asyncio

from nfcagent.bridge import ServerBridge
from nfcagent.clientserver import ClientServer, ClientServerConfig


async def main() -> None:
    config = ClientServerConfig(port=9471, api_secret="secret")
    server = ClientServer(config, ServerBridge())
    await server.start()  # runs until server.stop() is called

asyncio.run(main())
```

TLS is used when `ClientServerConfig` has both `cert_file` and `key_file`.
`build_app()` returns the `aiohttp` application on its own, for example to be
served by your own runner or test client.

The server has these routes:

- `/ws`: the WebSocket endpoint. When `api_secret` is set, the `secret` query
  parameter must match it, or the reply is `401`.
  - Every tag data item taken from the bridge is sent to all clients as
    `{"type": "tagData", "payload": ...}`. The payload is built by
    `tag_data_payload()`.
  - Every device status is sent as `{"type": "deviceStatus", ...}`.
  - A client's `writeRequest` goes through the bridge and is answered with a
    `writeResponse`.
  - Unparsable messages get an `error` reply with code `PARSE_ERROR`, and
    messages of any other type get one with code `UNKNOWN_TYPE`.
- `/api/v1/health`: accepts `GET` and returns JSON with `status`, `type`,
  `timestamp` and `clients`. Other methods get `405`.
- Any other path returns the text `NFC Client Server`.

Every response carries permissive CORS headers, and `OPTIONS` requests are
answered with `200`. `client_count()` reports the number of connected clients,
and `last_card()` returns the card of the most recent tag data.

`tag_data_payload()` works with any object that has a `card` attribute and an
`err` attribute. The card must have `uid`, `type`, `technology`, `scanned_at`
and `read_message()`.

## TLS

```python
from nfcagent.certmanager import CertificateManager

manager = CertificateManager("/path/to/config")
cert_file, key_file = manager.ensure_certificates()
print(manager.ca_fingerprint())
```

Inside the configuration directory, the manager uses these files:

- `ca/rootCA.pem` and `ca/rootCA-key.pem`: the CA certificate and its key.
  The CA is created on first use.
- `tls/server.crt` and `tls/server.key`: the server certificate, issued for
  every host from `get_all_hosts()`, and its key.
- `tls/hosts.txt`: the hosts the certificate covers.

`ensure_certificates()` generates the certificate when it is missing or when
the hosts differ from the cached ones. Before issuing, the manager adds the CA
to the system trust store by running the platform's tool:

- `security` on macOS;
- `update-ca-certificates`, `update-ca-trust` or `trust` on Linux, through
  `sudo` when not root;
- `certutil` on Windows.

Pass `trust_installer=` to replace that step, and `hosts_provider=` to supply
the hosts yourself. Failures raise `CertificateError`.

`watch_network_changes()` starts a background thread that checks the hosts
every five seconds. When they change, it regenerates the certificate and puts
an item on the returned `queue.Queue`. `stop_watching()` ends the thread.

### CA bootstrap server

```python
import asyncio

from nfcagent.bootstrap import BootstrapServer
from nfcagent.certmanager import CertificateManager


async def main() -> None:
    bootstrap = BootstrapServer(CertificateManager("/path/to/config"), 8080)
    await bootstrap.start()
    ...
    await bootstrap.stop()
```

The bootstrap server answers over plain HTTP:

- `/ca.pem` and `/ca.crt` return the CA certificate as a download, or `404`
  if it does not exist yet.
- Every other path returns an HTML page with the CA fingerprint, installation
  steps for iOS and Android, and the download URLs. `instructions_html()`
  returns the same page as a string.

## What this package does not do

- It does not talk to NFC readers, phones or cards. Something else must feed
  tag data and device status into the `ServerBridge`, and must take write
  requests from `bridge.write_requests` and answer them.
- It does not encode NDEF messages. `WriteRequest.normalized_records()` only
  validates the records and fills in defaults.
- It has no device-facing WebSocket server and does not announce itself over
  mDNS. `nfcagent.constants` only holds the service names.
- It has no command-line program and no tray icon. The servers are started
  from your own `asyncio` code.
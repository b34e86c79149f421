"""Plain-HTTP server that hands out the local CA certificate to devices."""

from __future__ import annotations

import ipaddress
import logging
from html import escape
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from aiohttp import web

from nfcagent.constants import DISPLAY_NAME
from nfcagent.network import get_all_hosts

log = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 5.0
CA_DOWNLOAD_NAME = "nfc-agent-ca.pem"

HostsProvider = Callable[[], List[str]]

_STYLES: Dict[str, str] = {
    "*": "box-sizing: border-box;",
    "body": (
        'font-family: system-ui, "Segoe UI", Roboto, sans-serif; '
        "max-width: 600px; margin: 0 auto; padding: 20px; background: #f5f5f5;"
    ),
    ".card": (
        "background: #fff; border-radius: 12px; padding: 24px; "
        "margin-bottom: 16px; box-shadow: 0 2px 8px rgba(0,0,0,0.1);"
    ),
    "h1": "margin-top: 0; color: #333;",
    "h2": "color: #666; font-size: 1.1em; margin-top: 24px;",
    ".download-btn": (
        "display: inline-block; background: #007AFF; color: #fff; "
        "padding: 14px 28px; border-radius: 8px; text-decoration: none; "
        "font-weight: 600; font-size: 1.1em;"
    ),
    ".download-btn:hover": "background: #0056b3;",
    ".fingerprint": (
        "font-family: monospace; font-size: 0.75em; background: #f0f0f0; "
        "padding: 12px; border-radius: 6px; word-break: break-all; color: #666;"
    ),
    ".steps": "padding-left: 20px;",
    ".steps li": "margin-bottom: 12px; line-height: 1.5;",
    ".platform": (
        "display: inline-block; background: #e0e0e0; padding: 2px 8px; "
        "border-radius: 4px; font-weight: 600; font-size: 0.9em;"
    ),
    ".warning": (
        "background: #fff3cd; border-left: 4px solid #ffc107; padding: 12px; "
        "margin: 16px 0; border-radius: 0 6px 6px 0;"
    ),
}

_ARROW = "\u2192"

_PLATFORM_STEPS: Sequence[Tuple[str, Sequence[str]]] = (
    (
        "iOS",
        (
            "Tap the download button above",
            f"Open <strong>Settings {_ARROW} Profile Downloaded</strong>",
            "Tap <strong>Install</strong> and enter your passcode",
            f"Open <strong>Settings {_ARROW} General {_ARROW} About {_ARROW} "
            "Certificate Trust Settings</strong>",
            'Turn on full trust for the "mkcert" certificate',
        ),
    ),
    (
        "Android",
        (
            "Tap the download button above",
            f"Open <strong>Settings {_ARROW} Security {_ARROW} Encryption &amp; credentials</strong>",
            f"Tap <strong>Install a certificate {_ARROW} CA certificate</strong>",
            "Pick the downloaded file",
            "Confirm the installation",
        ),
    ),
)


def format_ip_links(hosts: List[str], port: int) -> str:
    """Download-URL lines for every host that is an IP address other than loopback."""
    links = []
    for host in hosts:
        if host in ("localhost", "127.0.0.1"):
            continue
        try:
            ipaddress.ip_address(host)
        except ValueError:
            continue
        links.append(f"            http://{host}:{port}/ca.pem<br>")
    return "\n".join(links)


def _stylesheet() -> str:
    return "\n".join(f"        {selector} {{ {rules} }}" for selector, rules in _STYLES.items())


def _platform_card(platform: str, steps: Sequence[str]) -> str:
    items = "\n".join(f"            <li>{step}</li>" for step in steps)
    return (
        '    <div class="card">\n'
        f'        <h2><span class="platform">{platform}</span> Installation</h2>\n'
        '        <ol class="steps">\n'
        f"{items}\n"
        "        </ol>\n"
        "    </div>"
    )


def _render_page(app_name: str, fingerprint: str, port: int, ip_links: str) -> str:
    name = escape(app_name)
    platform_cards = "\n\n".join(_platform_card(p, s) for p, s in _PLATFORM_STEPS)
    head = "\n".join(
        [
            "<!DOCTYPE html>",
            "<html>",
            "<head>",
            '    <meta charset="utf-8">',
            '    <meta name="viewport" content="width=device-width, initial-scale=1">',
            f"    <title>{name} - Install CA Certificate</title>",
            "    <style>",
            _stylesheet(),
            "    </style>",
            "</head>",
        ]
    )
    intro = "\n".join(
        [
            '    <div class="card">',
            "        <h1>Install CA Certificate</h1>",
            f"        <p>Install this certificate authority on your device to reach {name} over a secure connection.</p>",
            '        <p style="text-align: center; margin: 24px 0;">',
            '            <a href="/ca.pem" class="download-btn">Download CA Certificate</a>',
            "        </p>",
            '        <div class="warning">',
            f"            <strong>Check the fingerprint</strong> against the one in the {name} logs before you trust it.",
            "        </div>",
            "        <h2>CA Fingerprint (SHA256)</h2>",
            f'        <div class="fingerprint">{escape(fingerprint)}</div>',
            "    </div>",
        ]
    )
    urls = (
        '    <div class="card">\n'
        "        <h2>Download URLs</h2>\n"
        '        <p style="font-family: monospace; font-size: 0.9em;">\n'
        f"            http://localhost:{port}/ca.pem<br>\n"
        f"{ip_links}        </p>\n"
        "    </div>"
    )
    body = "\n\n".join([intro, platform_cards, urls])
    return f"{head}\n<body>\n{body}\n</body>\n</html>"


class BootstrapServer:
    """Serves the CA certificate and installation instructions over plain HTTP."""

    def __init__(
        self,
        manager,
        port: int,
        hosts_provider: Optional[HostsProvider] = None,
    ) -> None:
        self.manager = manager
        self.port = port
        self.hosts_provider = hosts_provider or get_all_hosts
        self._runner: Optional[web.AppRunner] = None

    def _hosts(self) -> List[str]:
        try:
            return list(self.hosts_provider())
        except OSError:
            return []

    def _fingerprint(self) -> str:
        try:
            return self.manager.ca_fingerprint()
        except (OSError, ValueError):
            return ""

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/ca.pem", self._handle_ca_cert)
        app.router.add_route("*", "/ca.crt", self._handle_ca_cert)
        app.router.add_route("*", "/{tail:.*}", self._handle_instructions)
        return app

    async def start(self) -> None:
        """Start listening on the configured port and return once bound."""
        runner = web.AppRunner(self._build_app(), shutdown_timeout=SHUTDOWN_TIMEOUT)
        await runner.setup()
        site = web.TCPSite(runner, port=self.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner

        log.info("CA Bootstrap server running on http://localhost:%d", self.port)
        for host in self._hosts():
            if host != "localhost":
                log.info("  http://%s:%d/ca.pem", host, self.port)
        fingerprint = self._fingerprint()
        if fingerprint:
            log.info("CA Fingerprint (SHA256):")
            log.info("  %s", fingerprint)

    async def stop(self) -> None:
        """Shut the server down; does nothing if it is not running."""
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()

    def instructions_html(self) -> str:
        """The installation instructions page."""
        return _render_page(
            DISPLAY_NAME,
            self._fingerprint(),
            self.port,
            format_ip_links(self._hosts(), self.port),
        )

    async def _handle_ca_cert(self, request: web.Request) -> web.Response:
        try:
            ca_cert = self.manager.read_ca_cert()
        except OSError:
            return web.Response(
                status=404,
                text="CA certificate not found\n",
                content_type="text/plain",
            )
        log.info("CA certificate downloaded by %s", request.remote)
        return web.Response(
            body=ca_cert,
            headers={
                "Content-Type": "application/x-pem-file",
                "Content-Disposition": f'attachment; filename="{CA_DOWNLOAD_NAME}"',
                "Access-Control-Allow-Origin": "*",
            },
        )

    async def _handle_instructions(self, request: web.Request) -> web.Response:
        return web.Response(
            text=self.instructions_html(),
            content_type="text/html",
            charset="utf-8",
        )
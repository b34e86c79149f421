import socket

import aiohttp
import pytest

from nfcagent.bootstrap import BootstrapServer, format_ip_links
from nfcagent.constants import DISPLAY_NAME

PEM = b"-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n"


class FakeManager:
    def __init__(self, cert=PEM, fingerprint="AB:CD:EF"):
        self.cert = cert
        self.fingerprint = fingerprint

    def read_ca_cert(self):
        if self.cert is None:
            raise FileNotFoundError("missing")
        return self.cert

    def ca_fingerprint(self):
        if self.fingerprint is None:
            raise FileNotFoundError("missing")
        return self.fingerprint


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_format_ip_links_skips_loopback_and_hostnames():
    hosts = ["localhost", "127.0.0.1", "myhost.local", "192.168.1.5"]
    assert format_ip_links(hosts, 8080) == "            http://192.168.1.5:8080/ca.pem<br>"


def test_format_ip_links_joins_lines():
    result = format_ip_links(["10.0.0.2", "10.0.0.3"], 9000)
    lines = result.split("\n")
    assert len(lines) == 2
    assert lines[0].strip() == "http://10.0.0.2:9000/ca.pem<br>"
    assert lines[1].strip() == "http://10.0.0.3:9000/ca.pem<br>"


def test_format_ip_links_empty():
    assert format_ip_links(["localhost", "127.0.0.1"], 80) == ""


def test_instructions_html_contains_details():
    server = BootstrapServer(
        FakeManager(fingerprint="11:22:33"), 8111, hosts_provider=lambda: ["localhost", "10.1.2.3"]
    )
    html = server.instructions_html()
    assert html.startswith("<!DOCTYPE html>")
    assert f"<title>{DISPLAY_NAME} - Install CA Certificate</title>" in html
    assert '<div class="fingerprint">11:22:33</div>' in html
    assert "http://localhost:8111/ca.pem<br>" in html
    assert "http://10.1.2.3:8111/ca.pem<br>" in html


def test_instructions_html_without_fingerprint_or_hosts():
    def failing_hosts():
        raise OSError("no interfaces")

    server = BootstrapServer(FakeManager(fingerprint=None), 8112, hosts_provider=failing_hosts)
    html = server.instructions_html()
    assert '<div class="fingerprint"></div>' in html
    assert "http://localhost:8112/ca.pem<br>\n        </p>" in html


@pytest.mark.asyncio
async def test_serves_ca_certificate():
    port = _free_port()
    server = BootstrapServer(FakeManager(), port, hosts_provider=lambda: ["localhost"])
    await server.start()
    try:
        async with aiohttp.ClientSession() as session:
            for path in ("/ca.pem", "/ca.crt"):
                async with session.get(f"http://127.0.0.1:{port}{path}") as resp:
                    assert resp.status == 200
                    assert await resp.read() == PEM
                    assert resp.headers["Content-Type"] == "application/x-pem-file"
                    assert resp.headers["Access-Control-Allow-Origin"] == "*"
                    assert "attachment" in resp.headers["Content-Disposition"]
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_missing_ca_certificate_is_404():
    port = _free_port()
    server = BootstrapServer(FakeManager(cert=None), port, hosts_provider=lambda: [])
    await server.start()
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://127.0.0.1:{port}/ca.pem") as resp:
                assert resp.status == 404
                assert "CA certificate not found" in await resp.text()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_any_other_path_serves_instructions():
    port = _free_port()
    server = BootstrapServer(FakeManager(fingerprint="FE:ED"), port, hosts_provider=lambda: [])
    await server.start()
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://127.0.0.1:{port}/some/page") as resp:
                assert resp.status == 200
                assert resp.headers["Content-Type"].startswith("text/html")
                body = await resp.text()
                assert body == server.instructions_html()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_stop_releases_port():
    port = _free_port()
    server = BootstrapServer(FakeManager(), port, hosts_provider=lambda: [])
    await server.start()
    await server.stop()
    second = BootstrapServer(FakeManager(), port, hosts_provider=lambda: [])
    await second.start()
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://127.0.0.1:{port}/ca.pem") as resp:
                assert await resp.read() == PEM
    finally:
        await second.stop()
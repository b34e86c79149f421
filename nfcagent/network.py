"""Discovery of the local addresses a certificate must cover."""

from __future__ import annotations

import ipaddress
import socket
from typing import List

import psutil

LOCAL_HOSTS = ("localhost", "127.0.0.1")


def get_lan_ips() -> List[str]:
    """All IPv4 addresses of interfaces that are up, excluding loopback."""
    addresses = psutil.net_if_addrs()
    stats = psutil.net_if_stats()
    ips: List[str] = []
    for name, addrs in addresses.items():
        stat = stats.get(name)
        if stat is None or not stat.isup:
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.ip_address(addr.address)
            except ValueError:
                continue
            if ip.version == 4 and not ip.is_loopback:
                ips.append(str(ip))
    return ips


def get_all_hosts() -> List[str]:
    """localhost, 127.0.0.1 and every LAN address, for certificate generation."""
    return [*LOCAL_HOSTS, *get_lan_ips()]
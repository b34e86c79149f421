"""Networking core of an NFC agent: tag-data bridge, client WebSocket server, write requests, TLS certificates and CA bootstrap."""

__version__ = "0.1.0"

__all__ = [
    "bootstrap",
    "bridge",
    "certmanager",
    "clientserver",
    "constants",
    "network",
    "registry",
    "safeconn",
    "writerequest",
]
"""Automatic TLS certificate generation backed by a local certificate authority."""

from __future__ import annotations

import datetime
import getpass
import ipaddress
import logging
import os
import queue
import shutil
import socket
import subprocess
import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from nfcagent.network import LOCAL_HOSTS, get_all_hosts

log = logging.getLogger(__name__)

WATCH_INTERVAL = 5.0

HostsProvider = Callable[[], List[str]]
TrustInstaller = Callable[[Path], None]


class CertificateError(Exception):
    """Raised when certificates cannot be created, installed or read."""


def _user_at_host() -> str:
    try:
        user = getpass.getuser()
    except Exception:
        user = "user"
    return f"{user}@{socket.gethostname()}"


def _privileged(cmd: List[str]) -> List[str]:
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return cmd
    if shutil.which("sudo"):
        return ["sudo", *cmd]
    return cmd


def _run(cmd: List[str]) -> None:
    try:
        subprocess.run(cmd, check=True, capture_output=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise CertificateError(f"command {' '.join(cmd)} failed: {exc}") from exc


_LINUX_STORES = (
    ("/usr/local/share/ca-certificates", "{}.crt", ["update-ca-certificates"]),
    ("/etc/pki/ca-trust/source/anchors", "{}.pem", ["update-ca-trust", "extract"]),
    ("/etc/ca-certificates/trust-source/anchors", "{}.crt", ["trust", "extract-compat"]),
)


def install_ca_in_system_store(ca_cert_file: Path) -> None:
    """Add a CA certificate to the operating system trust store."""
    path = str(ca_cert_file)
    if sys.platform == "darwin":
        _run(
            _privileged(
                [
                    "security",
                    "add-trusted-cert",
                    "-d",
                    "-k",
                    "/Library/Keychains/System.keychain",
                    path,
                ]
            )
        )
    elif sys.platform.startswith("linux"):
        for directory, pattern, refresh in _LINUX_STORES:
            if os.path.isdir(directory) and shutil.which(refresh[0]):
                target = os.path.join(directory, pattern.format("nfcagent-rootCA"))
                _run(_privileged(["cp", path, target]))
                _run(_privileged(refresh))
                return
        raise CertificateError("no supported system trust store found")
    elif sys.platform.startswith("win"):
        _run(["certutil", "-addstore", "-f", "ROOT", path])
    else:
        raise CertificateError(f"unsupported platform: {sys.platform}")


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _san_entries(hosts: List[str]) -> List[x509.GeneralName]:
    entries: List[x509.GeneralName] = []
    for host in hosts:
        try:
            entries.append(x509.IPAddress(ipaddress.ip_address(host)))
        except ValueError:
            entries.append(x509.DNSName(host))
    return entries


class CertificateManager:
    """Creates a local CA and server certificates covering this machine's addresses."""

    def __init__(
        self,
        config_dir: Union[str, os.PathLike],
        hosts_provider: Optional[HostsProvider] = None,
        trust_installer: Optional[TrustInstaller] = None,
        watch_interval: float = WATCH_INTERVAL,
    ) -> None:
        self.config_dir = Path(config_dir)
        self.tls_dir = self.config_dir / "tls"
        self.ca_dir = self.config_dir / "ca"
        self.ca_cert_file = self.ca_dir / "rootCA.pem"
        self.ca_key_file = self.ca_dir / "rootCA-key.pem"
        self.cert_file = self.tls_dir / "server.crt"
        self.key_file = self.tls_dir / "server.key"
        self.hosts_file = self.tls_dir / "hosts.txt"
        self.hosts_provider = hosts_provider or get_all_hosts
        self.trust_installer = trust_installer or install_ca_in_system_store
        self.watch_interval = watch_interval
        self.last_hosts: List[str] = []
        self._changes: Optional["queue.Queue[None]"] = None
        self._stop_watch: Optional[threading.Event] = None

    def _hosts_or_default(self) -> List[str]:
        try:
            return list(self.hosts_provider())
        except OSError as exc:
            log.warning("Warning: failed to get hosts: %s", exc)
            return list(LOCAL_HOSTS)

    def ensure_certificates(self) -> Tuple[Path, Path]:
        """Return (cert file, key file), generating them when missing or stale."""
        try:
            self.tls_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise CertificateError(f"failed to create TLS directory: {exc}") from exc

        hosts = self._hosts_or_default()
        log.info("Hosts for certificate: %s", hosts)

        if not self.certs_exist():
            log.info("Certificates not found, generating...")
            self._generate_certificates(hosts)
        elif self.hosts_changed(hosts):
            log.info("Network configuration changed, regenerating certificates...")
            self._generate_certificates(hosts)
        else:
            log.info("Using existing certificates")
        return self.cert_file, self.key_file

    def certs_exist(self) -> bool:
        """Whether both the certificate and the key file exist."""
        return self.cert_file.exists() and self.key_file.exists()

    def hosts_changed(self, hosts: List[str]) -> bool:
        """Whether the hosts differ, ignoring order, from the cached ones."""
        try:
            cached = self.read_cached_hosts()
        except OSError:
            return True
        return sorted(cached) != sorted(hosts)

    def read_cached_hosts(self) -> List[str]:
        """Hosts recorded at the last generation; raises OSError if there is no record."""
        with self.hosts_file.open(encoding="utf-8") as handle:
            return [line.strip() for line in handle if line.strip()]

    def write_cached_hosts(self, hosts: List[str]) -> None:
        """Record the hosts the current certificate covers."""
        with self.hosts_file.open("w", encoding="utf-8") as handle:
            for host in hosts:
                handle.write(host + "\n")

    def _load_or_create_ca(self) -> Tuple[x509.Certificate, rsa.RSAPrivateKey]:
        if self.ca_cert_file.exists():
            if not self.ca_key_file.exists():
                raise CertificateError(
                    "can't create new certificates because the CA key is missing"
                )
            cert = x509.load_pem_x509_certificate(self.ca_cert_file.read_bytes())
            key = serialization.load_pem_private_key(
                self.ca_key_file.read_bytes(), password=None
            )
            if not isinstance(key, rsa.RSAPrivateKey):
                raise CertificateError("unsupported CA key type")
            return cert, key

        key = rsa.generate_private_key(public_exponent=65537, key_size=3072)
        who = _user_at_host()
        name = x509.Name(
            [
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, "mkcert development CA"),
                x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, who),
                x509.NameAttribute(NameOID.COMMON_NAME, f"mkcert {who}"),
            ]
        )
        now = _now()
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=3650))
            .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=False,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )
        self.ca_key_file.write_bytes(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
        os.chmod(self.ca_key_file, 0o400)
        self.ca_cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        return cert, key

    def _make_server_cert(
        self, hosts: List[str], ca_cert: x509.Certificate, ca_key: rsa.RSAPrivateKey
    ) -> None:
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        now = _now()
        subject = x509.Name(
            [
                x509.NameAttribute(
                    NameOID.ORGANIZATION_NAME, "mkcert development certificate"
                ),
                x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, _user_at_host()),
            ]
        )
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=825))
            .add_extension(x509.SubjectAlternativeName(_san_entries(hosts)), critical=False)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
                critical=False,
            )
            .sign(ca_key, hashes.SHA256())
        )
        self.key_file.write_bytes(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
        os.chmod(self.key_file, 0o600)
        self.cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))

    def _generate_certificates(self, hosts: List[str]) -> None:
        try:
            self.ca_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            self.tls_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise CertificateError(f"failed to create CA directory: {exc}") from exc

        try:
            ca_cert, ca_key = self._load_or_create_ca()
        except (OSError, ValueError) as exc:
            raise CertificateError(f"failed to initialize CA: {exc}") from exc

        log.info("Ensuring CA is installed in system trust store...")
        log.info("(You may be prompted for your password)")
        try:
            self.trust_installer(self.ca_cert_file)
        except CertificateError as exc:
            raise CertificateError(f"failed to install CA: {exc}") from exc
        log.info("CA installed successfully")

        log.info("Generating certificate for hosts: %s", hosts)
        try:
            self._make_server_cert(hosts, ca_cert, ca_key)
        except (OSError, ValueError) as exc:
            raise CertificateError(f"failed to generate certificate: {exc}") from exc

        try:
            self.write_cached_hosts(hosts)
        except OSError as exc:
            log.warning("Warning: failed to cache hosts: %s", exc)

        log.info("Certificate generated: %s", self.cert_file)
        try:
            log.info("CA Fingerprint (SHA256): %s", self.ca_fingerprint())
        except (OSError, ValueError):
            pass

    def ca_fingerprint(self) -> str:
        """SHA-256 fingerprint of the CA certificate as colon-separated upper-case hex."""
        data = self.ca_cert_file.read_bytes()
        try:
            cert = x509.load_pem_x509_certificate(data)
        except ValueError as exc:
            raise ValueError(f"failed to parse certificate: {exc}") from exc
        digest = cert.fingerprint(hashes.SHA256())
        return ":".join(f"{byte:02X}" for byte in digest)

    def read_ca_cert(self) -> bytes:
        """The CA certificate in PEM form."""
        return self.ca_cert_file.read_bytes()

    def watch_network_changes(self) -> "queue.Queue[None]":
        """Start polling for address changes; the queue receives an item after each regeneration."""
        if self._changes is not None:
            return self._changes
        self._changes = queue.Queue(maxsize=1)
        self._stop_watch = threading.Event()
        try:
            self.last_hosts = list(self.hosts_provider())
        except OSError:
            self.last_hosts = []
        thread = threading.Thread(
            target=self._watch_loop,
            args=(self._stop_watch, self._changes),
            name="network-watch",
            daemon=True,
        )
        thread.start()
        return self._changes

    def stop_watching(self) -> None:
        """Stop the network change watcher."""
        if self._stop_watch is not None:
            self._stop_watch.set()
            self._stop_watch = None

    def _watch_loop(self, stop: threading.Event, changes: "queue.Queue[None]") -> None:
        while not stop.wait(self.watch_interval):
            try:
                current = list(self.hosts_provider())
            except OSError:
                continue
            if not self.hosts_changed(current):
                continue
            log.info("Network change detected: %s -> %s", self.last_hosts, current)
            self.last_hosts = current
            try:
                self.regenerate_certificates()
            except CertificateError as exc:
                log.error("Failed to regenerate certificates: %s", exc)
                continue
            try:
                changes.put_nowait(None)
            except queue.Full:
                pass

    def regenerate_certificates(self) -> None:
        """Regenerate the server certificate for the current hosts."""
        hosts = self._hosts_or_default()
        log.info("Regenerating certificates for hosts: %s", hosts)
        try:
            self._generate_certificates(hosts)
        except CertificateError as exc:
            raise CertificateError(f"failed to regenerate certificates: {exc}") from exc
        log.info("Certificates regenerated successfully")

    def current_hosts(self) -> List[str]:
        """Hosts the certificate was last generated for; empty if unknown."""
        try:
            return self.read_cached_hosts()
        except OSError:
            return []
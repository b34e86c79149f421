import ipaddress
import re

import pytest
from cryptography import x509

from nfcagent.certmanager import CertificateError, CertificateManager


class _Hosts:
    def __init__(self, hosts):
        self.hosts = list(hosts)

    def __call__(self):
        return list(self.hosts)


def _no_install(path):
    _no_install.calls.append(path)


_no_install.calls = []


@pytest.fixture
def manager(tmp_path):
    return CertificateManager(
        tmp_path, hosts_provider=_Hosts(["localhost", "127.0.0.1"]), trust_installer=_no_install
    )


def test_new_manager_paths(tmp_path):
    mgr = CertificateManager(tmp_path)
    assert mgr.config_dir == tmp_path
    assert mgr.tls_dir == tmp_path / "tls"
    assert mgr.cert_file == tmp_path / "tls" / "server.crt"
    assert mgr.key_file == tmp_path / "tls" / "server.key"
    assert mgr.ca_cert_file == tmp_path / "ca" / "rootCA.pem"


def test_hosts_changed(manager):
    manager.tls_dir.mkdir(parents=True)
    assert manager.hosts_changed(["localhost"]) is True

    manager.write_cached_hosts(["localhost", "127.0.0.1"])
    assert manager.hosts_changed(["localhost", "127.0.0.1"]) is False
    assert manager.hosts_changed(["127.0.0.1", "localhost"]) is False
    assert manager.hosts_changed(["localhost", "127.0.0.1", "192.168.1.1"]) is True
    assert manager.hosts_changed(["localhost"]) is True


def test_read_write_cached_hosts(manager):
    manager.tls_dir.mkdir(parents=True)
    hosts = ["localhost", "127.0.0.1", "192.168.1.100"]
    manager.write_cached_hosts(hosts)
    assert manager.read_cached_hosts() == hosts
    assert manager.current_hosts() == hosts


def test_read_cached_hosts_missing_raises(manager):
    with pytest.raises(OSError):
        manager.read_cached_hosts()
    assert manager.current_hosts() == []


def test_certs_exist(manager):
    manager.tls_dir.mkdir(parents=True)
    assert manager.certs_exist() is False
    manager.cert_file.write_bytes(b"cert")
    assert manager.certs_exist() is False
    manager.key_file.write_bytes(b"key")
    assert manager.certs_exist() is True


def test_ca_fingerprint_missing_file(manager):
    with pytest.raises(OSError):
        manager.ca_fingerprint()


def test_ca_fingerprint_invalid_pem(manager):
    manager.ca_dir.mkdir(parents=True)
    manager.ca_cert_file.write_bytes(b"not a certificate")
    with pytest.raises(ValueError):
        manager.ca_fingerprint()


def test_ensure_certificates_generates_files(manager):
    cert_file, key_file = manager.ensure_certificates()
    assert cert_file == manager.cert_file
    assert key_file == manager.key_file
    assert manager.certs_exist() is True
    assert manager.read_cached_hosts() == ["localhost", "127.0.0.1"]
    assert manager.read_ca_cert().startswith(b"-----BEGIN CERTIFICATE-----")

    cert = x509.load_pem_x509_certificate(cert_file.read_bytes())
    san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert san.get_values_for_type(x509.DNSName) == ["localhost"]
    assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("127.0.0.1")]

    ca = x509.load_pem_x509_certificate(manager.read_ca_cert())
    assert cert.issuer == ca.subject


def test_fingerprint_format_and_stability(manager):
    manager.ensure_certificates()
    fingerprint = manager.ca_fingerprint()
    assert re.fullmatch(r"([0-9A-F]{2}:){31}[0-9A-F]{2}", fingerprint)
    assert manager.ca_fingerprint() == fingerprint


def test_ensure_certificates_reuses_existing(manager):
    manager.ensure_certificates()
    before = manager.cert_file.read_bytes()
    manager.ensure_certificates()
    assert manager.cert_file.read_bytes() == before


def test_ensure_certificates_regenerates_on_host_change(tmp_path):
    hosts = _Hosts(["localhost", "127.0.0.1"])
    mgr = CertificateManager(tmp_path, hosts_provider=hosts, trust_installer=_no_install)
    mgr.ensure_certificates()
    before = mgr.cert_file.read_bytes()
    fingerprint = mgr.ca_fingerprint()

    hosts.hosts.append("192.168.1.50")
    mgr.ensure_certificates()
    assert mgr.cert_file.read_bytes() != before
    assert mgr.read_cached_hosts() == ["localhost", "127.0.0.1", "192.168.1.50"]
    assert mgr.ca_fingerprint() == fingerprint


def test_installer_failure_is_reported(tmp_path):
    def failing(path):
        raise CertificateError("denied")

    mgr = CertificateManager(
        tmp_path, hosts_provider=_Hosts(["localhost"]), trust_installer=failing
    )
    with pytest.raises(CertificateError, match="failed to install CA"):
        mgr.ensure_certificates()
    assert mgr.certs_exist() is False


def test_missing_ca_key_is_an_error(manager):
    manager.ensure_certificates()
    manager.ca_key_file.chmod(0o600)
    manager.ca_key_file.unlink()
    with pytest.raises(CertificateError, match="CA key is missing"):
        manager.regenerate_certificates()


def test_watch_network_changes_signals_after_regeneration(tmp_path):
    hosts = _Hosts(["localhost", "127.0.0.1"])
    mgr = CertificateManager(
        tmp_path, hosts_provider=hosts, trust_installer=_no_install, watch_interval=0.05
    )
    mgr.ensure_certificates()
    changes = mgr.watch_network_changes()
    assert mgr.watch_network_changes() is changes
    try:
        hosts.hosts.append("10.0.0.7")
        assert changes.get(timeout=10) is None
        assert mgr.current_hosts() == ["localhost", "127.0.0.1", "10.0.0.7"]
        assert mgr.last_hosts == ["localhost", "127.0.0.1", "10.0.0.7"]
    finally:
        mgr.stop_watching()
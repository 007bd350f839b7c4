"""Tests for certificate expiry sweeping and certbot issuance."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from balancer_common import Certificate, CertificateStatus
from balancer.errors import IssuerError
from balancer.services.cert_sweep import CertificateSweeper
from balancer.services.issuer import CertbotIssuer, read_cert_expiry

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _write_pem(path: Path, domain: str, not_after: datetime) -> None:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_after - timedelta(days=90))
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


def _certbot(tmp_path: Path, body: str) -> str:
    path = tmp_path / "certbot"
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return str(path)


class TestSweeper:
    def test_expires_past_due(self, store, make_cert):
        due = store.create(make_cert("a.example.com", expires_at=NOW - timedelta(minutes=1)))
        fresh = store.create(make_cert("b.example.com", expires_at=NOW + timedelta(days=10)))
        pending = store.create(make_cert("c.example.com", status=CertificateStatus.PENDING, expires_at=NOW - timedelta(days=1)))
        changed = []

        expired = CertificateSweeper(store, on_change=changed.append).sweep(now=NOW)

        assert [c.id for c in expired] == [due.id]
        assert store.get(Certificate, due.id).status is CertificateStatus.EXPIRED
        assert store.get(Certificate, fresh.id).status is CertificateStatus.ACTIVE
        assert store.get(Certificate, pending.id).status is CertificateStatus.PENDING
        assert changed == [expired]

    def test_boundary_is_inclusive(self, store, make_cert):
        store.create(make_cert(expires_at=NOW))
        assert len(CertificateSweeper(store).sweep(now=NOW)) == 1

    def test_nothing_to_do(self, store, make_cert):
        store.create(make_cert(expires_at=NOW + timedelta(days=1)))
        changed = []
        assert CertificateSweeper(store, on_change=changed.append).sweep(now=NOW) == []
        assert changed == []

    def test_naive_now_treated_as_utc(self, store, make_cert):
        store.create(make_cert(expires_at=NOW - timedelta(seconds=1)))
        assert len(CertificateSweeper(store).sweep(now=NOW.replace(tzinfo=None))) == 1

    def test_start_stop(self, store):
        sweeper = CertificateSweeper(store, interval=0.01)
        sweeper.start()
        sweeper.stop()


class TestCertbotIssuer:
    @pytest.fixture
    def issuer(self, store, tmp_path):
        return CertbotIssuer(
            store,
            cert_dir=tmp_path / "live",
            webroot=tmp_path / "acme",
            email="ops@example.com",
            certbot_bin=_certbot(tmp_path, "exit 0\n"),
        )

    def test_request_creates_pending(self, issuer, store):
        cert = issuer.request("Example.com", ["www.example.com"])
        assert cert.id is not None
        assert cert.status is CertificateStatus.PENDING
        assert cert.domain_name == "example.com"
        assert store.get(Certificate, cert.id).alt_names == ["www.example.com"]

    def test_command(self, issuer):
        cert = Certificate(domain_name="example.com", alt_names=["www.example.com"])
        cmd = issuer.command(cert)
        assert cmd[1:5] == ["certonly", "--webroot", "-w", str(issuer.webroot)]
        assert cmd[cmd.index("--cert-name") + 1] == "example.com"
        assert [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-d"] == ["example.com", "www.example.com"]
        assert "--non-interactive" in cmd

    def test_issue_activates(self, issuer, store, tmp_path):
        cert = issuer.request("example.com")
        not_after = datetime(2027, 1, 1, tzinfo=timezone.utc)
        _write_pem(tmp_path / "live" / "example.com" / "fullchain.pem", "example.com", not_after)

        issued = issuer.issue(cert.id)
        assert issued.status is CertificateStatus.ACTIVE
        assert issued.expires_at == not_after

    def test_issue_failure(self, store, tmp_path):
        issuer = CertbotIssuer(
            store,
            cert_dir=tmp_path / "live",
            webroot=tmp_path / "acme",
            email="ops@example.com",
            certbot_bin=_certbot(tmp_path, 'echo "Challenge failed for domain example.com" >&2\nexit 1\n'),
        )
        cert = issuer.request("example.com")
        with pytest.raises(IssuerError, match="Challenge failed"):
            issuer.issue(cert.id)
        assert store.get(Certificate, cert.id).status is CertificateStatus.PENDING

    def test_issue_requires_pending(self, issuer, store, make_cert):
        cert = store.create(make_cert("example.com"))
        with pytest.raises(IssuerError, match="only pending"):
            issuer.issue(cert.id)

    def test_wildcard_rejected(self, issuer):
        cert = issuer.request("*.example.com")
        with pytest.raises(IssuerError, match="DNS-01"):
            issuer.issue(cert.id)

    def test_missing_pem(self, issuer):
        cert = issuer.request("example.com")
        with pytest.raises(IssuerError, match="Cannot read certificate"):
            issuer.issue(cert.id)


def test_read_cert_expiry(tmp_path):
    not_after = datetime(2026, 12, 24, 8, 30, tzinfo=timezone.utc)
    path = tmp_path / "fullchain.pem"
    _write_pem(path, "example.com", not_after)
    assert read_cert_expiry(path) == not_after

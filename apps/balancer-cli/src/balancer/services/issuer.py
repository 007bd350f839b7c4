"""Certificate issuance via certbot (HTTP-01 webroot challenge)."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Protocol

from cryptography import x509

from balancer_common import BalancerConfig, Certificate, CertificateStatus

from balancer.errors import CommandTimeoutError, IssuerError, OperationCancelledError
from balancer.services import process
from balancer.store.base import EntityStore

log = logging.getLogger(__name__)


class CertificateIssuer(Protocol):
    def request(self, domain: str, alt_names: Iterable[str] = ()) -> Certificate: ...

    def issue(self, cert_id: int) -> Certificate: ...


def read_cert_expiry(cert_path: Path) -> datetime:
    """Read the expiry date from a PEM certificate on disk."""
    try:
        cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
    except (OSError, ValueError) as exc:
        raise IssuerError(f"Cannot read certificate {cert_path}: {exc}") from exc
    return cert.not_valid_after_utc


class CertbotIssuer:
    def __init__(
        self,
        store: EntityStore,
        *,
        cert_dir: Path,
        webroot: Path,
        email: str,
        certbot_bin: str = "certbot",
        timeout: float = 300.0,
    ):
        self.store = store
        self.cert_dir = cert_dir
        self.webroot = webroot
        self.email = email
        self.certbot_bin = certbot_bin
        self.timeout = timeout

    @classmethod
    def from_config(cls, store: EntityStore, cfg: BalancerConfig) -> CertbotIssuer:
        return cls(store, cert_dir=cfg.cert_dir, webroot=cfg.acme_webroot, email=cfg.certbot_email)

    def command(self, cert: Certificate) -> list[str]:
        cmd = [
            self.certbot_bin, "certonly", "--webroot", "-w", str(self.webroot),
            "--cert-name", cert.domain_name,
        ]
        for name in cert.names:
            cmd.extend(["-d", name])
        cmd.extend([
            "--email", self.email,
            "--agree-tos", "--no-eff-email",
            "--keep-until-expiring", "--non-interactive",
        ])
        return cmd

    def request(self, domain: str, alt_names: Iterable[str] = ()) -> Certificate:
        """Record a pending certificate for *domain*."""
        cert = Certificate(name=domain, domain_name=domain, alt_names=list(alt_names))
        return self.store.create(cert)

    def issue(self, cert_id: int) -> Certificate:
        """Run certbot for a pending certificate and mark it active."""
        cert = self.store.get(Certificate, cert_id)
        if cert.status is not CertificateStatus.PENDING:
            raise IssuerError(f"certificate {cert_id} is {cert.status.value}, only pending certificates can be issued")
        if any(name.startswith("*.") for name in cert.names):
            raise IssuerError(f"certificate {cert_id}: wildcard names need a DNS-01 challenge")

        log.info("Requesting certificate %s for %s", cert_id, ", ".join(cert.names))
        try:
            result = process.run(self.command(cert), timeout=self.timeout)
        except FileNotFoundError as exc:
            raise IssuerError(f"certbot not found: {exc.filename or self.certbot_bin}") from exc
        except (CommandTimeoutError, OperationCancelledError) as exc:
            raise IssuerError(f"Certbot did not complete for {cert.domain_name}: {exc}") from exc
        if result.returncode != 0:
            raise IssuerError(f"Certbot failed for {cert.domain_name}:\n{result.stderr}")

        expires_at = read_cert_expiry(self.cert_dir / cert.domain_name / "fullchain.pem")
        updated = cert.model_copy(update={"status": CertificateStatus.ACTIVE, "expires_at": expires_at})
        return self.store.update(updated)

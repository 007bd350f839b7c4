"""Jinja2-based NGINX configuration renderer.

Rendering is pure: the same snapshot and options always give the same text
and fingerprint. The fingerprint hashes the canonical form of the render
inputs, not the output, so template formatting changes do not alter it.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import asdict, dataclass
from functools import lru_cache
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from balancer_common import (
    BalancerConfig,
    CertificateStatus,
    EntitySnapshot,
    ProxyHost,
    RenderedConfig,
    ServerStatus,
)

from balancer.errors import RenderError

_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
_FINGERPRINT_RE = re.compile(r"^# fingerprint: ([0-9a-f]{64})$", re.MULTILINE)


@lru_cache(maxsize=1)
def _get_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=select_autoescape([]),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


@dataclass(frozen=True)
class RenderOptions:
    """Node-level settings that shape the rendered document."""

    pid_path: str = "/run/nginx.pid"
    mime_types: str = "/etc/nginx/mime.types"
    status_listen: str = "127.0.0.1:8081"
    status_path: str = "/nginx_status"
    cert_dir: str = "/etc/letsencrypt/live"
    acme_webroot: str = "/var/www/certbot"
    worker_connections: int = 1024

    @classmethod
    def from_config(cls, cfg: BalancerConfig) -> RenderOptions:
        return cls(
            pid_path=str(cfg.pid_path),
            mime_types=cfg.mime_types,
            status_listen=cfg.status_listen,
            status_path=cfg.status_path,
            cert_dir=str(cfg.cert_dir),
            acme_webroot=str(cfg.acme_webroot),
        )


def read_fingerprint(text: str) -> str | None:
    """Extract the fingerprint header from a rendered document."""
    match = _FINGERPRINT_RE.search(text[:512])
    return match.group(1) if match else None


def _address(host: str, port: int) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _enabled_hosts(snapshot: EntitySnapshot) -> list[ProxyHost]:
    return sorted((h for h in snapshot.proxy_hosts if h.enabled), key=lambda h: h.id or 0)


class ConfigRenderer:
    """Turns an entity snapshot into a complete ``nginx.conf``."""

    def __init__(self, options: RenderOptions | None = None):
        self.options = options or RenderOptions()

    def find_problems(self, snapshot: EntitySnapshot) -> list[str]:
        """Every reason the snapshot cannot be rendered, in a stable order."""
        problems: list[str] = []
        hosts = _enabled_hosts(snapshot)

        owners: dict[str, int | None] = {}
        for host in hosts:
            for name in host.domain_names:
                if name not in owners:
                    owners[name] = host.id
                elif owners[name] != host.id and f"duplicate domain: {name}" not in problems:
                    problems.append(f"duplicate domain: {name}")

        for upstream in sorted(snapshot.upstreams, key=lambda u: u.name):
            if not snapshot.servers_for(upstream.id):
                problems.append(f"empty upstream: {upstream.name}")

        for host in hosts:
            if host.upstream_id is not None and snapshot.upstream(host.upstream_id) is None:
                problems.append(f"proxy host {host.id}: upstream {host.upstream_id} not found")
            if not host.ssl_enabled:
                continue
            if host.ssl_cert_id is None:
                problems.append(f"proxy host {host.id}: ssl enabled without a certificate")
                continue
            cert = snapshot.certificate(host.ssl_cert_id)
            if cert is None:
                problems.append(f"proxy host {host.id}: certificate {host.ssl_cert_id} not found")
            elif cert.status is not CertificateStatus.ACTIVE:
                problems.append(
                    f"proxy host {host.id}: certificate {cert.id} is not active ({cert.status.value})"
                )
            else:
                for name in host.domain_names:
                    if not cert.covers(name):
                        problems.append(f"proxy host {host.id}: certificate {cert.id} does not cover {name}")
        return problems

    def fingerprint(self, snapshot: EntitySnapshot) -> str:
        hosts = _enabled_hosts(snapshot)
        certs = sorted(
            (c for c in snapshot.certificates if c.status is CertificateStatus.ACTIVE),
            key=lambda c: c.id or 0,
        )
        upstreams = sorted(snapshot.upstreams, key=lambda u: u.name)
        payload = {
            "options": asdict(self.options),
            "proxy_hosts": [h.model_dump(mode="json", exclude={"created_at"}) for h in hosts],
            "certificates": [c.model_dump(mode="json") for c in certs],
            "upstreams": [
                {
                    **u.model_dump(mode="json"),
                    "servers": [s.model_dump(mode="json") for s in snapshot.servers_for(u.id)],
                }
                for u in upstreams
            ],
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    def render(self, snapshot: EntitySnapshot) -> RenderedConfig:
        """Render the snapshot or raise RenderError listing every problem."""
        problems = self.find_problems(snapshot)
        if problems:
            raise RenderError(problems)

        fingerprint = self.fingerprint(snapshot)
        template = _get_env().get_template("nginx.conf.j2")
        text = template.render(
            fingerprint=fingerprint,
            options=self.options,
            upstreams=self._upstream_views(snapshot),
            hosts=self._host_views(snapshot),
        )
        return RenderedConfig(fingerprint=fingerprint, text=text, source_version=dict(snapshot.version))

    def _upstream_views(self, snapshot: EntitySnapshot) -> list[dict]:
        views = []
        for upstream in sorted(snapshot.upstreams, key=lambda u: u.name):
            views.append(
                {
                    "name": upstream.name,
                    "directive": upstream.algorithm.directive,
                    "servers": [
                        {
                            "address": _address(s.host, s.port),
                            "weight": s.weight,
                            "max_fails": s.max_fails,
                            # draining: no new requests, in-flight ones finish on the old workers
                            "down": s.status is not ServerStatus.UP,
                        }
                        for s in snapshot.servers_for(upstream.id)
                    ],
                }
            )
        return views

    def _host_views(self, snapshot: EntitySnapshot) -> list[dict]:
        views = []
        for host in _enabled_hosts(snapshot):
            if host.upstream_id is not None:
                proxy_pass = f"http://{snapshot.upstream(host.upstream_id).name}"
            else:
                proxy_pass = f"http://{_address(host.forward_host, host.forward_port)}"
            view = {
                "id": host.id,
                "server_names": " ".join(host.domain_names),
                "proxy_pass": proxy_pass,
                "ssl": host.ssl_enabled,
            }
            if host.ssl_enabled:
                cert = snapshot.certificate(host.ssl_cert_id)
                live_dir = Path(self.options.cert_dir) / cert.domain_name.removeprefix("*.")
                view["cert_path"] = str(live_dir / "fullchain.pem")
                view["key_path"] = str(live_dir / "privkey.pem")
            views.append(view)
        return views

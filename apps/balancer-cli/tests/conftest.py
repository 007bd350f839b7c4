"""Shared test fixtures."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from balancer_common import (
    BalancerConfig,
    Certificate,
    CertificateStatus,
    ProxyHost,
    Upstream,
    UpstreamServer,
)

from balancer.errors import ConfigSyntaxError, ReloadError
from balancer.services.coordinator import ApplyCoordinator
from balancer.services.renderer import ConfigRenderer
from balancer.services.validator import ValidationResult
from balancer.store import MemoryEntityStore


class FakeValidator:
    """Accepts everything unless told otherwise; records what it saw."""

    def __init__(self):
        self.calls: list[str] = []
        self.reject_with: str | None = None

    def validate(self, text, *, fingerprint=None, cancel=None):
        self.calls.append(text)
        if self.reject_with is not None:
            raise ConfigSyntaxError(self.reject_with)
        return ValidationResult(ok=True, output="syntax is ok")


class FakeController:
    """Stands in for the NGINX master.

    Each reload records the active file's content at signal time. ``fail``
    is the number of upcoming reloads that raise ReloadError; ``delay``
    slows reloads down so overlap can be observed.
    """

    def __init__(self, active_path: Path):
        self.active_path = active_path
        self.reloads: list[str | None] = []
        self.fail = 0
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def reload(self, *, timeout=10.0, cancel=None):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            self.reloads.append(self.active_path.read_text() if self.active_path.exists() else None)
            if self.fail:
                self.fail -= 1
                raise ReloadError("nginx: [emerg] bind() to 0.0.0.0:443 failed (98: Address in use)")
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture
def tmp_config(tmp_path: Path) -> BalancerConfig:
    """Return a BalancerConfig pointing at temp directories."""
    (tmp_path / "nginx").mkdir()
    return BalancerConfig(
        node_id="test-node",
        database_url=f"sqlite:///{tmp_path / 'balancer.db'}",
        nginx_bin="nginx",
        nginx_exec_prefix=[],
        active_config_path=tmp_path / "nginx" / "nginx.conf",
        staging_dir=tmp_path / "staging",
        pid_path=tmp_path / "nginx.pid",
        mime_types="",
        cert_dir=tmp_path / "live",
        acme_webroot=tmp_path / "acme",
        debounce_seconds=0.05,
        log_dir=tmp_path / "log",
        audit_jsonl_path=tmp_path / "log" / "audit.jsonl",
        audit_db_path=tmp_path / "lib" / "audit.db",
    )


@pytest.fixture
def store() -> MemoryEntityStore:
    return MemoryEntityStore()


@pytest.fixture
def validator() -> FakeValidator:
    return FakeValidator()


@pytest.fixture
def controller(tmp_config: BalancerConfig) -> FakeController:
    return FakeController(tmp_config.active_config_path)


@pytest.fixture
def coordinator(store, validator, controller, tmp_config) -> ApplyCoordinator:
    return ApplyCoordinator(
        store,
        ConfigRenderer(),
        validator,
        controller,
        active_path=tmp_config.active_config_path,
        backup_path=tmp_config.backup_config_path,
    )


def _make_host(*domains: str, **kw) -> ProxyHost:
    kw.setdefault("forward_host", "app")
    kw.setdefault("forward_port", 8080)
    return ProxyHost(domain_names=list(domains) or ["a.example.com"], **kw)


def _make_cert(domain: str = "a.example.com", **kw) -> Certificate:
    kw.setdefault("status", CertificateStatus.ACTIVE)
    kw.setdefault("expires_at", datetime.now(timezone.utc) + timedelta(days=60))
    return Certificate(domain_name=domain, **kw)


def _add_upstream(store, name: str = "backend", *servers: tuple[str, int]) -> Upstream:
    upstream = store.create(Upstream(name=name))
    for host, port in servers:
        store.create(UpstreamServer(host=host, port=port, upstream_id=upstream.id))
    return upstream


@pytest.fixture
def make_host():
    return _make_host


@pytest.fixture
def make_cert():
    return _make_cert


@pytest.fixture
def add_upstream():
    return _add_upstream


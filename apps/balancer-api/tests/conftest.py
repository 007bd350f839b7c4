"""Shared fixtures for the API tests: an app wired to a memory store and fake NGINX."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from balancer_common import BalancerConfig
from balancer.errors import ConfigSyntaxError, ReloadError, StatusUnavailableError
from balancer.runtime import build_runtime
from balancer.services.nginx import NginxStatus
from balancer.services.validator import ValidationResult
from balancer.store import MemoryEntityStore
from balancer_api.main import create_app


class FakeValidator:
    def __init__(self):
        self.reject_with: str | None = None

    def validate(self, text, *, fingerprint=None, cancel=None):
        if self.reject_with is not None:
            raise ConfigSyntaxError(self.reject_with)
        return ValidationResult(ok=True, output="syntax is ok")


class FakeController:
    def __init__(self):
        self.reloads = 0
        self.fail = 0
        self.stub: NginxStatus | None = None
        self._lock = threading.Lock()

    def reload(self, *, timeout=10.0, cancel=None):
        with self._lock:
            self.reloads += 1
            if self.fail:
                self.fail -= 1
                raise ReloadError("nginx: [alert] kill(1234, 1) failed (3: No such process)")

    def status(self) -> NginxStatus:
        if self.stub is None:
            raise StatusUnavailableError("Status endpoint unreachable: connection refused")
        return self.stub


@pytest.fixture
def tmp_config(tmp_path: Path) -> BalancerConfig:
    (tmp_path / "nginx").mkdir()
    return BalancerConfig(
        node_id="api-test",
        database_url=f"sqlite:///{tmp_path / 'balancer.db'}",
        active_config_path=tmp_path / "nginx" / "nginx.conf",
        staging_dir=tmp_path / "staging",
        pid_path=tmp_path / "nginx.pid",
        mime_types="",
        cert_dir=tmp_path / "live",
        acme_webroot=tmp_path / "acme",
        debounce_seconds=0.02,
        log_dir=tmp_path / "log",
        audit_jsonl_path=tmp_path / "log" / "audit.jsonl",
        audit_db_path=tmp_path / "lib" / "audit.db",
    )


@pytest.fixture
def validator() -> FakeValidator:
    return FakeValidator()


@pytest.fixture
def controller() -> FakeController:
    return FakeController()


@pytest.fixture
def runtime(tmp_config, validator, controller):
    return build_runtime(
        tmp_config,
        store=MemoryEntityStore(),
        validator=validator,
        controller=controller,
        audit_applies=False,
    )


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as c:
        yield c


@pytest.fixture
def settle(runtime):
    """Block until queued applies have finished."""

    def _settle(timeout: float = 5.0) -> None:
        assert runtime.queue.wait_idle(timeout)

    return _settle

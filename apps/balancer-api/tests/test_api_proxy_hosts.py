"""Tests for the proxy host endpoints."""

from __future__ import annotations

import threading
import time

from balancer_common import ProxyHost, ProxyHostFields
from balancer.errors import RenderError
from balancer.runtime import build_runtime
from balancer.store import MemoryEntityStore
from balancer_api.routers.proxy_hosts import create_proxy_host

HOST = {"domain_names": ["a.example.com"], "forward_host": "app", "forward_port": 8080}


class TestProxyHostCrud:
    def test_create_and_get(self, client, settle, controller):
        resp = client.post("/api/v1/proxy-hosts", json=HOST)
        assert resp.status_code == 201
        body = resp.json()
        assert body["id"] == 1
        assert body["domain_names"] == ["a.example.com"]
        assert body["created_at"] is not None

        assert client.get(f"/api/v1/proxy-hosts/{body['id']}").json() == body
        assert client.get("/api/v1/proxy-hosts").json() == [body]

        settle()
        assert controller.reloads == 1

    def test_domains_normalised(self, client):
        resp = client.post("/api/v1/proxy-hosts", json={**HOST, "domain_names": ["A.Example.COM", "a.example.com"]})
        assert resp.status_code == 201
        assert resp.json()["domain_names"] == ["a.example.com"]

    def test_update(self, client, settle, runtime):
        host_id = client.post("/api/v1/proxy-hosts", json=HOST).json()["id"]
        resp = client.put(f"/api/v1/proxy-hosts/{host_id}", json={**HOST, "forward_port": 9000})
        assert resp.status_code == 200
        assert resp.json()["forward_port"] == 9000

        settle()
        assert "app:9000" in runtime.config.active_config_path.read_text()

    def test_delete(self, client, settle):
        host_id = client.post("/api/v1/proxy-hosts", json=HOST).json()["id"]
        assert client.delete(f"/api/v1/proxy-hosts/{host_id}").status_code == 204
        assert client.get(f"/api/v1/proxy-hosts/{host_id}").status_code == 404
        settle()


class TestProxyHostErrors:
    def test_not_found_shape(self, client):
        resp = client.get("/api/v1/proxy-hosts/42")
        assert resp.status_code == 404
        assert resp.json() == {"error": "not_found", "message": "proxy host 42 not found"}

    def test_invalid_body(self, client):
        resp = client.post("/api/v1/proxy-hosts", json={**HOST, "forward_port": 70000})
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "validation_error"
        assert "forward_port" in body["message"]

    def test_invalid_domain(self, client):
        resp = client.post("/api/v1/proxy-hosts", json={**HOST, "domain_names": ["bad domain"]})
        assert resp.status_code == 422
        assert "invalid domain name" in resp.json()["message"]

    def test_duplicate_domain_rejected_before_write(self, client):
        assert client.post("/api/v1/proxy-hosts", json=HOST).status_code == 201
        resp = client.post("/api/v1/proxy-hosts", json={**HOST, "forward_port": 9000})
        assert resp.status_code == 422
        assert resp.json() == {"error": "render_error", "message": "duplicate domain: a.example.com"}
        assert len(client.get("/api/v1/proxy-hosts").json()) == 1

    def test_ssl_without_certificate(self, client):
        resp = client.post("/api/v1/proxy-hosts", json={**HOST, "ssl_enabled": True})
        assert resp.status_code == 422
        assert "ssl enabled without a certificate" in resp.json()["message"]

    def test_unknown_certificate_reference(self, client):
        resp = client.post("/api/v1/proxy-hosts", json={**HOST, "ssl_enabled": True, "ssl_cert_id": 7})
        assert resp.status_code == 422
        assert "certificate 7 not found" in resp.json()["message"]

    def test_update_missing(self, client):
        assert client.put("/api/v1/proxy-hosts/9", json=HOST).status_code == 404


class SlowSnapshotStore(MemoryEntityStore):
    """Widens the gap between a preflight read and the write that follows."""

    def get_snapshot(self):
        snapshot = super().get_snapshot()
        time.sleep(0.1)
        return snapshot


class TestConcurrentWrites:
    def test_duplicate_creates_are_serialised(self, tmp_config, validator, controller):
        runtime = build_runtime(
            tmp_config, store=SlowSnapshotStore(), validator=validator, controller=controller, audit_applies=False
        )
        body = ProxyHostFields(**HOST)
        outcomes = []

        def create():
            try:
                outcomes.append(create_proxy_host(body, runtime=runtime))
            except RenderError as exc:
                outcomes.append(exc)

        threads = [threading.Thread(target=create) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        runtime.stop()

        assert sorted(type(o).__name__ for o in outcomes) == ["ProxyHost", "RenderError"]
        assert len(runtime.store.list(ProxyHost)) == 1
        assert runtime.renderer.find_problems(runtime.store.get_snapshot()) == []


def test_health(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"

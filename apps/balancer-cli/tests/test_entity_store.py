"""Tests for the memory and SQL entity stores."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from balancer_common import (
    Certificate,
    CertificateStatus,
    ProxyHost,
    Upstream,
    UpstreamServer,
    UpstreamServerFields,
)
from balancer.errors import CertificateTransitionError, ConflictError, EntityNotFoundError, StoreError
from balancer.store import MemoryEntityStore, SqlEntityStore


@pytest.fixture(params=["memory", "sql"])
def any_store(request, tmp_path: Path):
    if request.param == "memory":
        yield MemoryEntityStore()
        return
    store = SqlEntityStore.from_url(f"sqlite:///{tmp_path / 'entities.db'}")
    yield store
    store.close()


class TestCrud:
    def test_create_assigns_id_and_created_at(self, any_store, make_host):
        host = any_store.create(make_host("a.example.com"))
        assert host.id == 1
        assert host.created_at is not None
        assert any_store.get(ProxyHost, host.id) == host

    def test_list_ordered_by_id(self, any_store, make_host):
        for name in ("c.example.com", "a.example.com", "b.example.com"):
            any_store.create(make_host(name))
        assert [h.domain_names[0] for h in any_store.list("proxy_host")] == [
            "c.example.com",
            "a.example.com",
            "b.example.com",
        ]

    def test_update_keeps_created_at(self, any_store, make_host):
        host = any_store.create(make_host("a.example.com"))
        updated = any_store.update(host.model_copy(update={"forward_port": 9000, "created_at": None}))
        assert updated.forward_port == 9000
        assert updated.created_at == host.created_at

    def test_get_missing(self, any_store):
        with pytest.raises(EntityNotFoundError, match="proxy host 42 not found"):
            any_store.get(ProxyHost, 42)

    def test_update_missing(self, any_store, make_host):
        with pytest.raises(EntityNotFoundError):
            any_store.update(make_host("a.example.com").model_copy(update={"id": 7}))

    def test_delete(self, any_store, make_host):
        host = any_store.create(make_host("a.example.com"))
        any_store.delete(ProxyHost, host.id)
        assert any_store.list(ProxyHost) == []
        with pytest.raises(EntityNotFoundError):
            any_store.delete(ProxyHost, host.id)

    def test_unknown_kind(self, any_store):
        with pytest.raises(ValueError):
            any_store.list("listener")


class TestReferences:
    def test_host_needs_existing_certificate(self, any_store, make_host):
        with pytest.raises(ConflictError, match="certificate 5 does not exist"):
            any_store.create(make_host("a.example.com", ssl_enabled=True, ssl_cert_id=5))

    def test_host_needs_existing_upstream(self, any_store, make_host):
        with pytest.raises(ConflictError, match="upstream 3 does not exist"):
            any_store.create(make_host("a.example.com", upstream_id=3))

    def test_referenced_certificate_not_deletable(self, any_store, make_host, make_cert):
        cert = any_store.create(make_cert())
        any_store.create(make_host("a.example.com", ssl_enabled=True, ssl_cert_id=cert.id))
        with pytest.raises(ConflictError, match="used by proxy host"):
            any_store.delete(Certificate, cert.id)

    def test_referenced_upstream_not_deletable(self, any_store, make_host, add_upstream):
        upstream = add_upstream(any_store, "backend", ("10.0.0.1", 80))
        any_store.create(make_host("a.example.com", upstream_id=upstream.id))
        with pytest.raises(ConflictError):
            any_store.delete(Upstream, upstream.id)

    def test_upstream_name_unique(self, any_store, add_upstream):
        add_upstream(any_store, "backend")
        with pytest.raises(ConflictError, match="upstream name already in use: backend"):
            any_store.create(Upstream(name="backend"))

    def test_rename_upstream_to_own_name(self, any_store, add_upstream):
        upstream = add_upstream(any_store, "backend")
        renamed = any_store.update(upstream.model_copy(update={"description": "api pool"}))
        assert renamed.description == "api pool"

    def test_upstream_host_without_forward_target(self, any_store, add_upstream):
        upstream = add_upstream(any_store, "backend", ("10.0.0.1", 80))
        host = any_store.create(ProxyHost(domain_names=["a.example.com"], upstream_id=upstream.id))
        stored = any_store.get(ProxyHost, host.id)
        assert stored.forward_host is None
        assert stored.forward_port is None

    def test_server_needs_upstream(self, any_store):
        with pytest.raises(EntityNotFoundError, match="upstream 9 not found"):
            any_store.create(UpstreamServer(host="10.0.0.1", port=80, upstream_id=9))

    def test_upstream_delete_cascades_servers(self, any_store, add_upstream):
        keep = add_upstream(any_store, "keep", ("10.0.0.1", 80))
        drop = add_upstream(any_store, "drop", ("10.0.0.2", 80), ("10.0.0.3", 80))
        any_store.delete(Upstream, drop.id)

        servers = any_store.list(UpstreamServer)
        assert [s.upstream_id for s in servers] == [keep.id]
        assert any_store.get_snapshot().servers_for(drop.id) == []


class TestCreateUpstream:
    def test_with_servers(self, any_store):
        servers = [
            UpstreamServerFields(host="10.0.0.1", port=80),
            UpstreamServerFields(host="10.0.0.2", port=80, weight=3),
        ]
        upstream = any_store.create_upstream(Upstream(name="backend"), servers)

        snapshot = any_store.get_snapshot()
        members = snapshot.servers_for(upstream.id)
        assert [(s.host, s.weight) for s in members] == [("10.0.0.1", 1), ("10.0.0.2", 3)]
        assert snapshot.version["upstream"] == 1
        assert snapshot.version["upstream_server"] == 2

    def test_name_clash_writes_nothing(self, any_store, add_upstream):
        add_upstream(any_store, "backend", ("10.0.0.1", 80))
        with pytest.raises(ConflictError):
            any_store.create_upstream(Upstream(name="backend"), [UpstreamServerFields(host="10.0.0.9", port=80)])
        assert len(any_store.list(Upstream)) == 1
        assert [s.host for s in any_store.list(UpstreamServer)] == ["10.0.0.1"]

    def test_failed_server_leaves_no_empty_upstream(self, any_store, monkeypatch):
        def broken(fields, upstream_id):
            raise StoreError("disk full")

        monkeypatch.setattr("balancer.store.memory.server_for", broken)
        monkeypatch.setattr("balancer.store.sql.server_for", broken)
        with pytest.raises(StoreError):
            any_store.create_upstream(Upstream(name="backend"), [UpstreamServerFields(host="10.0.0.1", port=80)])
        assert any_store.list(Upstream) == []
        assert any_store.get_snapshot().version["upstream"] == 0


class TestCertificateLifecycle:
    def test_forward_transitions(self, any_store, make_cert):
        cert = any_store.create(make_cert(status=CertificateStatus.PENDING))
        cert = any_store.update(cert.model_copy(update={"status": CertificateStatus.ACTIVE}))
        cert = any_store.update(cert.model_copy(update={"status": CertificateStatus.EXPIRED}))
        assert cert.status is CertificateStatus.EXPIRED

    def test_expired_cannot_reactivate(self, any_store, make_cert):
        cert = any_store.create(make_cert(status=CertificateStatus.EXPIRED))
        with pytest.raises(CertificateTransitionError, match="cannot move from expired to active"):
            any_store.update(cert.model_copy(update={"status": CertificateStatus.ACTIVE}))
        assert any_store.get(Certificate, cert.id).status is CertificateStatus.EXPIRED

    def test_expiry_roundtrip_is_aware(self, any_store, make_cert):
        cert = any_store.create(make_cert())
        stored = any_store.get(Certificate, cert.id)
        assert stored.expires_at.tzinfo is not None
        assert stored.expires_at == cert.expires_at


class TestSnapshot:
    def test_versions_bump_per_kind(self, any_store, make_host, add_upstream):
        start = any_store.get_snapshot().version
        any_store.create(make_host("a.example.com"))
        add_upstream(any_store, "backend", ("10.0.0.1", 80))
        version = any_store.get_snapshot().version

        assert version["proxy_host"] == start.get("proxy_host", 0) + 1
        assert version["upstream"] == start.get("upstream", 0) + 1
        assert version["upstream_server"] == start.get("upstream_server", 0) + 1
        assert version["certificate"] == start.get("certificate", 0)

    def test_snapshot_isolated_from_later_writes(self, any_store, make_host):
        any_store.create(make_host("a.example.com"))
        snap = any_store.get_snapshot()
        any_store.create(make_host("b.example.com"))
        assert len(snap.proxy_hosts) == 1
        assert len(any_store.get_snapshot().proxy_hosts) == 2

    def test_concurrent_writes_keep_snapshots_consistent(self, any_store, add_upstream):
        upstream = add_upstream(any_store, "backend", ("10.0.0.1", 80))
        errors: list[Exception] = []

        def writer():
            try:
                for port in range(8000, 8020):
                    any_store.create(UpstreamServer(host="10.0.0.2", port=port, upstream_id=upstream.id))
            except Exception as exc:
                errors.append(exc)

        thread = threading.Thread(target=writer)
        thread.start()
        for _ in range(20):
            snap = any_store.get_snapshot()
            assert len(snap.servers_for(upstream.id)) == snap.version["upstream_server"]
        thread.join()
        assert errors == []


class TestSqlStore:
    def test_persists_across_instances(self, tmp_path: Path, make_host):
        url = f"sqlite:///{tmp_path / 'persist.db'}"
        first = SqlEntityStore.from_url(url)
        first.create(make_host("a.example.com"))
        first.close()

        second = SqlEntityStore.from_url(url)
        try:
            hosts = second.list(ProxyHost)
            assert [h.domain_names for h in hosts] == [["a.example.com"]]
            assert second.get_snapshot().version["proxy_host"] == 1
        finally:
            second.close()

"""In-process entity store."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Iterable

from balancer_common import EntitySnapshot, Upstream, UpstreamServerFields
from balancer_common.models.snapshot import SNAPSHOT_FIELDS

from balancer.errors import ConflictError, EntityNotFoundError
from balancer.store.base import AnyEntity, EntityStore, KindArg, check_transition, resolve_kind, server_for


class MemoryEntityStore(EntityStore):
    """Thread-safe store keeping immutable entities in dicts.

    Entities are frozen models that are replaced on write, so a snapshot can
    share them with the store without copying.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._items: dict[str, dict[int, AnyEntity]] = {kind: {} for kind in SNAPSHOT_FIELDS}
        self._revisions: dict[str, int] = {kind: 0 for kind in SNAPSHOT_FIELDS}
        self._next_id: dict[str, int] = {kind: 1 for kind in SNAPSHOT_FIELDS}

    def get_snapshot(self) -> EntitySnapshot:
        with self._lock:
            fields = {
                field: tuple(self._sorted(kind)) for kind, field in SNAPSHOT_FIELDS.items()
            }
            return EntitySnapshot(**fields, version=dict(self._revisions))

    def list(self, kind: KindArg) -> list[AnyEntity]:
        with self._lock:
            return self._sorted(resolve_kind(kind))

    def get(self, kind: KindArg, entity_id: int) -> AnyEntity:
        kind = resolve_kind(kind)
        with self._lock:
            try:
                return self._items[kind][entity_id]
            except KeyError:
                raise EntityNotFoundError(f"{kind.replace('_', ' ')} {entity_id} not found") from None

    def create(self, entity: AnyEntity) -> AnyEntity:
        kind = entity.kind
        with self._lock:
            self._check_write(entity, entity_id=None)
            entity_id = self._next_id[kind]
            update: dict = {"id": entity_id}
            if kind == "proxy_host":
                update["created_at"] = datetime.now(timezone.utc)
            stored = entity.model_copy(update=update)
            self._items[kind][entity_id] = stored
            self._next_id[kind] = entity_id + 1
            self._revisions[kind] += 1
            return stored

    def create_upstream(self, upstream: Upstream, servers: Iterable[UpstreamServerFields] = ()) -> Upstream:
        with self._lock:
            self._check_write(upstream, entity_id=None)
            upstream_id = self._next_id["upstream"]
            members = [server_for(s, upstream_id) for s in servers]
            created = self.create(upstream)
            for server in members:
                self.create(server)
            return created

    def update(self, entity: AnyEntity) -> AnyEntity:
        kind = entity.kind
        with self._lock:
            current = self.get(kind, entity.id)
            self._check_write(entity, entity_id=entity.id)
            update: dict = {}
            if kind == "proxy_host":
                update["created_at"] = current.created_at
            elif kind == "certificate":
                check_transition(current.status, entity.status, entity.id)
            stored = entity.model_copy(update=update)
            self._items[kind][entity.id] = stored
            self._revisions[kind] += 1
            return stored

    def delete(self, kind: KindArg, entity_id: int) -> None:
        kind = resolve_kind(kind)
        with self._lock:
            self.get(kind, entity_id)
            if kind == "certificate":
                self._check_unreferenced("ssl_cert_id", entity_id, f"certificate {entity_id}")
            elif kind == "upstream":
                self._check_unreferenced("upstream_id", entity_id, f"upstream {entity_id}")
                servers = self._items["upstream_server"]
                owned = [sid for sid, s in servers.items() if s.upstream_id == entity_id]
                for sid in owned:
                    del servers[sid]
                if owned:
                    self._revisions["upstream_server"] += 1
            del self._items[kind][entity_id]
            self._revisions[kind] += 1

    def _sorted(self, kind: str) -> list[AnyEntity]:
        return [self._items[kind][k] for k in sorted(self._items[kind])]

    def _check_write(self, entity: AnyEntity, entity_id: int | None) -> None:
        if entity.kind == "proxy_host":
            if entity.ssl_cert_id is not None and entity.ssl_cert_id not in self._items["certificate"]:
                raise ConflictError(f"certificate {entity.ssl_cert_id} does not exist")
            if entity.upstream_id is not None and entity.upstream_id not in self._items["upstream"]:
                raise ConflictError(f"upstream {entity.upstream_id} does not exist")
        elif entity.kind == "upstream":
            for other in self._items["upstream"].values():
                if other.name == entity.name and other.id != entity_id:
                    raise ConflictError(f"upstream name already in use: {entity.name}")
        elif entity.kind == "upstream_server":
            if entity.upstream_id not in self._items["upstream"]:
                raise EntityNotFoundError(f"upstream {entity.upstream_id} not found")

    def _check_unreferenced(self, attr: str, entity_id: int, label: str) -> None:
        users = sorted(h.id for h in self._items["proxy_host"].values() if getattr(h, attr) == entity_id)
        if users:
            raise ConflictError(f"{label} is used by proxy host(s) {', '.join(map(str, users))}")

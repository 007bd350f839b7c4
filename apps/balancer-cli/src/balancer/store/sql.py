"""Relational entity store backed by SQLAlchemy."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Iterator

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from balancer_common import (
    Algorithm,
    Certificate,
    CertificateStatus,
    EntitySnapshot,
    ProxyHost,
    ServerStatus,
    Upstream,
    UpstreamServer,
    UpstreamServerFields,
)
from balancer_common.models.snapshot import SNAPSHOT_FIELDS

from balancer.db import tables
from balancer.db.session import Base, make_engine, make_session_factory
from balancer.errors import ConflictError, EntityNotFoundError, StoreError
from balancer.store.base import AnyEntity, EntityStore, KindArg, check_transition, resolve_kind, server_for

log = logging.getLogger(__name__)

_TABLES = {
    "proxy_host": tables.ProxyHost,
    "certificate": tables.Certificate,
    "upstream": tables.Upstream,
    "upstream_server": tables.UpstreamServer,
}


def _utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_model(kind: str, row) -> AnyEntity:
    if kind == "proxy_host":
        return ProxyHost(
            id=row.id,
            domain_names=list(row.domain_names),
            forward_host=row.forward_host,
            forward_port=row.forward_port,
            ssl_enabled=row.ssl_enabled,
            ssl_cert_id=row.ssl_cert_id,
            upstream_id=row.upstream_id,
            enabled=row.enabled,
            created_at=_utc(row.created_at),
        )
    if kind == "certificate":
        return Certificate(
            id=row.id,
            name=row.name,
            provider=row.provider,
            domain_name=row.domain_name,
            alt_names=list(row.alt_names or []),
            expires_at=_utc(row.expires_at),
            status=CertificateStatus(row.status),
        )
    if kind == "upstream":
        return Upstream(
            id=row.id,
            name=row.name,
            algorithm=Algorithm(row.algorithm),
            description=row.description,
        )
    return UpstreamServer(
        id=row.id,
        upstream_id=row.upstream_id,
        host=row.host,
        port=row.port,
        weight=row.weight,
        max_fails=row.max_fails,
        status=ServerStatus(row.status),
    )


def _columns(entity: AnyEntity) -> dict:
    """Column values for a row, excluding identity and store-owned fields."""
    data = entity.model_dump(exclude={"kind", "id", "created_at"})
    return {key: value.value if isinstance(value, Enum) else value for key, value in data.items()}


class SqlEntityStore(EntityStore):
    """Entity store over any SQLAlchemy database.

    Snapshots are read inside a single transaction (``REPEATABLE READ`` on
    PostgreSQL, an explicit ``BEGIN`` on SQLite) so they never mix states
    from concurrent writers.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._session_factory = make_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str) -> SqlEntityStore:
        store = cls(make_engine(database_url))
        store.create_schema()
        return store

    def create_schema(self) -> None:
        """Create tables (in production, use Alembic) and seed revision rows."""
        Base.metadata.create_all(self._engine)
        with self._session() as session:
            existing = set(session.scalars(select(tables.StoreRevision.kind)))
            for kind in SNAPSHOT_FIELDS:
                if kind not in existing:
                    session.add(tables.StoreRevision(kind=kind, revision=0))

    def close(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _session(self, *, snapshot: bool = False) -> Iterator[Session]:
        try:
            with self._session_factory.begin() as session:
                if snapshot and self._engine.dialect.name == "postgresql":
                    session.connection(execution_options={"isolation_level": "REPEATABLE READ"})
                yield session
        except IntegrityError as exc:
            raise ConflictError(f"constraint violated: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            log.error("Entity store failure: %s", exc)
            raise StoreError(f"entity store failure: {exc}") from exc

    def get_snapshot(self) -> EntitySnapshot:
        with self._session(snapshot=True) as session:
            fields = {
                field: tuple(
                    _to_model(kind, row)
                    for row in session.scalars(select(_TABLES[kind]).order_by(_TABLES[kind].id))
                )
                for kind, field in SNAPSHOT_FIELDS.items()
            }
            version = {r.kind: r.revision for r in session.scalars(select(tables.StoreRevision))}
        return EntitySnapshot(**fields, version=version)

    def list(self, kind: KindArg) -> list[AnyEntity]:
        kind = resolve_kind(kind)
        table = _TABLES[kind]
        with self._session() as session:
            return [_to_model(kind, row) for row in session.scalars(select(table).order_by(table.id))]

    def get(self, kind: KindArg, entity_id: int) -> AnyEntity:
        kind = resolve_kind(kind)
        with self._session() as session:
            return _to_model(kind, self._row(session, kind, entity_id))

    def create(self, entity: AnyEntity) -> AnyEntity:
        with self._session() as session:
            return self._insert(session, entity)

    def create_upstream(self, upstream: Upstream, servers: Iterable[UpstreamServerFields] = ()) -> Upstream:
        with self._session() as session:
            created = self._insert(session, upstream)
            for fields in servers:
                self._insert(session, server_for(fields, created.id))
            return created

    def update(self, entity: AnyEntity) -> AnyEntity:
        kind = entity.kind
        with self._session() as session:
            row = self._row(session, kind, entity.id)
            self._check_write(session, entity, entity_id=entity.id)
            if kind == "certificate":
                check_transition(CertificateStatus(row.status), entity.status, entity.id)
            for key, value in _columns(entity).items():
                setattr(row, key, value)
            session.flush()
            self._bump(session, kind)
            return _to_model(kind, row)

    def delete(self, kind: KindArg, entity_id: int) -> None:
        kind = resolve_kind(kind)
        with self._session() as session:
            row = self._row(session, kind, entity_id)
            if kind == "certificate":
                self._check_unreferenced(session, tables.ProxyHost.ssl_cert_id, entity_id, f"certificate {entity_id}")
            elif kind == "upstream":
                self._check_unreferenced(session, tables.ProxyHost.upstream_id, entity_id, f"upstream {entity_id}")
                if row.servers:
                    self._bump(session, "upstream_server")
            session.delete(row)
            self._bump(session, kind)

    def _insert(self, session: Session, entity: AnyEntity) -> AnyEntity:
        kind = entity.kind
        self._check_write(session, entity, entity_id=None)
        row = _TABLES[kind](**_columns(entity))
        if kind == "proxy_host":
            row.created_at = datetime.now(timezone.utc)
        session.add(row)
        session.flush()
        self._bump(session, kind)
        return _to_model(kind, row)

    def _row(self, session: Session, kind: str, entity_id: int | None):
        row = session.get(_TABLES[kind], entity_id) if entity_id is not None else None
        if row is None:
            raise EntityNotFoundError(f"{kind.replace('_', ' ')} {entity_id} not found")
        return row

    def _bump(self, session: Session, kind: str) -> None:
        revision = session.get(tables.StoreRevision, kind, with_for_update=True)
        if revision is None:
            session.add(tables.StoreRevision(kind=kind, revision=1))
        else:
            revision.revision += 1

    def _check_write(self, session: Session, entity: AnyEntity, entity_id: int | None) -> None:
        if entity.kind == "proxy_host":
            if entity.ssl_cert_id is not None and session.get(tables.Certificate, entity.ssl_cert_id) is None:
                raise ConflictError(f"certificate {entity.ssl_cert_id} does not exist")
            if entity.upstream_id is not None and session.get(tables.Upstream, entity.upstream_id) is None:
                raise ConflictError(f"upstream {entity.upstream_id} does not exist")
        elif entity.kind == "upstream":
            clash = session.scalar(
                select(tables.Upstream.id).where(
                    tables.Upstream.name == entity.name,
                    tables.Upstream.id != (entity_id or 0),
                )
            )
            if clash is not None:
                raise ConflictError(f"upstream name already in use: {entity.name}")
        elif entity.kind == "upstream_server":
            if session.get(tables.Upstream, entity.upstream_id) is None:
                raise EntityNotFoundError(f"upstream {entity.upstream_id} not found")

    def _check_unreferenced(self, session: Session, column, entity_id: int, label: str) -> None:
        users = list(
            session.scalars(select(tables.ProxyHost.id).where(column == entity_id).order_by(tables.ProxyHost.id))
        )
        if users:
            raise ConflictError(f"{label} is used by proxy host(s) {', '.join(map(str, users))}")


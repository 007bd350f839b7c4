"""Entity store contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Union

from balancer_common import (
    ENTITY_KINDS,
    Certificate,
    CertificateStatus,
    EntitySnapshot,
    ProxyHost,
    Upstream,
    UpstreamServer,
    UpstreamServerFields,
    can_transition,
    kind_of,
)

from balancer.errors import CertificateTransitionError

AnyEntity = Union[ProxyHost, Certificate, Upstream, UpstreamServer]
KindArg = Union[str, type]


def resolve_kind(kind: KindArg) -> str:
    """Accept either an entity class or its ``kind`` tag."""
    if isinstance(kind, str):
        if kind not in ENTITY_KINDS:
            raise ValueError(f"unknown entity kind: {kind}")
        return kind
    return kind_of(kind)


def check_transition(current: CertificateStatus, new: CertificateStatus, cert_id: int | None) -> None:
    if not can_transition(current, new):
        raise CertificateTransitionError(
            f"certificate {cert_id}: cannot move from {current.value} to {new.value}"
        )


def server_for(fields: UpstreamServerFields, upstream_id: int) -> UpstreamServer:
    return UpstreamServer(**fields.model_dump(exclude={"kind", "id", "upstream_id"}), upstream_id=upstream_id)


class EntityStore(ABC):
    """CRUD over the closed set of entity variants with isolated snapshots.

    Implementations assign ids (and ``created_at`` for proxy hosts), enforce
    references between entities, and bump a per-kind revision on every
    committed write.
    """

    @abstractmethod
    def get_snapshot(self) -> EntitySnapshot:
        """Point-in-time consistent read of every entity."""

    @abstractmethod
    def list(self, kind: KindArg) -> list[AnyEntity]: ...

    @abstractmethod
    def get(self, kind: KindArg, entity_id: int) -> AnyEntity: ...

    @abstractmethod
    def create(self, entity: AnyEntity) -> AnyEntity: ...

    @abstractmethod
    def create_upstream(self, upstream: Upstream, servers: Iterable[UpstreamServerFields] = ()) -> Upstream:
        """Create *upstream* and its servers in one write; readers never see it empty."""

    @abstractmethod
    def update(self, entity: AnyEntity) -> AnyEntity: ...

    @abstractmethod
    def delete(self, kind: KindArg, entity_id: int) -> None: ...

    def close(self) -> None:
        """Release resources held by the store."""

"""Point-in-time entity snapshot and the rendered configuration value."""

from __future__ import annotations

from typing import Annotated, Union

from pydantic import BaseModel, ConfigDict, Field

from balancer_common.models.certificate import Certificate
from balancer_common.models.proxy_host import ProxyHost
from balancer_common.models.upstream import Upstream, UpstreamServer

Entity = Annotated[
    Union[ProxyHost, Certificate, Upstream, UpstreamServer],
    Field(discriminator="kind"),
]

EntityType = Union[type[ProxyHost], type[Certificate], type[Upstream], type[UpstreamServer]]

# kind tag -> snapshot attribute
SNAPSHOT_FIELDS = {
    "proxy_host": "proxy_hosts",
    "certificate": "certificates",
    "upstream": "upstreams",
    "upstream_server": "upstream_servers",
}

ENTITY_KINDS: dict[str, EntityType] = {
    "proxy_host": ProxyHost,
    "certificate": Certificate,
    "upstream": Upstream,
    "upstream_server": UpstreamServer,
}


def kind_of(entity_or_type) -> str:
    """Return the ``kind`` tag of an entity instance or class."""
    cls = entity_or_type if isinstance(entity_or_type, type) else type(entity_or_type)
    return cls.model_fields["kind"].default


class EntitySnapshot(BaseModel):
    """Consistent read of every entity plus the per-kind revision vector."""

    model_config = ConfigDict(frozen=True)

    proxy_hosts: tuple[ProxyHost, ...] = ()
    certificates: tuple[Certificate, ...] = ()
    upstreams: tuple[Upstream, ...] = ()
    upstream_servers: tuple[UpstreamServer, ...] = ()
    version: dict[str, int] = Field(default_factory=dict)

    def servers_for(self, upstream_id: int | None) -> list[UpstreamServer]:
        servers = [s for s in self.upstream_servers if s.upstream_id == upstream_id]
        return sorted(servers, key=lambda s: s.id or 0)

    def certificate(self, cert_id: int | None) -> Certificate | None:
        return next((c for c in self.certificates if c.id == cert_id), None)

    def upstream(self, upstream_id: int | None) -> Upstream | None:
        return next((u for u in self.upstreams if u.id == upstream_id), None)

    def with_entity(self, entity: ProxyHost | Certificate | Upstream | UpstreamServer) -> EntitySnapshot:
        """Return a copy with *entity* inserted or replacing the same id."""
        field = SNAPSHOT_FIELDS[entity.kind]
        items = [e for e in getattr(self, field) if e.id != entity.id]
        items.append(entity)
        return self.model_copy(update={field: tuple(items)})

    def without(self, kind: str, entity_id: int) -> EntitySnapshot:
        """Return a copy with the entity removed (and its servers, for upstreams)."""
        field = SNAPSHOT_FIELDS[kind]
        update = {field: tuple(e for e in getattr(self, field) if e.id != entity_id)}
        if kind == "upstream":
            update["upstream_servers"] = tuple(
                s for s in self.upstream_servers if s.upstream_id != entity_id
            )
        return self.model_copy(update=update)

    def next_id(self, kind: str) -> int:
        """An id not used by any entity of *kind* (for previews)."""
        return max((e.id or 0 for e in getattr(self, SNAPSHOT_FIELDS[kind])), default=0) + 1


class RenderedConfig(BaseModel):
    """Immutable output of one render; superseded, never mutated."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    text: str
    source_version: dict[str, int] = Field(default_factory=dict)

"""Shared Pydantic models."""

from balancer_common.models.audit_event import AuditEvent
from balancer_common.models.certificate import (
    Certificate,
    CertificateFields,
    CertificateStatus,
    can_transition,
)
from balancer_common.models.proxy_host import ProxyHost, ProxyHostFields
from balancer_common.models.snapshot import (
    ENTITY_KINDS,
    Entity,
    EntitySnapshot,
    RenderedConfig,
    kind_of,
)
from balancer_common.models.upstream import (
    Algorithm,
    ServerStatus,
    Upstream,
    UpstreamFields,
    UpstreamServer,
    UpstreamServerFields,
)

__all__ = [
    "Algorithm",
    "AuditEvent",
    "Certificate",
    "CertificateFields",
    "CertificateStatus",
    "ENTITY_KINDS",
    "Entity",
    "EntitySnapshot",
    "ProxyHost",
    "ProxyHostFields",
    "RenderedConfig",
    "ServerStatus",
    "Upstream",
    "UpstreamFields",
    "UpstreamServer",
    "UpstreamServerFields",
    "can_transition",
    "kind_of",
]

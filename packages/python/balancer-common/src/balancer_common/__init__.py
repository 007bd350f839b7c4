"""Balancer Common: shared models and constants for the Balancer CLI and API."""

from balancer_common.config import BalancerConfig
from balancer_common.constants import SERVICE_NAME, VERSION
from balancer_common.models import (
    ENTITY_KINDS,
    Algorithm,
    AuditEvent,
    Certificate,
    CertificateFields,
    CertificateStatus,
    Entity,
    EntitySnapshot,
    ProxyHost,
    ProxyHostFields,
    RenderedConfig,
    ServerStatus,
    Upstream,
    UpstreamFields,
    UpstreamServer,
    UpstreamServerFields,
    can_transition,
    kind_of,
)

__all__ = [
    "Algorithm",
    "AuditEvent",
    "BalancerConfig",
    "Certificate",
    "CertificateFields",
    "CertificateStatus",
    "ENTITY_KINDS",
    "Entity",
    "EntitySnapshot",
    "ProxyHost",
    "ProxyHostFields",
    "RenderedConfig",
    "SERVICE_NAME",
    "ServerStatus",
    "Upstream",
    "UpstreamFields",
    "UpstreamServer",
    "UpstreamServerFields",
    "VERSION",
    "can_transition",
    "kind_of",
]

"""Certificate model and its lifecycle rules."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from balancer_common.hostnames import is_hostname, name_covers, normalize


class CertificateStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


# Forward-only lifecycle; anything not listed here is rejected.
ALLOWED_TRANSITIONS: dict[CertificateStatus, frozenset[CertificateStatus]] = {
    CertificateStatus.PENDING: frozenset({CertificateStatus.ACTIVE}),
    CertificateStatus.ACTIVE: frozenset({CertificateStatus.EXPIRED, CertificateStatus.REVOKED}),
    CertificateStatus.EXPIRED: frozenset(),
    CertificateStatus.REVOKED: frozenset(),
}


def can_transition(current: CertificateStatus, new: CertificateStatus) -> bool:
    return current == new or new in ALLOWED_TRANSITIONS[current]


def _check_name(raw: str) -> str:
    name = normalize(raw)
    if not is_hostname(name, allow_wildcard=True):
        raise ValueError(f"invalid domain name: {raw!r}")
    return name


class CertificateFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    provider: str = "letsencrypt"
    domain_name: str
    alt_names: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None
    status: CertificateStatus = CertificateStatus.PENDING

    @field_validator("domain_name")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        return _check_name(value)

    @field_validator("alt_names")
    @classmethod
    def _check_alt_names(cls, value: list[str]) -> list[str]:
        names: list[str] = []
        for raw in value:
            name = _check_name(raw)
            if name not in names:
                names.append(name)
        return names


class Certificate(CertificateFields):
    """A TLS certificate tracked by the store."""

    kind: Literal["certificate"] = "certificate"
    id: int | None = None

    @property
    def names(self) -> list[str]:
        return [self.domain_name, *self.alt_names]

    def covers(self, host: str) -> bool:
        return any(name_covers(name, host) for name in self.names)

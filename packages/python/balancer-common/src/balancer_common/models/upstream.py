"""Upstream pool and member server models."""

from __future__ import annotations

import re
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from balancer_common.constants import DEFAULT_MAX_FAILS, DEFAULT_WEIGHT
from balancer_common.hostnames import is_hostname, is_ip_literal, normalize

_UPSTREAM_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


class Algorithm(str, Enum):
    ROUND_ROBIN = "round_robin"
    LEAST_CONN = "least_conn"
    IP_HASH = "ip_hash"

    @property
    def directive(self) -> str | None:
        """NGINX directive selecting this algorithm (round robin is implicit)."""
        return None if self is Algorithm.ROUND_ROBIN else self.value


class ServerStatus(str, Enum):
    UP = "up"
    DOWN = "down"
    DRAINING = "draining"


class UpstreamFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    algorithm: Algorithm = Algorithm.ROUND_ROBIN
    description: str = ""

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _UPSTREAM_NAME_RE.match(value):
            raise ValueError(f"invalid upstream name: {value!r}")
        return value


class Upstream(UpstreamFields):
    """A named load-balancing pool."""

    kind: Literal["upstream"] = "upstream"
    id: int | None = None


class UpstreamServerFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(ge=1, le=65535)
    weight: int = Field(default=DEFAULT_WEIGHT, ge=1)
    max_fails: int = Field(default=DEFAULT_MAX_FAILS, ge=0)
    status: ServerStatus = ServerStatus.UP

    @field_validator("host")
    @classmethod
    def _check_host(cls, value: str) -> str:
        host = value.strip().strip("[]")
        if is_ip_literal(host):
            return host
        host = normalize(host)
        if not is_hostname(host):
            raise ValueError(f"invalid server host: {value!r}")
        return host


class UpstreamServer(UpstreamServerFields):
    """A backend member of an upstream; owned by its parent."""

    kind: Literal["upstream_server"] = "upstream_server"
    id: int | None = None
    upstream_id: int

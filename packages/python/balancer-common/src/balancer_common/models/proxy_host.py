"""Proxy host model."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from balancer_common.hostnames import is_hostname, is_ip_literal, normalize


class ProxyHostFields(BaseModel):
    """User-editable proxy host attributes (also the API request body)."""

    model_config = ConfigDict(frozen=True)

    domain_names: list[str] = Field(min_length=1)
    # Unused when upstream_id is set.
    forward_host: str | None = None
    forward_port: int | None = Field(default=None, ge=1, le=65535)
    ssl_enabled: bool = False
    ssl_cert_id: int | None = None
    upstream_id: int | None = None
    enabled: bool = True

    @field_validator("domain_names")
    @classmethod
    def _check_domains(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for raw in value:
            name = normalize(raw)
            if not is_hostname(name):
                raise ValueError(f"invalid domain name: {raw!r}")
            if name not in seen:
                seen.append(name)
        return seen

    @field_validator("forward_host")
    @classmethod
    def _check_forward_host(cls, value: str | None) -> str | None:
        if value is None:
            return None
        host = value.strip().strip("[]")
        if is_ip_literal(host):
            return host
        host = normalize(host)
        if not is_hostname(host):
            raise ValueError(f"invalid forward host: {value!r}")
        return host

    @model_validator(mode="after")
    def _check_target(self) -> ProxyHostFields:
        if self.upstream_id is None and (self.forward_host is None or self.forward_port is None):
            raise ValueError("forward_host and forward_port are required unless upstream_id is set")
        return self


class ProxyHost(ProxyHostFields):
    """A virtual host forwarding one or more domains to a backend."""

    kind: Literal["proxy_host"] = "proxy_host"
    id: int | None = None
    created_at: datetime | None = None

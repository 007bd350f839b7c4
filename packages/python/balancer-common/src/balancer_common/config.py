"""Central configuration for Balancer Studio tools."""

from __future__ import annotations

import os
import shlex
from pathlib import Path

from pydantic import BaseModel, Field

from balancer_common.constants import (
    ACME_WEBROOT,
    AUDIT_DB_PATH,
    AUDIT_JSONL_PATH,
    CERT_DIR,
    CERTBOT_EMAIL,
    DATABASE_URL,
    DEBOUNCE_SECONDS,
    LOG_DIR,
    NGINX_BIN,
    NGINX_CONF_PATH,
    NGINX_MIME_TYPES,
    NGINX_PID_PATH,
    RELOAD_TIMEOUT,
    STATE_DIR,
    STATUS_LISTEN,
    STATUS_PATH,
    SWEEP_INTERVAL,
    VALIDATE_TIMEOUT,
)


def _env(name: str, default: str) -> str:
    return os.environ.get(f"BALANCER_{name}") or default


def _env_path(name: str, default: Path) -> Path:
    return Path(_env(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(_env(name, str(default)))


class BalancerConfig(BaseModel):
    """Runtime configuration resolved once at startup."""

    node_id: str = Field(default_factory=lambda: _env("NODE_ID", "node-01"))
    database_url: str = Field(default_factory=lambda: _env("DATABASE_URL", DATABASE_URL))

    # NGINX process and files
    nginx_bin: str = Field(default_factory=lambda: _env("NGINX_BIN", NGINX_BIN))
    # e.g. "docker compose -f /srv/proxy/compose.yml exec -T nginx"
    nginx_exec_prefix: list[str] = Field(
        default_factory=lambda: shlex.split(_env("NGINX_EXEC_PREFIX", ""))
    )
    active_config_path: Path = Field(default_factory=lambda: _env_path("NGINX_CONF", NGINX_CONF_PATH))
    staging_dir: Path = Field(default_factory=lambda: _env_path("STAGING_DIR", STATE_DIR / "staging"))
    pid_path: Path = Field(default_factory=lambda: _env_path("NGINX_PID", NGINX_PID_PATH))
    mime_types: str = Field(default_factory=lambda: _env("NGINX_MIME_TYPES", NGINX_MIME_TYPES))
    status_listen: str = Field(default_factory=lambda: _env("STATUS_LISTEN", STATUS_LISTEN))
    status_path: str = Field(default=STATUS_PATH)

    # Certificates
    cert_dir: Path = Field(default_factory=lambda: _env_path("CERT_DIR", CERT_DIR))
    acme_webroot: Path = Field(default_factory=lambda: _env_path("ACME_WEBROOT", ACME_WEBROOT))
    certbot_email: str = Field(default_factory=lambda: _env("CERTBOT_EMAIL", CERTBOT_EMAIL))

    # Timing
    validate_timeout: float = Field(default_factory=lambda: _env_float("VALIDATE_TIMEOUT", VALIDATE_TIMEOUT))
    reload_timeout: float = Field(default_factory=lambda: _env_float("RELOAD_TIMEOUT", RELOAD_TIMEOUT))
    debounce_seconds: float = Field(default_factory=lambda: _env_float("DEBOUNCE", DEBOUNCE_SECONDS))
    sweep_interval: float = Field(default_factory=lambda: _env_float("SWEEP_INTERVAL", SWEEP_INTERVAL))

    # Audit
    log_dir: Path = Field(default_factory=lambda: _env_path("LOG_DIR", LOG_DIR))
    audit_jsonl_path: Path = Field(default_factory=lambda: _env_path("AUDIT_JSONL", AUDIT_JSONL_PATH))
    audit_db_path: Path = Field(default_factory=lambda: _env_path("AUDIT_DB", AUDIT_DB_PATH))

    @property
    def backup_config_path(self) -> Path:
        return self.active_config_path.with_name(self.active_config_path.name + ".bak")

    @property
    def status_url(self) -> str:
        return f"http://{self.status_listen}{self.status_path}"

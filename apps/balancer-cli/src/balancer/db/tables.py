"""SQLAlchemy table definitions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from balancer.db.session import Base


class Certificate(Base):
    __tablename__ = "certificates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    provider: Mapped[str] = mapped_column(String(64), nullable=False, default="letsencrypt")
    domain_name: Mapped[str] = mapped_column(String(255), nullable=False)
    alt_names: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")


class Upstream(Base):
    __tablename__ = "upstreams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    algorithm: Mapped[str] = mapped_column(String(32), nullable=False, default="round_robin")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    servers: Mapped[list[UpstreamServer]] = relationship(
        back_populates="upstream",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="UpstreamServer.id",
    )


class UpstreamServer(Base):
    __tablename__ = "upstream_servers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    upstream_id: Mapped[int] = mapped_column(
        ForeignKey("upstreams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    port: Mapped[int] = mapped_column(Integer, nullable=False)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_fails: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="up")

    upstream: Mapped[Upstream] = relationship(back_populates="servers")


class ProxyHost(Base):
    __tablename__ = "proxy_hosts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain_names: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    forward_host: Mapped[str | None] = mapped_column(String(255), nullable=True)
    forward_port: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ssl_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ssl_cert_id: Mapped[int | None] = mapped_column(
        ForeignKey("certificates.id", ondelete="RESTRICT"), nullable=True
    )
    upstream_id: Mapped[int | None] = mapped_column(
        ForeignKey("upstreams.id", ondelete="RESTRICT"), nullable=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class StoreRevision(Base):
    """Per-kind write counter; the snapshot version vector."""

    __tablename__ = "store_revisions"

    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

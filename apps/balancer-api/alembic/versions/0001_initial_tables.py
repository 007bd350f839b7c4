"""Initial tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: str | None = None

_KINDS = ("proxy_host", "certificate", "upstream", "upstream_server")


def upgrade() -> None:
    op.create_table(
        "certificates",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("provider", sa.String(64), nullable=False, server_default="letsencrypt"),
        sa.Column("domain_name", sa.String(255), nullable=False),
        sa.Column("alt_names", sa.JSON, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
    )

    op.create_table(
        "upstreams",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(128), unique=True, nullable=False),
        sa.Column("algorithm", sa.String(32), nullable=False, server_default="round_robin"),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
    )

    op.create_table(
        "upstream_servers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "upstream_id",
            sa.Integer,
            sa.ForeignKey("upstreams.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("host", sa.String(255), nullable=False),
        sa.Column("port", sa.Integer, nullable=False),
        sa.Column("weight", sa.Integer, nullable=False, server_default="1"),
        sa.Column("max_fails", sa.Integer, nullable=False, server_default="3"),
        sa.Column("status", sa.String(32), nullable=False, server_default="up"),
    )
    op.create_index("ix_upstream_servers_upstream_id", "upstream_servers", ["upstream_id"])

    op.create_table(
        "proxy_hosts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("domain_names", sa.JSON, nullable=False),
        sa.Column("forward_host", sa.String(255), nullable=True),
        sa.Column("forward_port", sa.Integer, nullable=True),
        sa.Column("ssl_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "ssl_cert_id",
            sa.Integer,
            sa.ForeignKey("certificates.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column(
            "upstream_id",
            sa.Integer,
            sa.ForeignKey("upstreams.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    revisions = op.create_table(
        "store_revisions",
        sa.Column("kind", sa.String(32), primary_key=True),
        sa.Column("revision", sa.Integer, nullable=False, server_default="0"),
    )
    op.bulk_insert(revisions, [{"kind": kind, "revision": 0} for kind in _KINDS])


def downgrade() -> None:
    op.drop_table("store_revisions")
    op.drop_table("proxy_hosts")
    op.drop_index("ix_upstream_servers_upstream_id", table_name="upstream_servers")
    op.drop_table("upstream_servers")
    op.drop_table("upstreams")
    op.drop_table("certificates")

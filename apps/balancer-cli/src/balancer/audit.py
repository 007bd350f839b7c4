"""Audit trail: every event goes to a JSONL file and a SQLite table.

The JSONL file is the append-only record for log shippers; the SQLite copy
backs ``balancer config history`` and ``GET /api/v1/audit-events``.
"""

from __future__ import annotations

import getpass
import logging
import os
import sqlite3
import threading
import time
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generator

from balancer_common import AuditEvent, BalancerConfig
from balancer_common.models.audit_event import AUDIT_COLUMNS

from balancer.config import get_config

if TYPE_CHECKING:
    from balancer.services.coordinator import ApplyResult

log = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS audit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    node_id TEXT NOT NULL,
    actor TEXT NOT NULL,
    action TEXT NOT NULL,
    target TEXT NOT NULL DEFAULT '',
    params TEXT NOT NULL DEFAULT '{}',
    result TEXT NOT NULL DEFAULT 'success',
    error TEXT,
    duration_ms INTEGER
);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_logs(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_logs(action);
"""

_INSERT = (
    f"INSERT INTO audit_logs ({', '.join(AUDIT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in AUDIT_COLUMNS)})"
)

# Serialises appends from the apply worker and request threads.
_write_lock = threading.Lock()


class AuditLog:
    def __init__(self, jsonl_path: Path, db_path: Path):
        self.jsonl_path = jsonl_path
        self.db_path = db_path

    @classmethod
    def from_config(cls, cfg: BalancerConfig) -> AuditLog:
        return cls(cfg.audit_jsonl_path, cfg.audit_db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.executescript(_SCHEMA)
        return conn

    def write(self, event: AuditEvent) -> None:
        self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with _write_lock:
            with open(self.jsonl_path, "a") as f:
                f.write(event.to_jsonl() + "\n")
            with closing(self._connect()) as conn, conn:
                conn.execute(_INSERT, event.to_row())

    def query(
        self,
        *,
        action: str | None = None,
        result: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[AuditEvent]:
        """Newest-first events from the SQLite copy; empty if nothing was written yet."""
        if not self.db_path.exists():
            return []

        clauses: list[str] = []
        params: list[Any] = []
        if action:
            clauses.append("action = ?")
            params.append(action)
        if result:
            clauses.append("result = ?")
            params.append(result)
        if since:
            clauses.append("timestamp >= ?")
            params.append(since.isoformat())
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM audit_logs{where} ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        with closing(self._connect()) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [AuditEvent.from_row(row) for row in rows]


def _get_actor() -> str:
    return os.environ.get("BALANCER_ACTOR") or getpass.getuser()


def log_event(event: AuditEvent, cfg: BalancerConfig | None = None) -> None:
    AuditLog.from_config(cfg or get_config()).write(event)


@contextmanager
def audit(action: str, target: str = "", **params: Any) -> Generator[AuditEvent, None, None]:
    """Time the wrapped block and record it, including failures."""
    cfg = get_config()
    event = AuditEvent(node_id=cfg.node_id, actor=_get_actor(), action=action, target=target, params=params)
    start = time.monotonic()
    try:
        yield event
    except Exception as exc:
        event.result = "failure"
        event.error = str(exc)
        raise
    finally:
        event.duration_ms = int((time.monotonic() - start) * 1000)
        log_event(event, cfg)


def record_apply(result: ApplyResult, cfg: BalancerConfig) -> None:
    """Audit one finished apply run.

    Runs on the apply worker thread; write failures are logged, not raised.
    """
    duration_ms = None
    if result.finished_at and result.started_at:
        duration_ms = int((result.finished_at - result.started_at).total_seconds() * 1000)
    event = AuditEvent(
        node_id=cfg.node_id,
        actor="apply-coordinator",
        action="config.apply",
        target=str(cfg.active_config_path),
        params={
            "fingerprint": result.fingerprint,
            "skipped": result.skipped,
            "rolled_back": result.rolled_back,
            "intent_id": result.intent_id,
        },
        result="success" if result.error is None else "failure",
        error=f"{result.error}: {result.detail}" if result.error else None,
        duration_ms=duration_ms,
    )
    try:
        log_event(event, cfg)
    except (OSError, sqlite3.Error) as exc:
        log.warning("Failed to write audit event for apply run: %s", exc)

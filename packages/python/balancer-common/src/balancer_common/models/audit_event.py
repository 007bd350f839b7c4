"""Audit event model."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, Field

# Column order of the audit_logs table.
AUDIT_COLUMNS = ("timestamp", "node_id", "actor", "action", "target", "params", "result", "error", "duration_ms")


class AuditEvent(BaseModel):
    """One audited operation: a CLI command, an API mutation or an apply run."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    node_id: str = "node-01"
    actor: str = ""
    action: str = ""
    target: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    result: str = "success"
    error: str | None = None
    duration_ms: int | None = None

    @property
    def ok(self) -> bool:
        return self.result == "success"

    def to_jsonl(self) -> str:
        return self.model_dump_json()

    def to_row(self) -> tuple:
        return (
            self.timestamp.isoformat(),
            self.node_id,
            self.actor,
            self.action,
            self.target,
            json.dumps(self.params, sort_keys=True, default=str),
            self.result,
            self.error,
            self.duration_ms,
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> AuditEvent:
        data = {name: row[name] for name in AUDIT_COLUMNS}
        data["params"] = json.loads(data["params"] or "{}")
        return cls(**data)

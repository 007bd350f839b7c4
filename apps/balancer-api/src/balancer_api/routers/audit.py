"""Audit trail endpoint."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from balancer_common import AuditEvent

from balancer.audit import AuditLog
from balancer.runtime import Runtime
from balancer_api.deps import get_runtime

router = APIRouter(tags=["audit"])


@router.get("/audit-events", response_model=list[AuditEvent])
def list_audit_events(
    action: Optional[str] = Query(None),
    result: Optional[str] = Query(None, pattern="^(success|failure)$"),
    since: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    runtime: Runtime = Depends(get_runtime),
):
    """Newest-first audit events, e.g. ``?action=config.apply&result=failure``."""
    return AuditLog.from_config(runtime.config).query(action=action, result=result, since=since, limit=limit)

"""NGINX lifecycle endpoints: apply, test, status, preview."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from balancer.runtime import Runtime
from balancer.services.nginx import NginxStatus
from balancer_api.config import settings
from balancer_api.deps import get_runtime
from balancer_api.errors import error_response

router = APIRouter(prefix="/nginx", tags=["nginx"])


@router.post("/reload")
def reload_nginx(runtime: Runtime = Depends(get_runtime)):
    """Queue an apply and wait for the run that covers it.

    Returns the apply result; 202 with the intent id if the run does not
    finish within the wait timeout.
    """
    intent = runtime.submit("reload requested")
    result = intent.wait(settings.apply_wait_timeout)
    if result is None:
        return JSONResponse(
            status_code=202,
            content={"intent_id": intent.id, "state": "pending"},
        )
    if not result.ok:
        return error_response(result.error, result.detail or "", result=result.model_dump(mode="json"))
    return result.model_dump(mode="json")


@router.post("/test")
def test_config(runtime: Runtime = Depends(get_runtime)):
    """Render the current state and run the NGINX syntax check on it."""
    rendered = runtime.renderer.render(runtime.store.get_snapshot())
    result = runtime.validator.validate(rendered.text, fingerprint=rendered.fingerprint)
    return {"valid": result.ok, "fingerprint": rendered.fingerprint, "output": result.output}


@router.get("/status", response_model=NginxStatus)
def nginx_status(runtime: Runtime = Depends(get_runtime)):
    return runtime.controller.status()


@router.get("/apply")
def apply_state(runtime: Runtime = Depends(get_runtime)):
    coordinator = runtime.coordinator
    last = coordinator.last_result
    return {
        "state": coordinator.state.value,
        "active_fingerprint": coordinator.active_fingerprint(),
        "busy": runtime.queue.busy,
        "last_result": last.model_dump(mode="json") if last else None,
    }


@router.get("/config")
def preview_config(runtime: Runtime = Depends(get_runtime)):
    rendered = runtime.renderer.render(runtime.store.get_snapshot())
    return {
        "fingerprint": rendered.fingerprint,
        "active": rendered.fingerprint == runtime.coordinator.active_fingerprint(),
        "source_version": rendered.source_version,
        "text": rendered.text,
    }

"""Proxy host CRUD."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from balancer_common import ProxyHost, ProxyHostFields

from balancer.runtime import Runtime
from balancer_api.deps import get_runtime

router = APIRouter(tags=["proxy-hosts"])


@router.get("/proxy-hosts", response_model=list[ProxyHost])
def list_proxy_hosts(runtime: Runtime = Depends(get_runtime)):
    return runtime.store.list(ProxyHost)


@router.get("/proxy-hosts/{host_id}", response_model=ProxyHost)
def get_proxy_host(host_id: int, runtime: Runtime = Depends(get_runtime)):
    return runtime.store.get(ProxyHost, host_id)


@router.post("/proxy-hosts", response_model=ProxyHost, status_code=201)
def create_proxy_host(body: ProxyHostFields, runtime: Runtime = Depends(get_runtime)):
    host = ProxyHost(**body.model_dump())
    with runtime.mutation():
        runtime.preflight_upsert(host)
        created = runtime.store.create(host)
        runtime.submit(f"proxy host {created.id} created")
    return created


@router.put("/proxy-hosts/{host_id}", response_model=ProxyHost)
def update_proxy_host(host_id: int, body: ProxyHostFields, runtime: Runtime = Depends(get_runtime)):
    with runtime.mutation():
        current = runtime.store.get(ProxyHost, host_id)
        host = ProxyHost(**body.model_dump(), id=host_id, created_at=current.created_at)
        runtime.preflight_upsert(host)
        updated = runtime.store.update(host)
        runtime.submit(f"proxy host {host_id} updated")
    return updated


@router.delete("/proxy-hosts/{host_id}", status_code=204)
def delete_proxy_host(host_id: int, runtime: Runtime = Depends(get_runtime)):
    with runtime.mutation():
        runtime.store.delete(ProxyHost, host_id)
        runtime.submit(f"proxy host {host_id} deleted")

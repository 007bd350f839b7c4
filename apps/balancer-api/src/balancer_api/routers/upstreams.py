"""Upstream pool and upstream server endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import Field

from balancer_common import EntitySnapshot, Upstream, UpstreamFields, UpstreamServer, UpstreamServerFields

from balancer.errors import EntityNotFoundError
from balancer.runtime import Runtime
from balancer_api.deps import get_runtime

router = APIRouter(tags=["upstreams"])


class UpstreamCreate(UpstreamFields):
    # An upstream needs at least one server to render, so they are created together.
    servers: list[UpstreamServerFields] = Field(default_factory=list)


def _server_in(runtime: Runtime, upstream_id: int, server_id: int) -> UpstreamServer:
    server = runtime.store.get(UpstreamServer, server_id)
    if server.upstream_id != upstream_id:
        raise EntityNotFoundError(f"upstream server {server_id} not found in upstream {upstream_id}")
    return server


@router.get("/upstreams", response_model=list[Upstream])
def list_upstreams(runtime: Runtime = Depends(get_runtime)):
    return runtime.store.list(Upstream)


@router.post("/upstreams", response_model=Upstream, status_code=201)
def create_upstream(body: UpstreamCreate, runtime: Runtime = Depends(get_runtime)):
    upstream = Upstream(**body.model_dump(exclude={"servers"}))

    def candidate(snapshot: EntitySnapshot) -> EntitySnapshot:
        preview_id = snapshot.next_id("upstream")
        snapshot = snapshot.with_entity(upstream.model_copy(update={"id": preview_id}))
        for fields in body.servers:
            server = UpstreamServer(**fields.model_dump(), upstream_id=preview_id)
            snapshot = snapshot.with_entity(server.model_copy(update={"id": snapshot.next_id("upstream_server")}))
        return snapshot

    with runtime.mutation():
        runtime.preflight(candidate)
        created = runtime.store.create_upstream(upstream, body.servers)
        runtime.submit(f"upstream {created.name} created")
    return created


@router.get("/upstreams/{upstream_id}", response_model=Upstream)
def get_upstream(upstream_id: int, runtime: Runtime = Depends(get_runtime)):
    return runtime.store.get(Upstream, upstream_id)


@router.put("/upstreams/{upstream_id}", response_model=Upstream)
def update_upstream(upstream_id: int, body: UpstreamFields, runtime: Runtime = Depends(get_runtime)):
    with runtime.mutation():
        runtime.store.get(Upstream, upstream_id)
        upstream = Upstream(**body.model_dump(), id=upstream_id)
        runtime.preflight_upsert(upstream)
        updated = runtime.store.update(upstream)
        runtime.submit(f"upstream {updated.name} updated")
    return updated


@router.delete("/upstreams/{upstream_id}", status_code=204)
def delete_upstream(upstream_id: int, runtime: Runtime = Depends(get_runtime)):
    with runtime.mutation():
        runtime.store.delete(Upstream, upstream_id)
        runtime.submit(f"upstream {upstream_id} deleted")


@router.get("/upstreams/{upstream_id}/servers", response_model=list[UpstreamServer])
def list_servers(upstream_id: int, runtime: Runtime = Depends(get_runtime)):
    runtime.store.get(Upstream, upstream_id)
    return runtime.store.get_snapshot().servers_for(upstream_id)


@router.post("/upstreams/{upstream_id}/servers", response_model=UpstreamServer, status_code=201)
def add_server(upstream_id: int, body: UpstreamServerFields, runtime: Runtime = Depends(get_runtime)):
    server = UpstreamServer(**body.model_dump(), upstream_id=upstream_id)
    with runtime.mutation():
        runtime.store.get(Upstream, upstream_id)
        runtime.preflight_upsert(server)
        created = runtime.store.create(server)
        runtime.submit(f"server {created.id} added to upstream {upstream_id}")
    return created


@router.put("/upstreams/{upstream_id}/servers/{server_id}", response_model=UpstreamServer)
def update_server(
    upstream_id: int,
    server_id: int,
    body: UpstreamServerFields,
    runtime: Runtime = Depends(get_runtime),
):
    server = UpstreamServer(**body.model_dump(), id=server_id, upstream_id=upstream_id)
    with runtime.mutation():
        _server_in(runtime, upstream_id, server_id)
        runtime.preflight_upsert(server)
        updated = runtime.store.update(server)
        runtime.submit(f"server {server_id} of upstream {upstream_id} updated")
    return updated


@router.delete("/upstreams/{upstream_id}/servers/{server_id}", status_code=204)
def delete_server(upstream_id: int, server_id: int, runtime: Runtime = Depends(get_runtime)):
    with runtime.mutation():
        _server_in(runtime, upstream_id, server_id)
        runtime.preflight_delete(UpstreamServer, server_id)
        runtime.store.delete(UpstreamServer, server_id)
        runtime.submit(f"server {server_id} removed from upstream {upstream_id}")

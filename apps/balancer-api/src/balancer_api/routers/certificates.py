"""Certificate endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from balancer_common import Certificate, CertificateFields, CertificateStatus

from balancer.runtime import Runtime
from balancer.store.base import check_transition
from balancer_api.deps import get_runtime

router = APIRouter(tags=["certificates"])


class StatusUpdate(BaseModel):
    status: CertificateStatus


class CertificateRequest(BaseModel):
    domain_name: str
    alt_names: list[str] = Field(default_factory=list)


@router.get("/certificates", response_model=list[Certificate])
def list_certificates(runtime: Runtime = Depends(get_runtime)):
    return runtime.store.list(Certificate)


@router.post("/certificates", response_model=Certificate, status_code=201)
def create_certificate(body: CertificateFields, runtime: Runtime = Depends(get_runtime)):
    """Register a certificate obtained outside the issuer."""
    with runtime.mutation():
        created = runtime.store.create(Certificate(**body.model_dump()))
        runtime.submit(f"certificate {created.id} created")
    return created


@router.post("/certificates/request", response_model=Certificate, status_code=201)
def request_certificate(body: CertificateRequest, runtime: Runtime = Depends(get_runtime)):
    """Record a pending certificate; issuance happens out of band (``balancer cert issue``)."""
    return runtime.issuer.request(body.domain_name, body.alt_names)


@router.get("/certificates/{cert_id}", response_model=Certificate)
def get_certificate(cert_id: int, runtime: Runtime = Depends(get_runtime)):
    return runtime.store.get(Certificate, cert_id)


@router.put("/certificates/{cert_id}/status", response_model=Certificate)
def update_certificate_status(cert_id: int, body: StatusUpdate, runtime: Runtime = Depends(get_runtime)):
    with runtime.mutation():
        cert = runtime.store.get(Certificate, cert_id)
        check_transition(cert.status, body.status, cert_id)
        updated = cert.model_copy(update={"status": body.status})
        runtime.preflight_upsert(updated)
        updated = runtime.store.update(updated)
        runtime.submit(f"certificate {cert_id} -> {body.status.value}")
    return updated


@router.delete("/certificates/{cert_id}", status_code=204)
def delete_certificate(cert_id: int, runtime: Runtime = Depends(get_runtime)):
    with runtime.mutation():
        runtime.store.delete(Certificate, cert_id)
        runtime.submit(f"certificate {cert_id} deleted")

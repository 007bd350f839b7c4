"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from balancer_common import SERVICE_NAME, VERSION

from balancer.config import get_config
from balancer.errors import BalancerError
from balancer.runtime import Runtime, build_runtime
from balancer_api.config import settings
from balancer_api.errors import error_response, status_for
from balancer_api.routers import audit, certificates, nginx, proxy_hosts, upstreams

log = logging.getLogger(__name__)


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the app. A prebuilt *runtime* (tests) replaces the configured one."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level.upper())
        rt = runtime or build_runtime(get_config())
        app.state.runtime = rt
        rt.start()
        log.info("%s %s started", SERVICE_NAME, VERSION)
        yield
        rt.stop()

    app = FastAPI(
        title="Balancer Studio API",
        description="NGINX configuration lifecycle: entities, rendering, validation, apply",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BalancerError)
    async def balancer_error_handler(request: Request, exc: BalancerError):
        if status_for(exc.kind) >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc)
        return error_response(exc.kind, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            messages.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
        return error_response("validation_error", "; ".join(messages))

    @app.exception_handler(ValidationError)
    async def model_error_handler(request: Request, exc: ValidationError):
        messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
        return error_response("validation_error", "; ".join(messages))

    app.include_router(proxy_hosts.router, prefix="/api/v1")
    app.include_router(certificates.router, prefix="/api/v1")
    app.include_router(upstreams.router, prefix="/api/v1")
    app.include_router(nginx.router, prefix="/api/v1")
    app.include_router(audit.router, prefix="/api/v1")

    @app.get("/api/v1/health")
    async def health():
        return {"status": "ok", "service": SERVICE_NAME, "version": VERSION}

    return app


app = create_app()


def run(host: str | None = None, port: int | None = None):
    import uvicorn
    uvicorn.run(
        "balancer_api.main:app",
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level,
    )

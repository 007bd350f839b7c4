"""Request dependencies."""

from __future__ import annotations

from fastapi import Request

from balancer.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime

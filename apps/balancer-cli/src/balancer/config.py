"""Cached BalancerConfig for the CLI, resolved once at startup."""

from __future__ import annotations

from functools import lru_cache

from balancer_common import BalancerConfig


@lru_cache(maxsize=1)
def get_config() -> BalancerConfig:
    """Return the global BalancerConfig (resolved once, cached)."""
    return BalancerConfig()

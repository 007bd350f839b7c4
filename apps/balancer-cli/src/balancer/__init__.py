"""Balancer Studio: NGINX configuration lifecycle manager."""

from balancer_common import VERSION as __version__

__all__ = ["__version__"]

"""Entity store implementations."""

from balancer.store.base import EntityStore
from balancer.store.memory import MemoryEntityStore
from balancer.store.sql import SqlEntityStore

__all__ = ["EntityStore", "MemoryEntityStore", "SqlEntityStore"]

from salesflow.store.base import EntityStore
from salesflow.store.memory import InMemoryEntityStore
from salesflow.store.sql import SqlEntityStore

__all__ = ["EntityStore", "InMemoryEntityStore", "SqlEntityStore"]

# Persistence collaborators
from .store import AggregateStore, InMemoryAggregateStore

__all__ = [
    "AggregateStore",
    "InMemoryAggregateStore",
]

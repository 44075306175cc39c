"""Memory - working memory and durable stores."""

from .store import DurableStore, InMemoryStore, JsonFileStore
from .working_memory import WorkingMemory

__all__ = [
    "DurableStore",
    "InMemoryStore",
    "JsonFileStore",
    "WorkingMemory",
]

"""Persistence backends for the authorization core."""

from identity_core.store.memory import MemoryStore
from identity_core.store.protocols import Store, StoreTransaction

__all__ = ["MemoryStore", "Store", "StoreTransaction"]

"""Storage layer with an abstract key-value interface and SQLite implementation."""

from evalgate.storage.config_store import ConfigurationStore
from evalgate.storage.interface import KeyValueStoreInterface
from evalgate.storage.kv_store import KeyValueStoreSQLite
from evalgate.storage.lifecycle_store import LifecycleStore
from evalgate.storage.pattern_history import PatternHistory

__all__ = [
    # Interfaces
    "KeyValueStoreInterface",
    # SQLite implementation
    "KeyValueStoreSQLite",
    # Typed stores
    "ConfigurationStore",
    "LifecycleStore",
    "PatternHistory",
]

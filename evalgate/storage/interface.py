"""Abstract storage interfaces for evalgate stores."""

from abc import ABC, abstractmethod
from typing import List, Optional


class KeyValueStoreInterface(ABC):
    """
    Abstract durable key-value store.

    Keys are '/'-separated namespaces (``config/{agent_id}``,
    ``lifecycle/{agent_id}/{proposal_id}``, ...). Values are JSON strings.
    Implementations must make every confirmed write durable and must raise
    PersistenceError when a write cannot be confirmed.
    """

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Store a value, replacing any existing one."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Retrieve a value, or None if absent."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a key. Deleting a missing key is a no-op."""
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with prefix, sorted."""
        pass

    @abstractmethod
    def compare_and_put(self, key: str, expected: Optional[str], value: str) -> bool:
        """
        Atomically replace the value if it still equals ``expected``.

        ``expected=None`` means the key must not exist yet.

        Returns:
            True if the write happened, False if the current value differed
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the storage connection."""
        pass

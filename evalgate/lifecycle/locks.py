"""Per-agent commit locks.

At most one non-terminal proposal per agent. The lock is held in memory for
this process and mirrored durably under ``lock/{agent_id}`` so it survives a
restart. A durable pointer whose proposal is already terminal (a crash
between finishing and releasing) is treated as free.
"""

import logging
import threading
from typing import Dict, Optional

from evalgate.errors import LockContentionError, PersistenceError
from evalgate.storage.interface import KeyValueStoreInterface
from evalgate.storage.lifecycle_store import LifecycleStore

logger = logging.getLogger(__name__)

LOCK_PREFIX = "lock/"


class AgentLockRegistry:
    """Single-writer lock per agent, keyed by the holding proposal ID."""

    def __init__(self, store: KeyValueStoreInterface, lifecycle_store: LifecycleStore):
        self.store = store
        self.lifecycle_store = lifecycle_store
        self._holders: Dict[str, str] = {}
        self._mutex = threading.Lock()

    @staticmethod
    def _key(agent_id: str) -> str:
        return f"{LOCK_PREFIX}{agent_id}"

    def acquire(self, agent_id: str, proposal_id: str) -> None:
        """Acquire the agent lock for a proposal. Re-acquiring by the holder is a no-op.

        Raises:
            LockContentionError: Another non-terminal proposal holds the lock
            PersistenceError: The durable lock pointer could not be written
        """
        with self._mutex:
            holder = self._holders.get(agent_id)
            if holder is not None and holder != proposal_id:
                raise LockContentionError(agent_id, holder)

            key = self._key(agent_id)
            durable = self.store.get(key)
            if durable is not None and durable != proposal_id:
                held_by = self.lifecycle_store.get(durable)
                if held_by is not None and not held_by.is_terminal:
                    raise LockContentionError(agent_id, durable)
                logger.info(
                    f"Reclaiming stale lock on '{agent_id}' from finished proposal {durable}"
                )

            if durable != proposal_id and not self.store.compare_and_put(key, durable, proposal_id):
                # Another process took it between our read and write
                raise LockContentionError(agent_id, self.store.get(key))

            self._holders[agent_id] = proposal_id

        logger.debug(f"Lock on '{agent_id}' acquired by {proposal_id}")

    def release(self, agent_id: str, proposal_id: str) -> None:
        """Release the agent lock if held by the proposal.

        A durable pointer that cannot be cleared is left behind; it is
        reclaimed on the next acquire because its proposal is terminal.
        """
        with self._mutex:
            if self._holders.get(agent_id) == proposal_id:
                del self._holders[agent_id]

            key = self._key(agent_id)
            try:
                if self.store.get(key) == proposal_id:
                    self.store.delete(key)
            except PersistenceError as e:
                logger.error(f"Failed to clear durable lock on '{agent_id}': {e}")

        logger.debug(f"Lock on '{agent_id}' released by {proposal_id}")

    def holder(self, agent_id: str) -> Optional[str]:
        """Proposal currently holding the agent's lock, if any."""
        with self._mutex:
            holder = self._holders.get(agent_id)
        if holder is not None:
            return holder
        durable = self.store.get(self._key(agent_id))
        if durable is None:
            return None
        record = self.lifecycle_store.get(durable)
        if record is None or record.is_terminal:
            return None
        return durable

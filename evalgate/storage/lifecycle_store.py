"""Durable storage of lifecycle records."""

import logging
from datetime import datetime
from typing import List, Optional

from evalgate.errors import UnknownProposalError
from evalgate.schemas.lifecycle_record import LifecycleRecordV1
from evalgate.storage.interface import KeyValueStoreInterface

logger = logging.getLogger(__name__)

LIFECYCLE_PREFIX = "lifecycle/"
PROPOSAL_INDEX_PREFIX = "proposal-index/"


class LifecycleStore:
    """Stores one LifecycleRecordV1 per proposal.

    Records live under ``lifecycle/{agent_id}/{proposal_id}``; a small
    ``proposal-index/{proposal_id}`` entry maps a proposal back to its agent.
    """

    def __init__(self, store: KeyValueStoreInterface):
        self.store = store

    @staticmethod
    def _key(agent_id: str, proposal_id: str) -> str:
        return f"{LIFECYCLE_PREFIX}{agent_id}/{proposal_id}"

    def save(self, record: LifecycleRecordV1) -> None:
        """Persist a record snapshot. Raises PersistenceError if not confirmed."""
        record.updated_at = datetime.now()
        index_key = f"{PROPOSAL_INDEX_PREFIX}{record.proposal_id}"
        if self.store.get(index_key) is None:
            self.store.put(index_key, record.agent_id)
        self.store.put(self._key(record.agent_id, record.proposal_id), record.model_dump_json())

    def get(self, proposal_id: str) -> Optional[LifecycleRecordV1]:
        """Retrieve a record by proposal ID, or None if unknown."""
        agent_id = self.store.get(f"{PROPOSAL_INDEX_PREFIX}{proposal_id}")
        if agent_id is None:
            return None
        raw = self.store.get(self._key(agent_id, proposal_id))
        if raw is None:
            return None
        return LifecycleRecordV1.model_validate_json(raw)

    def require(self, proposal_id: str) -> LifecycleRecordV1:
        record = self.get(proposal_id)
        if record is None:
            raise UnknownProposalError(f"Unknown proposal '{proposal_id}'")
        return record

    def list(
        self,
        agent_id: Optional[str] = None,
        non_terminal_only: bool = False,
    ) -> List[LifecycleRecordV1]:
        """List records, oldest first.

        Args:
            agent_id: Optional agent filter
            non_terminal_only: Only return in-flight proposals
        """
        prefix = f"{LIFECYCLE_PREFIX}{agent_id}/" if agent_id else LIFECYCLE_PREFIX
        records = []
        for key in self.store.keys(prefix):
            raw = self.store.get(key)
            if raw is None:
                continue
            record = LifecycleRecordV1.model_validate_json(raw)
            if non_terminal_only and record.is_terminal:
                continue
            records.append(record)

        records.sort(key=lambda r: r.proposal.created_at)
        return records

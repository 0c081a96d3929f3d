"""Configuration store: one committed, versioned parameter set per agent."""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from evalgate.errors import StaleConfigurationError, UnknownAgentError
from evalgate.schemas.agent_config import AgentConfigurationV1
from evalgate.storage.interface import KeyValueStoreInterface

logger = logging.getLogger(__name__)

CONFIG_PREFIX = "config/"


class ConfigurationStore:
    """Durable per-agent record of the committed configuration.

    The only mutation after registration is ``commit``, an optimistic
    compare-and-put against the version the proposal read when it was
    created. A stale proposal can therefore never overwrite a commit made
    by a different path.
    """

    def __init__(self, store: KeyValueStoreInterface):
        """Initialize configuration store.

        Args:
            store: Durable key-value store
        """
        self.store = store

    @staticmethod
    def _key(agent_id: str) -> str:
        return f"{CONFIG_PREFIX}{agent_id}"

    def register(self, agent_id: str, parameters: Dict[str, float]) -> AgentConfigurationV1:
        """Create the first committed configuration (version 1) for an agent.

        Raises:
            ValueError: If the agent is already registered
        """
        config = AgentConfigurationV1(
            agent_id=agent_id,
            parameters={k: float(v) for k, v in parameters.items()},
            version=1,
        )
        if not self.store.compare_and_put(self._key(agent_id), None, config.model_dump_json()):
            raise ValueError(f"Agent '{agent_id}' is already registered")

        logger.info(f"Registered agent '{agent_id}' with {len(parameters)} parameters")
        return config

    def get(self, agent_id: str) -> Optional[AgentConfigurationV1]:
        """Retrieve the committed configuration, or None if unregistered."""
        raw = self.store.get(self._key(agent_id))
        if raw is None:
            return None
        return AgentConfigurationV1.model_validate_json(raw)

    def require(self, agent_id: str) -> AgentConfigurationV1:
        """Retrieve the committed configuration or raise UnknownAgentError."""
        config = self.get(agent_id)
        if config is None:
            raise UnknownAgentError(f"Agent '{agent_id}' is not registered")
        return config

    def commit(
        self,
        agent_id: str,
        parameters: Dict[str, float],
        expected_version: int,
    ) -> AgentConfigurationV1:
        """Atomically replace the committed configuration.

        Args:
            agent_id: Agent identifier
            parameters: New parameter set
            expected_version: Version the caller read before deciding to commit

        Returns:
            The new committed configuration (version = expected_version + 1)

        Raises:
            UnknownAgentError: If the agent is not registered
            StaleConfigurationError: If the committed version moved on
            PersistenceError: If the write could not be confirmed
        """
        key = self._key(agent_id)
        raw = self.store.get(key)
        if raw is None:
            raise UnknownAgentError(f"Agent '{agent_id}' is not registered")

        current = AgentConfigurationV1.model_validate_json(raw)
        if current.version != expected_version:
            raise StaleConfigurationError(agent_id, expected_version, current.version)

        new_config = AgentConfigurationV1(
            agent_id=agent_id,
            parameters=dict(parameters),
            version=current.version + 1,
            committed_at=datetime.now(),
        )
        if not self.store.compare_and_put(key, raw, new_config.model_dump_json()):
            latest = self.get(agent_id)
            raise StaleConfigurationError(
                agent_id, expected_version, latest.version if latest else None
            )

        logger.info(
            f"Committed configuration for '{agent_id}': "
            f"v{current.version} → v{new_config.version}"
        )
        return new_config

    def list_agents(self) -> List[str]:
        """List registered agent IDs."""
        return [key[len(CONFIG_PREFIX):] for key in self.store.keys(CONFIG_PREFIX)]

# agent_installations.py - Per-organization agent installation records
# This file contains the install/enable check consulted before an agent may run for an organization.

import redis
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set

from .agent_registry import normalize_agent_id
from .config import settings

logger = logging.getLogger(__name__)

class AgentInstallationProvider(ABC):
    @abstractmethod
    async def is_installed(self, agent_id: str, organization_id: str) -> bool:
        """True if the agent is installed and enabled for the organization."""
        pass

class InMemoryInstallationProvider(AgentInstallationProvider):
    def __init__(self, installations: Optional[Dict[str, Set[str]]] = None):
        self._installed: Dict[str, Set[str]] = {
            org: {normalize_agent_id(a) for a in agents}
            for org, agents in (installations or {}).items()
        }

    async def install(self, agent_id: str, organization_id: str):
        self._installed.setdefault(organization_id, set()).add(normalize_agent_id(agent_id))

    async def uninstall(self, agent_id: str, organization_id: str):
        self._installed.get(organization_id, set()).discard(normalize_agent_id(agent_id))

    async def is_installed(self, agent_id: str, organization_id: str) -> bool:
        return normalize_agent_id(agent_id) in self._installed.get(organization_id, set())

class RedisInstallationProvider(AgentInstallationProvider):
    """Installations live in ``agents:installed:{organization_id}``; disabled
    agents are listed in ``agents:disabled:{organization_id}``."""

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client or redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True
        )

    async def install(self, agent_id: str, organization_id: str):
        agent_id = normalize_agent_id(agent_id)
        self.redis_client.sadd(f"agents:installed:{organization_id}", agent_id)
        self.redis_client.srem(f"agents:disabled:{organization_id}", agent_id)
        logger.info(f"Installed agent {agent_id} for organization {organization_id}")

    async def disable(self, agent_id: str, organization_id: str):
        self.redis_client.sadd(f"agents:disabled:{organization_id}", normalize_agent_id(agent_id))

    async def is_installed(self, agent_id: str, organization_id: str) -> bool:
        agent_id = normalize_agent_id(agent_id)
        if not self.redis_client.sismember(f"agents:installed:{organization_id}", agent_id):
            return False
        return not self.redis_client.sismember(f"agents:disabled:{organization_id}", agent_id)

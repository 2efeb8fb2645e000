# agent_registry.py - Core agent management logic
# This file contains the logic for registering and resolving agent adapters by identifier.

import logging
import re
from typing import Callable, Dict, List, Optional

from .models import AgentDescriptor, LLMConfiguration
from .agent_types.base_agent import BaseAgent

logger = logging.getLogger(__name__)

AgentFactory = Callable[[LLMConfiguration], BaseAgent]

def normalize_agent_id(name: str) -> str:
    """'Kanban View' -> 'kanbanview'."""
    return re.sub(r"[\s_-]+", "", (name or "").strip().lower())

class AgentRegistry:
    """Maps agent identifiers to adapter factories.

    Populated once at startup; lookups are plain dictionary reads. Aliases let
    several names (e.g. "kanban" and "kanbanview") resolve to one adapter.
    """

    def __init__(self):
        self._factories: Dict[str, AgentFactory] = {}
        self._descriptors: Dict[str, AgentDescriptor] = {}
        self._aliases: Dict[str, str] = {}

    def register(self, descriptor: AgentDescriptor, factory: AgentFactory,
                 aliases: Optional[List[str]] = None):
        agent_id = normalize_agent_id(descriptor.agent_id)
        if agent_id in self._factories:
            raise ValueError(f"Agent {agent_id} is already registered")

        descriptor = descriptor.model_copy(update={"agent_id": agent_id})
        self._factories[agent_id] = factory
        self._descriptors[agent_id] = descriptor
        self._aliases[agent_id] = agent_id
        for alias in aliases or []:
            self._aliases[normalize_agent_id(alias)] = agent_id

        logger.info(f"Registered agent {agent_id}")

    def resolve_id(self, name: str) -> Optional[str]:
        return self._aliases.get(normalize_agent_id(name))

    def get_descriptor(self, name: str) -> Optional[AgentDescriptor]:
        agent_id = self.resolve_id(name)
        return self._descriptors.get(agent_id) if agent_id else None

    def create_agent(self, name: str, llm_config: LLMConfiguration) -> BaseAgent:
        agent_id = self.resolve_id(name)
        if agent_id is None:
            raise KeyError(f"Unknown AI agent: {name}")
        return self._factories[agent_id](llm_config)

    def list_agents(self) -> List[AgentDescriptor]:
        return sorted(self._descriptors.values(), key=lambda d: d.agent_id)

    def __contains__(self, name: str) -> bool:
        return self.resolve_id(name) is not None

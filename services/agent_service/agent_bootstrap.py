# services/agent_service/agent_bootstrap.py
# Bootstrap default agents on service startup

import logging
from typing import List, Optional, Type
from .models import AgentDescriptor
from .agent_registry import AgentRegistry
from .agent_types.llm_agent import LLMAgent
from .agent_types.practice_agents import (
    ParityAgent, CadenceAgent, FormaAgent, KanbanAgent, EchoAgent
)

logger = logging.getLogger(__name__)

class AgentBootstrap:
    """Bootstrap the built-in agents into a registry."""

    DEFAULT_AGENTS = [
        {"agent_class": ParityAgent, "aliases": []},
        {"agent_class": CadenceAgent, "aliases": []},
        {"agent_class": FormaAgent, "aliases": []},
        {"agent_class": KanbanAgent, "aliases": ["kanban view", "kanban-view"]},
        {"agent_class": EchoAgent, "aliases": []}
    ]

    def __init__(self, registry: Optional[AgentRegistry] = None):
        self.registry = registry or AgentRegistry()

    @staticmethod
    def describe(agent_class: Type[LLMAgent]) -> AgentDescriptor:
        return AgentDescriptor(
            agent_id=agent_class.agent_type,
            name=agent_class.display_name,
            description=agent_class.description,
            capabilities=list(agent_class.capabilities)
        )

    def bootstrap_default_agents(self) -> AgentRegistry:
        """Register every default agent. Safe to call once per registry."""
        logger.info("Bootstrapping default agents...")

        for agent_config in self.DEFAULT_AGENTS:
            agent_class = agent_config["agent_class"]
            self.registry.register(
                self.describe(agent_class),
                agent_class,
                aliases=agent_config["aliases"]
            )

        logger.info(f"Bootstrap complete. {len(self.registry.list_agents())} agents ready.")
        return self.registry

def build_default_registry() -> AgentRegistry:
    return AgentBootstrap().bootstrap_default_agents()

def registered_agent_ids(registry: AgentRegistry) -> List[str]:
    return [descriptor.agent_id for descriptor in registry.list_agents()]

# agent_gateway.py - Bridge between workflow tasks and AI agent adapters
# This file resolves an agent for an organization and runs it with a bounded timeout.

import logging
from typing import Any, Dict, Optional

from services.agent_service.agent_registry import AgentRegistry
from services.agent_service.agent_installations import AgentInstallationProvider
from services.agent_service.llm_config import LLMConfigProvider
from services.agent_service.agent_types.base_agent import BaseAgent
from services.agent_service.models import AgentRequest

from .config import settings
from .errors import AdapterError, ConfigurationError, NotInstalledError

logger = logging.getLogger(__name__)

class AgentGateway:
    """Looks up agents in the registry and enforces installation and LLM
    configuration before an agent is handed out."""

    def __init__(self, registry: AgentRegistry, installations: AgentInstallationProvider,
                 llm_configs: LLMConfigProvider, default_timeout: Optional[float] = None):
        self.registry = registry
        self.installations = installations
        self.llm_configs = llm_configs
        self.default_timeout = default_timeout or settings.default_agent_timeout

    async def prepare(self, agent_id: str, organization_id: str,
                      llm_config_id: Optional[str] = None) -> BaseAgent:
        """Build an agent instance ready to run. Performs no writes."""
        resolved_id = self.registry.resolve_id(agent_id)
        if resolved_id is None:
            raise NotInstalledError(f"Unknown AI agent: {agent_id}", "agent", agent_id)

        if not await self.installations.is_installed(resolved_id, organization_id):
            raise NotInstalledError(
                f"AI agent {resolved_id} is not installed for organization {organization_id}",
                "agent", resolved_id
            )

        llm_config = await self.llm_configs.get_config(organization_id, llm_config_id)
        if llm_config is None:
            raise ConfigurationError(
                f"No LLM configuration found for organization {organization_id}",
                "organization", organization_id
            )

        try:
            return self.registry.create_agent(resolved_id, llm_config)
        except ValueError as e:
            # Adapter rejected the configuration (e.g. missing API key)
            raise ConfigurationError(str(e), "organization", organization_id) from e

    async def invoke(self, agent: BaseAgent, input_data: Dict[str, Any],
                     timeout: Optional[float] = None, task_id: Optional[str] = None) -> Dict[str, Any]:
        request_fields: Dict[str, Any] = {
            "agent_id": agent.agent_type,
            "input_data": input_data or {},
            "timeout": timeout or self.default_timeout
        }
        if task_id:
            request_fields["task_id"] = task_id

        response = await agent.execute_request(AgentRequest(**request_fields))
        if not response.success:
            raise AdapterError(
                response.error_message or f"Agent {agent.agent_type} failed",
                agent.agent_type,
                retriable=True
            )

        logger.info(f"Agent {agent.agent_type} finished in {response.execution_time:.2f}s")
        return response.output_data or {}

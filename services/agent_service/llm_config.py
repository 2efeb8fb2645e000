# llm_config.py - LLM configuration resolution
# This file resolves which model credentials an organization's agents run with.

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import LLMConfiguration
from .config import settings

logger = logging.getLogger(__name__)

def default_config_from_settings() -> Optional[LLMConfiguration]:
    """Service-wide fallback built from AGENT_SERVICE_DEFAULT_LLM_* variables."""
    if not settings.default_llm_api_key:
        return None
    return LLMConfiguration(
        id="default",
        provider=settings.default_llm_provider,
        model=settings.default_llm_model,
        api_key=settings.default_llm_api_key,
        endpoint=settings.default_llm_endpoint,
        api_version=settings.default_llm_api_version,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
        is_default=True
    )

class LLMConfigProvider(ABC):
    @abstractmethod
    async def get_config(self, organization_id: str,
                         config_id: Optional[str] = None) -> Optional[LLMConfiguration]:
        """Task-specific config if ``config_id`` is given, else the organization default."""
        pass

class InMemoryLLMConfigProvider(LLMConfigProvider):
    def __init__(self, configs: Optional[List[LLMConfiguration]] = None,
                 fallback: Optional[LLMConfiguration] = None):
        self._configs: Dict[str, List[LLMConfiguration]] = {}
        self.fallback = fallback
        for config in configs or []:
            self.add(config)

    def add(self, config: LLMConfiguration):
        self._configs.setdefault(config.organization_id, []).append(config)

    async def get_config(self, organization_id: str,
                         config_id: Optional[str] = None) -> Optional[LLMConfiguration]:
        configs = self._configs.get(organization_id, [])

        if config_id:
            for config in configs:
                if config.id == config_id:
                    return config
            logger.warning(f"LLM config {config_id} not found for organization {organization_id}, using default")

        for config in configs:
            if config.is_default:
                return config
        if configs:
            return configs[0]
        return self.fallback

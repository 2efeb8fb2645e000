# config.py - Service configuration
# This file contains configuration settings for the agent_service.

from pydantic_settings import BaseSettings
from typing import Literal, Optional

class Settings(BaseSettings):
    # Redis Configuration (agent installations)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None

    # Service Configuration
    service_name: str = "agent-service"
    log_level: str = "INFO"

    # Default LLM configuration, used when an organization has none of its own
    default_llm_provider: Literal["openai", "azure_openai"] = "openai"
    default_llm_model: str = "gpt-4o-mini"
    default_llm_api_key: Optional[str] = None
    default_llm_endpoint: Optional[str] = None
    default_llm_api_version: str = "2024-02-15-preview"
    max_tokens: int = 1000
    temperature: float = 0.3

    # Agent Configuration
    agent_timeout: int = 300  # seconds
    max_concurrent_tasks: int = 5  # per agent instance

    class Config:
        env_prefix = "AGENT_SERVICE_"
        env_file = ".env"

settings = Settings()

# config.py - Service configuration for workflow_service
# This file contains configuration settings for the workflow_service.

from pydantic_settings import BaseSettings
from typing import Literal, Optional

class Settings(BaseSettings):
    # Redis Configuration
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 1  # Different DB from agent service
    redis_password: Optional[str] = None

    # Service Configuration
    service_name: str = "workflow-service"
    service_port: int = 8002
    log_level: str = "INFO"

    # Storage
    store_backend: Literal["memory", "redis"] = "redis"
    cascade_max_retries: int = 5  # optimistic transaction retries per conditional write

    # Notifications
    communication_service_url: str = "http://localhost:8004"
    notifications_enabled: bool = True
    notification_timeout: float = 5.0  # seconds

    # AI agent execution
    default_agent_timeout: float = 120.0  # seconds

    class Config:
        env_prefix = "WORKFLOW_SERVICE_"
        env_file = ".env"

settings = Settings()

# models.py - Pydantic models for agents
# This file defines the data models used for agent adapters, their requests and LLM configuration.

from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Any, Literal
from datetime import datetime
from enum import Enum
import uuid

from .config import settings

class AgentStatus(str, Enum):
    INITIALIZING = "initializing"
    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"

class AgentCapability(BaseModel):
    name: str
    description: str
    input_types: List[str]  # e.g., ["text", "json"]
    output_types: List[str]  # e.g., ["text", "json"]

class AgentDescriptor(BaseModel):
    agent_id: str  # normalized slug, e.g. "parity"
    name: str
    description: str = ""
    capabilities: List[AgentCapability] = Field(default_factory=list)

class LLMConfiguration(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    organization_id: Optional[str] = None  # None for the service-wide default
    provider: Literal["openai", "azure_openai"] = "openai"
    model: str = "gpt-4o-mini"
    api_key: str
    endpoint: Optional[str] = None  # base_url for openai, azure_endpoint for azure
    api_version: str = "2024-02-15-preview"
    max_tokens: int = Field(default=1000, gt=0)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    is_default: bool = False

class AgentRequest(BaseModel):
    task_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    agent_id: str
    input_data: Dict[str, Any]
    timeout: float = Field(default=settings.agent_timeout, gt=0)  # seconds
    context: Optional[Dict[str, Any]] = None

class AgentResponse(BaseModel):
    task_id: str
    agent_id: str
    success: bool
    output_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    timed_out: bool = False
    execution_time: float  # seconds
    timestamp: datetime = Field(default_factory=datetime.utcnow)

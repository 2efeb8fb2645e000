# base_agent.py - Abstract base class for agents
# This file defines the interface for all agent adapters.

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import asyncio
import time
import logging

from ..models import AgentCapability, AgentStatus, AgentRequest, AgentResponse, LLMConfiguration
from ..config import settings

logger = logging.getLogger(__name__)

class BaseAgent(ABC):
    def __init__(self, name: str, agent_type: str, capabilities: List[AgentCapability],
                 llm_config: Optional[LLMConfiguration] = None, config: Dict[str, Any] = None):
        self.name = name
        self.agent_type = agent_type
        self.capabilities = capabilities
        self.llm_config = llm_config
        self.config = config or {}
        self.status = AgentStatus.INITIALIZING
        self.current_load = 0
        self.max_concurrent_tasks = self.config.get('max_concurrent_tasks', settings.max_concurrent_tasks)
        self._task_semaphore = asyncio.Semaphore(self.max_concurrent_tasks)

    @abstractmethod
    async def process_task(self, request: AgentRequest) -> Dict[str, Any]:
        """Process a single task and return its output. Must be implemented by subclasses.

        Raising signals failure; the message becomes the response's error_message.
        """
        pass

    async def execute_request(self, request: AgentRequest) -> AgentResponse:
        """Main execution wrapper with timeout, error handling and load management."""
        start_time = time.time()

        async with self._task_semaphore:
            self.current_load += 1
            self.status = AgentStatus.BUSY

            try:
                logger.info(f"Agent {self.name} processing task {request.task_id}")
                output = await asyncio.wait_for(
                    self.process_task(request),
                    timeout=request.timeout
                )
                return AgentResponse(
                    task_id=request.task_id,
                    agent_id=self.agent_type,
                    success=True,
                    output_data=output,
                    execution_time=time.time() - start_time
                )

            except asyncio.TimeoutError:
                logger.error(f"Task {request.task_id} timed out")
                return AgentResponse(
                    task_id=request.task_id,
                    agent_id=self.agent_type,
                    success=False,
                    timed_out=True,
                    error_message=f"Agent timed out after {request.timeout} seconds",
                    execution_time=time.time() - start_time
                )
            except Exception as e:
                logger.error(f"Task {request.task_id} failed: {str(e)}")
                return AgentResponse(
                    task_id=request.task_id,
                    agent_id=self.agent_type,
                    success=False,
                    error_message=str(e) or e.__class__.__name__,
                    execution_time=time.time() - start_time
                )
            finally:
                self.current_load -= 1
                self.status = AgentStatus.IDLE if self.current_load == 0 else AgentStatus.BUSY

    def get_health_status(self) -> Dict[str, Any]:
        """Return current health status."""
        return {
            "agent_id": self.agent_type,
            "status": self.status.value,
            "current_load": self.current_load,
            "max_concurrent_tasks": self.max_concurrent_tasks,
            "capabilities": [cap.model_dump() for cap in self.capabilities]
        }

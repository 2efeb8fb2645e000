# conftest.py - Shared fixtures for workflow engine tests
# In-memory store, recording event publisher and scripted agents; no Redis or LLM needed.

import asyncio
from typing import Any, Dict, List

import pytest

from services.agent_service.agent_installations import InMemoryInstallationProvider
from services.agent_service.agent_registry import AgentRegistry
from services.agent_service.agent_types.base_agent import BaseAgent
from services.agent_service.llm_config import InMemoryLLMConfigProvider
from services.agent_service.models import AgentDescriptor, AgentRequest, LLMConfiguration
from services.workflow_service.agent_gateway import AgentGateway
from services.workflow_service.event_publisher import InMemoryEventPublisher
from services.workflow_service.hierarchy_store import InMemoryHierarchyStore
from services.workflow_service.models import (
    ChecklistItem, Stage, Step, Subtask, Task, Workflow
)
from services.workflow_service.workflow_engine import WorkflowEngine

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"

# ============================================================================
# Agents
# ============================================================================

class ScriptedAgent(BaseAgent):
    """Agent whose behaviour is read from a shared script dict at call time."""

    def __init__(self, llm_config: LLMConfiguration, script: Dict[str, Any], agent_type: str = "parity"):
        super().__init__("Scripted", agent_type, [], llm_config)
        self.script = script

    async def process_task(self, request: AgentRequest) -> Dict[str, Any]:
        self.script["calls"].append(request)
        self.script.setdefault("models", []).append(self.llm_config.model)
        if self.script.get("delay"):
            await asyncio.sleep(self.script["delay"])
        if self.script.get("error"):
            raise RuntimeError(self.script["error"])
        return self.script["output"]


@pytest.fixture
def agent_script() -> Dict[str, Any]:
    return {"calls": [], "output": {"agent": "parity", "result": {"status": "pass"}}}


@pytest.fixture
def registry(agent_script) -> AgentRegistry:
    registry = AgentRegistry()
    registry.register(
        AgentDescriptor(agent_id="parity", name="Parity"),
        lambda cfg: ScriptedAgent(cfg, agent_script)
    )
    registry.register(
        AgentDescriptor(agent_id="kanban", name="Kanban View"),
        lambda cfg: ScriptedAgent(cfg, agent_script, agent_type="kanban"),
        aliases=["Kanban View"]
    )
    registry.register(
        AgentDescriptor(agent_id="echo", name="Echo"),
        lambda cfg: ScriptedAgent(cfg, agent_script, agent_type="echo")
    )
    return registry


@pytest.fixture
def installations() -> InMemoryInstallationProvider:
    # echo is registered but not installed anywhere
    return InMemoryInstallationProvider({
        ORG_ID: {"parity", "kanban"},
        OTHER_ORG_ID: {"parity"},
    })


@pytest.fixture
def llm_configs() -> InMemoryLLMConfigProvider:
    # OTHER_ORG_ID deliberately has no configuration
    return InMemoryLLMConfigProvider([
        LLMConfiguration(id="cfg-default", organization_id=ORG_ID, api_key="test-key", is_default=True),
        LLMConfiguration(id="cfg-large", organization_id=ORG_ID, api_key="test-key", model="gpt-4o"),
    ])

# ============================================================================
# Engine
# ============================================================================

@pytest.fixture
def store() -> InMemoryHierarchyStore:
    return InMemoryHierarchyStore()


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def gateway(registry, installations, llm_configs) -> AgentGateway:
    return AgentGateway(registry, installations, llm_configs, default_timeout=5.0)


@pytest.fixture
def engine(store, publisher, gateway) -> WorkflowEngine:
    return WorkflowEngine(store, publisher, gateway)

# ============================================================================
# Hierarchy
# ============================================================================

class HierarchyBuilder:
    """Seeds hierarchy records straight into the store."""

    def __init__(self, store: InMemoryHierarchyStore):
        self.store = store

    async def workflow(self, organization_id: str = ORG_ID, **fields) -> Workflow:
        return await self.store.save("workflow", Workflow(
            organization_id=organization_id, name=fields.pop("name", "Tax Return"),
            created_by=fields.pop("created_by", "owner-1"), **fields
        ))

    async def stage(self, workflow: Workflow, **fields) -> Stage:
        return await self.store.save("stage", Stage(workflow_id=workflow.id, **fields))

    async def step(self, stage: Stage, **fields) -> Step:
        return await self.store.save("step", Step(stage_id=stage.id, **fields))

    async def task(self, step: Step, **fields) -> Task:
        return await self.store.save("task", Task(step_id=step.id, **fields))

    async def subtask(self, task: Task, **fields) -> Subtask:
        return await self.store.save("subtask", Subtask(task_id=task.id, **fields))

    async def checklist(self, task: Task, **fields) -> ChecklistItem:
        return await self.store.save("checklist", ChecklistItem(task_id=task.id, **fields))

    async def chain(self, organization_id: str = ORG_ID, tasks: int = 1, **task_fields):
        """One workflow with one stage and one step holding ``tasks`` tasks."""
        workflow = await self.workflow(organization_id)
        stage = await self.stage(workflow, name="Preparation")
        step = await self.step(stage, name="Collect documents")
        created: List[Task] = []
        for index in range(tasks):
            created.append(await self.task(step, name=f"Task {index + 1}", order=index, **task_fields))
        return workflow, stage, step, created


@pytest.fixture
def builder(store) -> HierarchyBuilder:
    return HierarchyBuilder(store)

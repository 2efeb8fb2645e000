# workflow_engine.py - Engine facade for task-level workflow operations
# This file wires the store, automation, cascade and AI executor together and exposes
# the operations used by the HTTP routes.

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from services.agent_service.agent_bootstrap import build_default_registry
from services.agent_service.agent_installations import (
    AgentInstallationProvider, InMemoryInstallationProvider, RedisInstallationProvider
)
from services.agent_service.agent_registry import AgentRegistry
from services.agent_service.llm_config import (
    InMemoryLLMConfigProvider, LLMConfigProvider, default_config_from_settings
)

from .agent_gateway import AgentGateway
from .ai_executor import AIAgentExecutor, resolve_task_hierarchy
from .auto_progression import AutoProgressionEngine
from .automation_engine import AutomationEngine
from .config import Settings, settings as default_settings
from .errors import InvalidStateError, NotFoundError
from .event_publisher import InMemoryEventPublisher, WorkflowEventPublisher
from .hierarchy_store import HierarchyStore, InMemoryHierarchyStore
from .task_state_machine import TaskStateMachine
from .models import (
    AutomationRun, ChecklistItem, ExecutionContext, Subtask, Task,
    TaskActionsOutcome, TaskHierarchy, TaskStatus
)

logger = logging.getLogger(__name__)

class WorkflowEngine:
    """Entry point for task operations. Every mutation that can complete a
    task hands off to the AutoProgressionEngine afterwards."""

    def __init__(self, store: HierarchyStore, event_publisher: WorkflowEventPublisher,
                 agent_gateway: AgentGateway):
        self.store = store
        self.event_publisher = event_publisher
        self.agent_gateway = agent_gateway

        self.state_machine = TaskStateMachine(store)
        self.automation_engine = AutomationEngine(store, event_publisher, agent_gateway)
        self.auto_progression = AutoProgressionEngine(
            store, self.automation_engine, event_publisher, self.state_machine
        )
        self.ai_executor = AIAgentExecutor(
            store, agent_gateway, self.auto_progression, event_publisher, self.state_machine
        )

    async def resolve_hierarchy(self, task_id: str) -> TaskHierarchy:
        return await resolve_task_hierarchy(self.store, task_id)

    # =========================
    # TASKS
    # =========================

    async def complete_task(self, task_id: str, actor_id: str) -> Task:
        """Complete a task by hand and cascade. Outstanding subtasks or
        checklist items do not block a manual completion."""
        before = await self.store.get_task(task_id)
        if not before:
            raise NotFoundError("task", task_id)

        task = await self.state_machine.complete_task(task_id, actor_id)
        if before.status != TaskStatus.COMPLETED:
            await self.event_publisher.publish_task_completed(task, actor_id)

        await self.auto_progression.on_task_completed(task.step_id)
        return task

    async def assign_task(self, task_id: str, user_id: str) -> Task:
        task = await self.state_machine.assign_task(task_id, user_id)
        await self.event_publisher.publish_task_assigned(task, user_id)
        return task

    async def toggle_checklist_item(self, item_id: str, actor_id: str) -> ChecklistItem:
        item = await self.store.get_checklist_item(item_id)
        if not item:
            raise NotFoundError("checklist", item_id)

        checked = not item.is_checked
        updated = await self.store.update_checklist_item(item_id, {
            "is_checked": checked,
            "checked_by": actor_id if checked else None,
            "checked_at": datetime.utcnow() if checked else None
        })

        if checked:
            await self.auto_progression.on_checklist_item_checked(updated.task_id)
        return updated

    async def complete_subtask(self, subtask_id: str, actor_id: str) -> Subtask:
        subtask = await self.store.get_subtask(subtask_id)
        if not subtask:
            raise NotFoundError("subtask", subtask_id)

        if not subtask.completed:
            subtask = await self.store.update_subtask(subtask_id, {
                "completed": True,
                "completed_by": actor_id,
                "completed_at": datetime.utcnow()
            })

        await self.auto_progression.on_subtask_completed(subtask.task_id)
        return subtask

    # =========================
    # AUTOMATION
    # =========================

    async def run_task_actions(self, task_id: str, actor_id: str) -> TaskActionsOutcome:
        """Run the task's automation actions and record the results as its output."""
        hierarchy = await self.resolve_hierarchy(task_id)
        task = hierarchy.task
        if task.status == TaskStatus.COMPLETED:
            raise InvalidStateError(f"Task {task_id} is already completed", "task", task_id)
        self.state_machine.check_not_gated(task)

        context = ExecutionContext(
            workflow_id=hierarchy.workflow.id,
            organization_id=hierarchy.workflow.organization_id,
            actor_id=actor_id,
            stage_id=hierarchy.stage.id,
            step_id=hierarchy.step.id,
            task_id=task.id,
            data=dict(task.automation_input or {})
        )
        results = await self.automation_engine.execute_actions(task.automation_actions, context)
        all_successful = all(r.success for r in results)

        updated = await self.state_machine.record_output(
            task_id,
            [r.model_dump(mode="json") for r in results],
            status=TaskStatus.COMPLETED if all_successful else TaskStatus.IN_PROGRESS,
            actor_id=actor_id
        )
        logger.info(f"Ran {len(results)} actions for task {task_id} (all successful: {all_successful})")

        if all_successful:
            await self.event_publisher.publish_task_completed(updated, actor_id)
            await self.auto_progression.try_auto_progress_step(updated.step_id)

        return TaskActionsOutcome(task=updated, results=results, all_successful=all_successful)

    async def execute_task_automation(self, task_id: str, actor_id: str,
                                      timeout: Optional[float] = None) -> AutomationRun:
        return await self.ai_executor.execute_task_automation(task_id, actor_id, timeout)

    async def approve_review(self, task_id: str, reviewer_id: str, notes: Optional[str] = None) -> Task:
        return await self.ai_executor.approve_review(task_id, reviewer_id, notes)

    async def reject_review(self, task_id: str, reviewer_id: str, notes: Optional[str]) -> Task:
        return await self.ai_executor.reject_review(task_id, reviewer_id, notes)

    def test_conditions(self, conditions: Any, test_data: Dict[str, Any]) -> bool:
        return self.automation_engine.evaluate_conditions(conditions, test_data)

    async def close(self):
        await self.automation_engine.close()
        await self.event_publisher.close()


def create_engine(config: Optional[Settings] = None,
                  store: Optional[HierarchyStore] = None,
                  event_publisher: Optional[WorkflowEventPublisher] = None,
                  registry: Optional[AgentRegistry] = None,
                  installations: Optional[AgentInstallationProvider] = None,
                  llm_configs: Optional[LLMConfigProvider] = None) -> WorkflowEngine:
    """Build an engine from settings; any collaborator can be passed in instead."""
    config = config or default_settings

    if store is None:
        if config.store_backend == "redis":
            from .workflow_registry import WorkflowRegistry
            store = WorkflowRegistry()
        else:
            store = InMemoryHierarchyStore()

    if event_publisher is None:
        if config.notifications_enabled:
            event_publisher = WorkflowEventPublisher(config.communication_service_url, config.notification_timeout)
        else:
            event_publisher = InMemoryEventPublisher()

    if installations is None:
        if config.store_backend == "redis":
            installations = RedisInstallationProvider()
        else:
            installations = InMemoryInstallationProvider()

    gateway = AgentGateway(
        registry or build_default_registry(),
        installations,
        llm_configs or InMemoryLLMConfigProvider(fallback=default_config_from_settings()),
        default_timeout=config.default_agent_timeout
    )

    logger.info(f"Workflow engine created (store: {type(store).__name__}, "
                f"publisher: {type(event_publisher).__name__})")
    return WorkflowEngine(store, event_publisher, gateway)

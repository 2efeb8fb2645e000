# ai_executor.py - AI agent execution and human review gate for tasks
# This file contains the logic for delegating a task to an AI agent, storing its output,
# and approving or rejecting that output.

import logging
from typing import Optional

from .agent_gateway import AgentGateway
from .auto_progression import AutoProgressionEngine
from .errors import InvalidStateError, NotFoundError, ValidationError
from .event_publisher import WorkflowEventPublisher
from .hierarchy_store import HierarchyStore
from .task_state_machine import TaskStateMachine
from .models import AutomationRun, ReviewStatus, Task, TaskHierarchy, TaskStatus

logger = logging.getLogger(__name__)

async def resolve_task_hierarchy(store: HierarchyStore, task_id: str) -> TaskHierarchy:
    """Load a task with its step, stage and workflow. NotFoundError on any gap."""
    task = await store.get_task(task_id)
    if not task:
        raise NotFoundError("task", task_id)
    step = await store.get_step(task.step_id)
    if not step:
        raise NotFoundError("step", task.step_id)
    stage = await store.get_stage(step.stage_id)
    if not stage:
        raise NotFoundError("stage", step.stage_id)
    workflow = await store.get_workflow(stage.workflow_id)
    if not workflow:
        raise NotFoundError("workflow", stage.workflow_id)
    return TaskHierarchy(task=task, step=step, stage=stage, workflow=workflow)

class AIAgentExecutor:
    """Runs a task's AI agent and applies the result.

    Validation, installation and configuration checks happen before the first
    write. Once the task is started, agent failures are recorded on the task
    instead of being raised.
    """

    def __init__(self, store: HierarchyStore, agent_gateway: AgentGateway,
                 auto_progression: AutoProgressionEngine, event_publisher: WorkflowEventPublisher,
                 state_machine: Optional[TaskStateMachine] = None):
        self.store = store
        self.agent_gateway = agent_gateway
        self.auto_progression = auto_progression
        self.event_publisher = event_publisher
        self.state_machine = state_machine or TaskStateMachine(store)

    async def execute_task_automation(self, task_id: str, actor_id: str,
                                      timeout: Optional[float] = None) -> AutomationRun:
        hierarchy = await resolve_task_hierarchy(self.store, task_id)
        task = hierarchy.task

        if not task.ai_agent_id:
            raise ValidationError("No AI agent assigned to this task", "task", task_id)
        if not task.automation_input:
            raise ValidationError("No automation input configured for this task", "task", task_id)
        if task.status == TaskStatus.COMPLETED:
            raise InvalidStateError(f"Task {task_id} is already completed", "task", task_id)
        if task.review_status == ReviewStatus.PENDING_REVIEW:
            raise InvalidStateError(f"Task {task_id} is awaiting review", "task", task_id)

        agent = await self.agent_gateway.prepare(
            task.ai_agent_id, hierarchy.workflow.organization_id, task.llm_config_id
        )

        await self.state_machine.start_task(task_id)
        logger.info(f"Executing AI agent {task.ai_agent_id} for task {task_id}")

        try:
            output = await self.agent_gateway.invoke(agent, task.automation_input, timeout, task_id=task_id)
        except Exception as e:
            error_message = str(e) or e.__class__.__name__
            logger.error(f"AI agent {task.ai_agent_id} failed for task {task_id}: {error_message}")
            failed = await self.state_machine.reset_task(task_id, {"error": error_message})
            await self.event_publisher.publish_ai_failed(failed, actor_id, error_message)
            return AutomationRun(task=failed, success=False, error=error_message)

        await self.state_machine.record_output(task_id, output)

        if task.review_required:
            parked = await self.state_machine.mark_pending_review(task_id)
            logger.info(f"AI output for task {task_id} is awaiting review")
            await self.event_publisher.publish_ai_pending_review(parked, actor_id)
            return AutomationRun(task=parked, success=True, requires_review=True, output=output)

        completed = await self.state_machine.complete_task(task_id, actor_id)
        await self.event_publisher.publish_task_completed(completed, actor_id)
        await self.auto_progression.try_auto_progress_step(completed.step_id)
        return AutomationRun(task=completed, success=True, output=output)

    # =========================
    # REVIEW GATE
    # =========================

    async def approve_review(self, task_id: str, reviewer_id: str, notes: Optional[str] = None) -> Task:
        approved = await self.state_machine.approve(task_id, reviewer_id, notes)
        await self.event_publisher.publish_review_decision(approved, reviewer_id, approved=True)
        await self.event_publisher.publish_task_completed(approved, reviewer_id)
        await self.auto_progression.try_auto_progress_step(approved.step_id)
        return approved

    async def reject_review(self, task_id: str, reviewer_id: str, notes: Optional[str]) -> Task:
        rejected = await self.state_machine.reject(task_id, reviewer_id, notes)
        await self.event_publisher.publish_review_decision(rejected, reviewer_id, approved=False)
        return rejected

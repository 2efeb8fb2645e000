# auto_progression.py - Completion cascade for the workflow hierarchy
# This file contains the logic that propagates completion from tasks up through steps,
# stages and workflows when every child of a parent is complete.

import logging
from typing import List, Optional

from .automation_engine import AutomationEngine
from .errors import NotFoundError
from .event_publisher import WorkflowEventPublisher
from .hierarchy_store import HierarchyStore
from .task_state_machine import TaskStateMachine
from .models import (
    AutomationAction, ExecutionContext, ReviewStatus, Stage, Step, Task,
    TaskStatus, TaskType, Workflow, NodeStatus
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

def has_error_output(task: Task) -> bool:
    output = task.automation_output
    return isinstance(output, dict) and "error" in output

class AutoProgressionEngine:
    """Propagates completion bottom-up: checklist/subtask -> task -> step -> stage -> workflow.

    Every ``try_auto_progress_*`` call is idempotent and never raises. Parent
    completion is delegated to the store's conditional ``complete_*_if_ready``
    writes so that concurrent cascades complete a parent exactly once.
    """

    def __init__(self, store: HierarchyStore, automation_engine: AutomationEngine,
                 event_publisher: WorkflowEventPublisher,
                 state_machine: Optional[TaskStateMachine] = None):
        self.store = store
        self.automation_engine = automation_engine
        self.event_publisher = event_publisher
        self.state_machine = state_machine or TaskStateMachine(store)

    # =========================
    # ELIGIBILITY
    # =========================

    async def are_all_checklists_complete(self, task_id: str) -> bool:
        checklists = await self.store.get_checklists_by_task(task_id)
        return all(item.is_checked for item in checklists)

    async def are_all_subtasks_complete(self, task_id: str) -> bool:
        subtasks = await self.store.get_subtasks_by_task(task_id)
        return all(subtask.completed for subtask in subtasks)

    async def is_task_eligible(self, task: Task) -> bool:
        """Whether a task may complete on its own. A task with no subtasks or
        checklist items has nothing outstanding."""
        if task.require_all_checklists_complete and not await self.are_all_checklists_complete(task.id):
            return False
        if task.require_all_subtasks_complete and not await self.are_all_subtasks_complete(task.id):
            return False

        if task.type == TaskType.AUTOMATED:
            if task.review_required:
                return task.review_status == ReviewStatus.APPROVED
            return task.automation_output is not None and not has_error_output(task)
        return True

    # =========================
    # CASCADE
    # =========================

    async def try_auto_progress_task(self, task_id: str) -> bool:
        try:
            task = await self.store.get_task(task_id)
            if not task or task.status == TaskStatus.COMPLETED:
                return False
            if not task.auto_progress:
                return False
            if not await self.is_task_eligible(task):
                return False

            completed = await self.state_machine.complete_task(task_id, SYSTEM_ACTOR)
            logger.info(f"Task {task_id} auto-completed")
            await self.event_publisher.publish_task_completed(completed, SYSTEM_ACTOR)

            await self.try_auto_progress_step(task.step_id)
            return True

        except Exception as e:
            logger.error(f"Auto-progression failed for task {task_id}: {str(e)}")
            return False

    async def try_auto_progress_step(self, step_id: str) -> bool:
        try:
            step = await self.store.get_step(step_id)
            if not step or step.status == NodeStatus.COMPLETED or not step.auto_progress:
                return False

            tasks = await self.store.get_tasks_by_step(step_id)
            if not tasks or not all(t.status == TaskStatus.COMPLETED for t in tasks):
                return False

            stage, workflow = await self._load_step_ancestors(step)
            if step.progress_conditions and not self.automation_engine.evaluate_conditions(
                step.progress_conditions,
                {"all_tasks_complete": True, "allTasksComplete": True, "step": step.model_dump(mode="json"),
                 "stage": stage.model_dump(mode="json"), "workflow": workflow.model_dump(mode="json")}
            ):
                logger.info(f"Step {step_id} progress conditions not met")
                return False

            if not await self.store.complete_step_if_ready(step_id):
                return False
            logger.info(f"Step {step_id} auto-completed")
            await self.event_publisher.publish_node_completed("step", step_id, step.stage_id)

            await self._run_on_complete_actions(
                "step", step_id, step.on_complete_actions,
                ExecutionContext(
                    workflow_id=workflow.id,
                    organization_id=workflow.organization_id,
                    actor_id=workflow.created_by,
                    stage_id=stage.id,
                    step_id=step.id
                )
            )

            await self.try_auto_progress_stage(step.stage_id)
            return True

        except Exception as e:
            logger.error(f"Auto-progression failed for step {step_id}: {str(e)}")
            return False

    async def try_auto_progress_stage(self, stage_id: str) -> bool:
        try:
            stage = await self.store.get_stage(stage_id)
            if not stage or stage.status == NodeStatus.COMPLETED or not stage.auto_progress:
                return False

            steps = await self.store.get_steps_by_stage(stage_id)
            if not steps or not all(s.status == NodeStatus.COMPLETED for s in steps):
                return False

            workflow = await self._load_workflow(stage.workflow_id)
            if stage.progress_conditions and not self.automation_engine.evaluate_conditions(
                stage.progress_conditions,
                {"all_steps_complete": True, "allStepsComplete": True, "stage": stage.model_dump(mode="json"),
                 "workflow": workflow.model_dump(mode="json")}
            ):
                logger.info(f"Stage {stage_id} progress conditions not met")
                return False

            if not await self.store.complete_stage_if_ready(stage_id):
                return False
            logger.info(f"Stage {stage_id} auto-completed")
            await self.event_publisher.publish_node_completed("stage", stage_id, stage.workflow_id)

            await self._run_on_complete_actions(
                "stage", stage_id, stage.on_complete_actions,
                ExecutionContext(
                    workflow_id=workflow.id,
                    organization_id=workflow.organization_id,
                    actor_id=workflow.created_by,
                    stage_id=stage.id
                )
            )

            await self.refresh_workflow_progress(stage.workflow_id)
            await self.try_auto_progress_workflow(stage.workflow_id)
            return True

        except Exception as e:
            logger.error(f"Auto-progression failed for stage {stage_id}: {str(e)}")
            return False

    async def try_auto_progress_workflow(self, workflow_id: str) -> bool:
        try:
            if not await self.store.complete_workflow_if_ready(workflow_id):
                return False
            logger.info(f"Workflow {workflow_id} auto-completed")
            await self.event_publisher.publish_node_completed("workflow", workflow_id)
            return True

        except Exception as e:
            logger.error(f"Auto-progression failed for workflow {workflow_id}: {str(e)}")
            return False

    async def refresh_workflow_progress(self, workflow_id: str) -> Optional[Workflow]:
        """Recompute ``completed_stages`` and ``progress`` from the stage list."""
        stages = await self.store.get_stages_by_workflow(workflow_id)
        completed_stages = sum(1 for s in stages if s.status == NodeStatus.COMPLETED)
        progress = round(completed_stages / len(stages) * 100) if stages else 0

        workflow = await self._load_workflow(workflow_id)
        if workflow.completed_stages == completed_stages and workflow.progress == progress:
            return workflow

        updated = await self.store.update_workflow(workflow_id, {
            "completed_stages": completed_stages,
            "progress": progress
        })
        logger.info(f"Workflow {workflow_id} progress: {progress}% ({completed_stages}/{len(stages)} stages)")
        return updated

    # =========================
    # TRIGGERS
    # =========================

    async def on_checklist_item_checked(self, task_id: str) -> bool:
        logger.debug(f"Checklist item checked in task {task_id}")
        return await self.try_auto_progress_task(task_id)

    async def on_subtask_completed(self, task_id: str) -> bool:
        logger.debug(f"Subtask completed in task {task_id}")
        return await self.try_auto_progress_task(task_id)

    async def on_task_completed(self, step_id: str) -> bool:
        logger.debug(f"Task completed in step {step_id}")
        return await self.try_auto_progress_step(step_id)

    # =========================
    # HELPERS
    # =========================

    async def _load_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.store.get_workflow(workflow_id)
        if not workflow:
            raise NotFoundError("workflow", workflow_id)
        return workflow

    async def _load_step_ancestors(self, step: Step):
        stage: Optional[Stage] = await self.store.get_stage(step.stage_id)
        if not stage:
            raise NotFoundError("stage", step.stage_id)
        return stage, await self._load_workflow(stage.workflow_id)

    async def _run_on_complete_actions(self, kind: str, node_id: str,
                                       actions: List[AutomationAction], context: ExecutionContext):
        if not actions:
            return
        results = await self.automation_engine.execute_actions(actions, context)
        for result in results:
            if not result.success:
                logger.error(f"On-complete action {result.action} for {kind} {node_id} failed: {result.error}")

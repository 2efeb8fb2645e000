# task_state_machine.py - Task lifecycle and AI review gate
# This file contains the legal task status transitions and the review-gate transitions.

import logging
from typing import Any, Dict, Optional, Set, Tuple
from datetime import datetime

from .errors import NotFoundError, InvalidStateError, ValidationError
from .hierarchy_store import HierarchyStore
from .models import Task, TaskStatus, ReviewStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Set[Tuple[TaskStatus, TaskStatus]] = {
    (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
    (TaskStatus.PENDING, TaskStatus.COMPLETED),      # manual completion
    (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
    (TaskStatus.IN_PROGRESS, TaskStatus.PENDING),    # AI failure or rejected review
    (TaskStatus.IN_PROGRESS, TaskStatus.IN_PROGRESS),  # re-running an automation
}

REVIEW_TRANSITIONS: Set[Tuple[Optional[ReviewStatus], ReviewStatus]] = {
    (None, ReviewStatus.PENDING_REVIEW),
    (ReviewStatus.REJECTED, ReviewStatus.PENDING_REVIEW),  # re-execution after rejection
    (ReviewStatus.PENDING_REVIEW, ReviewStatus.APPROVED),
    (ReviewStatus.PENDING_REVIEW, ReviewStatus.REJECTED),
}


class TaskStateMachine:
    """Owns every write to ``Task.status`` and ``Task.review_status``.

    None of these operations cascade; callers run the AutoProgressionEngine
    afterwards.
    """

    def __init__(self, store: HierarchyStore):
        self.store = store

    async def _load(self, task_id: str) -> Task:
        task = await self.store.get_task(task_id)
        if not task:
            raise NotFoundError("task", task_id)
        return task

    def _check_transition(self, task: Task, target: TaskStatus):
        if (task.status, target) not in ALLOWED_TRANSITIONS:
            raise InvalidStateError(
                f"Task {task.id} cannot move from {task.status.value} to {target.value}",
                "task", task.id
            )

    def _check_review_transition(self, task: Task, target: ReviewStatus):
        if not task.review_required:
            raise InvalidStateError(f"Task {task.id} does not require review", "task", task.id)
        if (task.review_status, target) not in REVIEW_TRANSITIONS:
            current = task.review_status.value if task.review_status else "none"
            raise InvalidStateError(
                f"Task {task.id} review cannot move from {current} to {target.value}",
                "task", task.id
            )

    def check_not_gated(self, task: Task):
        """Reject work on a task whose output still needs, or is awaiting, a review decision."""
        if task.review_status == ReviewStatus.PENDING_REVIEW:
            raise InvalidStateError(f"Task {task.id} is awaiting review", "task", task.id)
        if task.review_required and task.review_status != ReviewStatus.APPROVED:
            raise InvalidStateError(f"Task {task.id} can only be completed through review", "task", task.id)

    async def _write(self, task_id: str, fields: Dict[str, Any]) -> Task:
        updated = await self.store.update_task(task_id, fields)
        if not updated:
            raise NotFoundError("task", task_id)
        return updated

    async def complete_task(self, task_id: str, actor_id: Optional[str]) -> Task:
        """Mark a task completed. Completing an already completed task is a no-op."""
        task = await self._load(task_id)
        if task.status == TaskStatus.COMPLETED:
            return task
        self._check_transition(task, TaskStatus.COMPLETED)

        updated = await self._write(task_id, {
            "status": TaskStatus.COMPLETED,
            "completed_by": actor_id,
            "completed_at": datetime.utcnow()
        })
        logger.info(f"Task {task_id} completed by {actor_id}")
        return updated

    async def assign_task(self, task_id: str, user_id: str) -> Task:
        await self._load(task_id)
        return await self._write(task_id, {"assigned_to": user_id})

    async def start_task(self, task_id: str) -> Task:
        task = await self._load(task_id)
        self._check_transition(task, TaskStatus.IN_PROGRESS)
        return await self._write(task_id, {"status": TaskStatus.IN_PROGRESS})

    async def reset_task(self, task_id: str, automation_output: Any = None) -> Task:
        """Return an in-progress task to pending, recording ``automation_output``."""
        task = await self._load(task_id)
        self._check_transition(task, TaskStatus.PENDING)
        return await self._write(task_id, {
            "status": TaskStatus.PENDING,
            "automation_output": automation_output
        })

    async def record_output(self, task_id: str, automation_output: Any,
                            status: Optional[TaskStatus] = None,
                            actor_id: Optional[str] = None) -> Task:
        task = await self._load(task_id)
        fields: Dict[str, Any] = {"automation_output": automation_output}
        if status is not None and status != task.status:
            self._check_transition(task, status)
            fields["status"] = status
            if status == TaskStatus.COMPLETED:
                self.check_not_gated(task)
                fields["completed_by"] = actor_id
                fields["completed_at"] = datetime.utcnow()
        return await self._write(task_id, fields)

    # =========================
    # REVIEW GATE
    # =========================

    async def mark_pending_review(self, task_id: str) -> Task:
        task = await self._load(task_id)
        self._check_review_transition(task, ReviewStatus.PENDING_REVIEW)
        return await self._write(task_id, {
            "review_status": ReviewStatus.PENDING_REVIEW,
            "reviewed_by": None,
            "reviewed_at": None,
            "review_notes": None
        })

    async def approve(self, task_id: str, reviewer_id: str, notes: Optional[str] = None) -> Task:
        task = await self._load(task_id)
        if task.review_status != ReviewStatus.PENDING_REVIEW:
            raise InvalidStateError(f"Task {task_id} is not pending review", "task", task_id)
        self._check_review_transition(task, ReviewStatus.APPROVED)

        now = datetime.utcnow()
        updated = await self._write(task_id, {
            "review_status": ReviewStatus.APPROVED,
            "reviewed_by": reviewer_id,
            "reviewed_at": now,
            "review_notes": notes or None,
            "status": TaskStatus.COMPLETED,
            "completed_by": reviewer_id,
            "completed_at": now
        })
        logger.info(f"AI output for task {task_id} approved by {reviewer_id}")
        return updated

    async def reject(self, task_id: str, reviewer_id: str, notes: Optional[str]) -> Task:
        if not notes or not notes.strip():
            raise ValidationError("Review notes are required when rejecting", "task", task_id)

        task = await self._load(task_id)
        if task.review_status != ReviewStatus.PENDING_REVIEW:
            raise InvalidStateError(f"Task {task_id} is not pending review", "task", task_id)
        self._check_review_transition(task, ReviewStatus.REJECTED)

        fields: Dict[str, Any] = {
            "review_status": ReviewStatus.REJECTED,
            "reviewed_by": reviewer_id,
            "reviewed_at": datetime.utcnow(),
            "review_notes": notes.strip(),
            "automation_output": None
        }
        if task.status != TaskStatus.PENDING:
            self._check_transition(task, TaskStatus.PENDING)
            fields["status"] = TaskStatus.PENDING

        updated = await self._write(task_id, fields)
        logger.info(f"AI output for task {task_id} rejected by {reviewer_id}")
        return updated

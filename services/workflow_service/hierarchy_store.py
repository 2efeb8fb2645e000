# hierarchy_store.py - Storage interface for the workflow hierarchy
# This file defines the HierarchyStore contract used by the engine and an in-memory implementation.

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Type, TypeVar

from pydantic import BaseModel

from .models import (
    Workflow, Stage, Step, Task, Subtask, ChecklistItem,
    WorkflowStatus, NodeStatus, TaskStatus
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

ENTITY_TYPES: Dict[str, Type[BaseModel]] = {
    "workflow": Workflow,
    "stage": Stage,
    "step": Step,
    "task": Task,
    "subtask": Subtask,
    "checklist": ChecklistItem,
}

# child kind -> (parent kind, parent pointer field)
PARENT_LINKS = {
    "stage": ("workflow", "workflow_id"),
    "step": ("stage", "stage_id"),
    "task": ("step", "step_id"),
    "subtask": ("task", "task_id"),
    "checklist": ("task", "task_id"),
}

def sort_children(children: List[ModelT]) -> List[ModelT]:
    """Stable child ordering; duplicate `order` values fall back to id."""
    return sorted(children, key=lambda c: (getattr(c, "order", 0), c.id))


class HierarchyStore(ABC):
    """Read/write access to hierarchy records keyed by id.

    The engine only reads structure and writes status, review and output fields.
    Parent completion goes through the ``complete_*_if_ready`` operations, which
    must check the children and write the parent as one atomic unit.
    """

    # Reads

    @abstractmethod
    async def get(self, kind: str, entity_id: str) -> Optional[BaseModel]:
        pass

    @abstractmethod
    async def list_children(self, kind: str, parent_id: str) -> List[BaseModel]:
        """List entities of ``kind`` whose parent pointer equals ``parent_id``."""
        pass

    # Writes

    @abstractmethod
    async def save(self, kind: str, entity: BaseModel) -> BaseModel:
        """Insert or replace a record."""
        pass

    @abstractmethod
    async def update(self, kind: str, entity_id: str, fields: Dict[str, Any]) -> Optional[BaseModel]:
        """Apply a partial update. Returns None if the record does not exist."""
        pass

    @abstractmethod
    async def complete_if_ready(self, kind: str, entity_id: str) -> bool:
        """Atomically mark ``entity_id`` completed if it is not completed yet and
        it has at least one child and every child is completed.

        Returns True only when this call performed the write.
        """
        pass

    # Typed helpers

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return await self.get("workflow", workflow_id)

    async def get_stage(self, stage_id: str) -> Optional[Stage]:
        return await self.get("stage", stage_id)

    async def get_step(self, step_id: str) -> Optional[Step]:
        return await self.get("step", step_id)

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self.get("task", task_id)

    async def get_subtask(self, subtask_id: str) -> Optional[Subtask]:
        return await self.get("subtask", subtask_id)

    async def get_checklist_item(self, item_id: str) -> Optional[ChecklistItem]:
        return await self.get("checklist", item_id)

    async def get_stages_by_workflow(self, workflow_id: str) -> List[Stage]:
        return await self.list_children("stage", workflow_id)

    async def get_steps_by_stage(self, stage_id: str) -> List[Step]:
        return await self.list_children("step", stage_id)

    async def get_tasks_by_step(self, step_id: str) -> List[Task]:
        return await self.list_children("task", step_id)

    async def get_subtasks_by_task(self, task_id: str) -> List[Subtask]:
        return await self.list_children("subtask", task_id)

    async def get_checklists_by_task(self, task_id: str) -> List[ChecklistItem]:
        return await self.list_children("checklist", task_id)

    async def update_workflow(self, workflow_id: str, fields: Dict[str, Any]) -> Optional[Workflow]:
        return await self.update("workflow", workflow_id, fields)

    async def update_stage(self, stage_id: str, fields: Dict[str, Any]) -> Optional[Stage]:
        return await self.update("stage", stage_id, fields)

    async def update_step(self, step_id: str, fields: Dict[str, Any]) -> Optional[Step]:
        return await self.update("step", step_id, fields)

    async def update_task(self, task_id: str, fields: Dict[str, Any]) -> Optional[Task]:
        return await self.update("task", task_id, fields)

    async def update_subtask(self, subtask_id: str, fields: Dict[str, Any]) -> Optional[Subtask]:
        return await self.update("subtask", subtask_id, fields)

    async def update_checklist_item(self, item_id: str, fields: Dict[str, Any]) -> Optional[ChecklistItem]:
        return await self.update("checklist", item_id, fields)

    async def create_task(self, task: Task) -> Task:
        return await self.save("task", task)

    async def complete_step_if_ready(self, step_id: str) -> bool:
        return await self.complete_if_ready("step", step_id)

    async def complete_stage_if_ready(self, stage_id: str) -> bool:
        return await self.complete_if_ready("stage", stage_id)

    async def complete_workflow_if_ready(self, workflow_id: str) -> bool:
        return await self.complete_if_ready("workflow", workflow_id)


def completed_value(kind: str) -> str:
    if kind == "workflow":
        return WorkflowStatus.COMPLETED.value
    if kind == "task":
        return TaskStatus.COMPLETED.value
    return NodeStatus.COMPLETED.value

def child_kind_of(kind: str) -> str:
    for child, (parent, _) in PARENT_LINKS.items():
        if parent == kind and child not in ("subtask", "checklist"):
            return child
    raise ValueError(f"Kind {kind} has no completable children")

def is_completed(entity: BaseModel) -> bool:
    status = getattr(entity, "status", None)
    return getattr(status, "value", status) == "completed"

def is_closed(entity: BaseModel) -> bool:
    """Completed, or an archived workflow, which never moves to completed."""
    status = getattr(entity, "status", None)
    return getattr(status, "value", status) in ("completed", WorkflowStatus.ARCHIVED.value)


class InMemoryHierarchyStore(HierarchyStore):
    """Process-local store. Check-and-write sections never yield to the event
    loop, so they are atomic with respect to other coroutines."""

    def __init__(self):
        self._records: Dict[str, Dict[str, BaseModel]] = {kind: {} for kind in ENTITY_TYPES}
        self.writes = 0

    def _table(self, kind: str) -> Dict[str, BaseModel]:
        if kind not in self._records:
            raise ValueError(f"Unknown entity kind: {kind}")
        return self._records[kind]

    async def get(self, kind: str, entity_id: str) -> Optional[BaseModel]:
        entity = self._table(kind).get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    async def list_children(self, kind: str, parent_id: str) -> List[BaseModel]:
        _, parent_field = PARENT_LINKS[kind]
        children = [
            entity.model_copy(deep=True)
            for entity in self._table(kind).values()
            if getattr(entity, parent_field) == parent_id
        ]
        return sort_children(children)

    async def save(self, kind: str, entity: BaseModel) -> BaseModel:
        self._table(kind)[entity.id] = entity.model_copy(deep=True)
        self.writes += 1
        return entity.model_copy(deep=True)

    async def update(self, kind: str, entity_id: str, fields: Dict[str, Any]) -> Optional[BaseModel]:
        table = self._table(kind)
        current = table.get(entity_id)
        if current is None:
            return None

        # Re-validate so enum and nested fields keep their types
        data = current.model_dump()
        data.update(fields)
        updated = ENTITY_TYPES[kind].model_validate(data)
        table[entity_id] = updated
        self.writes += 1
        return updated.model_copy(deep=True)

    async def complete_if_ready(self, kind: str, entity_id: str) -> bool:
        table = self._table(kind)
        current = table.get(entity_id)
        if current is None or is_closed(current):
            return False

        child_kind = child_kind_of(kind)
        _, parent_field = PARENT_LINKS[child_kind]
        children = [c for c in self._table(child_kind).values() if getattr(c, parent_field) == entity_id]
        if not children or not all(is_completed(c) for c in children):
            return False

        data = current.model_dump()
        data["status"] = completed_value(kind)
        table[entity_id] = ENTITY_TYPES[kind].model_validate(data)
        self.writes += 1
        logger.debug(f"Marked {kind} {entity_id} completed")
        return True

# tasks.py - Task operation endpoints
# This file defines the API endpoints for completing, automating and reviewing tasks.

from fastapi import APIRouter, HTTPException, Depends, Request
from typing import Any, Dict
import logging

from ..errors import WorkflowEngineError
from ..models import (
    AssignTaskRequest, ActorRequest, ExecuteAIRequest, ReviewRequest,
    TestConditionsRequest, Task, ChecklistItem, Subtask
)
from ..workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)
router = APIRouter(tags=["tasks"])

# Dependencies
def get_engine(request: Request) -> WorkflowEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Workflow engine not initialized")
    return engine

def to_http_error(e: WorkflowEngineError) -> HTTPException:
    logger.warning(f"Request rejected ({e.status_code}): {e.message}")
    return HTTPException(status_code=e.status_code, detail=e.message)

@router.post("/tasks/{task_id}/complete", response_model=Task)
async def complete_task(
    task_id: str,
    body: ActorRequest,
    engine: WorkflowEngine = Depends(get_engine)
):
    """Complete a task by hand and cascade completion upwards."""
    try:
        return await engine.complete_task(task_id, body.actor_id)
    except WorkflowEngineError as e:
        raise to_http_error(e)

@router.post("/tasks/{task_id}/assign", response_model=Task)
async def assign_task(
    task_id: str,
    body: AssignTaskRequest,
    engine: WorkflowEngine = Depends(get_engine)
):
    try:
        return await engine.assign_task(task_id, body.user_id)
    except WorkflowEngineError as e:
        raise to_http_error(e)

@router.post("/checklists/{item_id}/toggle", response_model=ChecklistItem)
async def toggle_checklist_item(
    item_id: str,
    body: ActorRequest,
    engine: WorkflowEngine = Depends(get_engine)
):
    try:
        return await engine.toggle_checklist_item(item_id, body.actor_id)
    except WorkflowEngineError as e:
        raise to_http_error(e)

@router.post("/subtasks/{subtask_id}/complete", response_model=Subtask)
async def complete_subtask(
    subtask_id: str,
    body: ActorRequest,
    engine: WorkflowEngine = Depends(get_engine)
):
    try:
        return await engine.complete_subtask(subtask_id, body.actor_id)
    except WorkflowEngineError as e:
        raise to_http_error(e)

@router.post("/tasks/{task_id}/execute-ai")
async def execute_ai(
    task_id: str,
    body: ExecuteAIRequest,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """Run the task's AI agent. Agent failures are reported in the body, not as errors."""
    try:
        run = await engine.execute_task_automation(task_id, body.actor_id, body.timeout)
    except WorkflowEngineError as e:
        raise to_http_error(e)

    return {
        "success": run.success,
        "requires_review": run.requires_review,
        "output": run.output,
        "error": run.error,
        "task": run.task.model_dump(mode="json")
    }

@router.post("/tasks/{task_id}/execute-automation")
async def execute_automation(
    task_id: str,
    body: ActorRequest,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        outcome = await engine.run_task_actions(task_id, body.actor_id)
    except WorkflowEngineError as e:
        raise to_http_error(e)

    return {
        "success": outcome.all_successful,
        "results": [r.model_dump(mode="json") for r in outcome.results],
        "task": outcome.task.model_dump(mode="json")
    }

@router.post("/tasks/{task_id}/review/approve", response_model=Task)
async def approve_review(
    task_id: str,
    body: ReviewRequest,
    engine: WorkflowEngine = Depends(get_engine)
):
    try:
        return await engine.approve_review(task_id, body.reviewer_id, body.review_notes)
    except WorkflowEngineError as e:
        raise to_http_error(e)

@router.post("/tasks/{task_id}/review/reject", response_model=Task)
async def reject_review(
    task_id: str,
    body: ReviewRequest,
    engine: WorkflowEngine = Depends(get_engine)
):
    try:
        return await engine.reject_review(task_id, body.reviewer_id, body.review_notes)
    except WorkflowEngineError as e:
        raise to_http_error(e)

@router.post("/automation/test-conditions")
async def test_conditions(
    body: TestConditionsRequest,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """Evaluate a condition tree against sample data."""
    return {"conditions_met": engine.test_conditions(body.conditions, body.test_data)}

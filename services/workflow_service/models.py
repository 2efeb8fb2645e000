# models.py - Workflow hierarchy and automation models
# This file defines the data models for workflows, stages, steps, tasks and the automation layer.

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional, Any, Union, Literal
from datetime import datetime
from enum import Enum
import uuid

def new_id() -> str:
    return str(uuid.uuid4())

class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"

class NodeStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"

class TaskType(str, Enum):
    MANUAL = "manual"
    AUTOMATED = "automated"

class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

class ReviewStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"

# =========================
# AUTOMATION
# =========================

class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS_ANY = "contains_any"
    CONTAINS_ALL = "contains_all"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"

class Condition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field: str
    operator: str  # Kept as str so unknown operators evaluate to False instead of failing validation
    value: Any = None
    logic: Optional[Literal["AND", "OR", "and", "or"]] = None  # Sequential combinator with the previous result

class ConditionGroup(BaseModel):
    model_config = ConfigDict(extra="forbid")

    logic: Literal["and", "or", "AND", "OR"] = "and"
    conditions: List[Union["ConditionGroup", Condition]] = Field(default_factory=list)

ConditionGroup.model_rebuild()

ConditionNode = Union[ConditionGroup, Condition]

class ActionType(str, Enum):
    CREATE_TASK = "create_task"
    UPDATE_FIELD = "update_field"
    SEND_NOTIFICATION = "send_notification"
    SEND_MESSAGE = "send_message"
    SET_CONTEXT = "set_context"
    CALL_API = "call_api"
    RUN_AI_AGENT = "run_ai_agent"

class AutomationAction(BaseModel):
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    conditions: Optional[List[Dict[str, Any]]] = None

class ActionResult(BaseModel):
    action: str
    success: bool
    skipped: bool = False
    result: Any = None
    reason: Optional[str] = None
    error: Optional[str] = None

class ExecutionContext(BaseModel):
    workflow_id: str
    organization_id: str
    actor_id: str
    stage_id: Optional[str] = None
    step_id: Optional[str] = None
    task_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)  # Shared payload between actions

    def flatten(self) -> Dict[str, Any]:
        """Payload merged with the hierarchy ids, used for condition checks and templating."""
        flat = dict(self.data)
        flat.update({
            "workflow_id": self.workflow_id,
            "stage_id": self.stage_id,
            "step_id": self.step_id,
            "task_id": self.task_id,
            "organization_id": self.organization_id,
            "actor_id": self.actor_id,
            "data": self.data,
        })
        return flat

# =========================
# HIERARCHY
# =========================

class Workflow(BaseModel):
    id: str = Field(default_factory=new_id)
    organization_id: str
    name: str
    status: WorkflowStatus = WorkflowStatus.DRAFT
    is_automated: bool = False
    total_stages: int = 0
    completed_stages: int = 0
    progress: int = Field(default=0, ge=0, le=100)
    created_by: str = "system"
    created_at: datetime = Field(default_factory=datetime.utcnow)

class Stage(BaseModel):
    id: str = Field(default_factory=new_id)
    workflow_id: str
    name: str = ""
    order: int = 0
    auto_progress: bool = True
    status: NodeStatus = NodeStatus.PENDING
    progress_conditions: List[Dict[str, Any]] = Field(default_factory=list)
    on_complete_actions: List[AutomationAction] = Field(default_factory=list)

class Step(BaseModel):
    id: str = Field(default_factory=new_id)
    stage_id: str
    name: str = ""
    order: int = 0
    auto_progress: bool = True
    status: NodeStatus = NodeStatus.PENDING
    progress_conditions: List[Dict[str, Any]] = Field(default_factory=list)
    on_complete_actions: List[AutomationAction] = Field(default_factory=list)

class Task(BaseModel):
    id: str = Field(default_factory=new_id)
    step_id: str
    name: str = ""
    order: int = 0
    type: TaskType = TaskType.MANUAL
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: Optional[str] = None

    # AI agent delegation
    ai_agent_id: Optional[str] = None
    llm_config_id: Optional[str] = None
    automation_input: Optional[Dict[str, Any]] = None
    automation_output: Optional[Any] = None
    automation_actions: List[AutomationAction] = Field(default_factory=list)

    # Review gate
    review_required: bool = False
    review_status: Optional[ReviewStatus] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None

    # Completion
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    auto_progress: bool = True
    require_all_checklists_complete: bool = True
    require_all_subtasks_complete: bool = True

class Subtask(BaseModel):
    id: str = Field(default_factory=new_id)
    task_id: str
    name: str = ""
    completed: bool = False
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None

class ChecklistItem(BaseModel):
    id: str = Field(default_factory=new_id)
    task_id: str
    label: str = ""
    is_checked: bool = False
    checked_by: Optional[str] = None
    checked_at: Optional[datetime] = None

class TaskHierarchy(BaseModel):
    """A task with its resolved ancestor chain."""
    task: Task
    step: Step
    stage: Stage
    workflow: Workflow

# =========================
# OPERATION RESULTS
# =========================

class AutomationRun(BaseModel):
    task: Task
    success: bool
    requires_review: bool = False
    output: Any = None
    error: Optional[str] = None

class TaskActionsOutcome(BaseModel):
    task: Task
    results: List[ActionResult]
    all_successful: bool

# =========================
# REQUEST BODIES
# =========================

class AssignTaskRequest(BaseModel):
    user_id: str

class ActorRequest(BaseModel):
    actor_id: str

class ExecuteAIRequest(BaseModel):
    actor_id: str
    timeout: Optional[float] = Field(default=None, gt=0)

class ReviewRequest(BaseModel):
    reviewer_id: str
    review_notes: Optional[str] = None

class TestConditionsRequest(BaseModel):
    conditions: Any = None
    test_data: Dict[str, Any] = Field(default_factory=dict)

# automation_engine.py - Condition evaluation and action execution for tasks
# This file contains the logic for evaluating condition trees against a data context and
# executing ordered, independently fallible automation actions.

import logging
import re
from typing import Dict, List, Optional, Any, Callable, Awaitable, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, ValidationError
from .event_publisher import WorkflowEventPublisher
from .hierarchy_store import HierarchyStore, ENTITY_TYPES
from .models import (
    Condition, ConditionGroup, ConditionNode, ConditionOperator,
    AutomationAction, ActionResult, ActionType, ExecutionContext,
    Task, TaskType
)

logger = logging.getLogger(__name__)

_MISSING = object()
_VARIABLE_PATTERN = re.compile(r'\$\{([^}]+)\}')

# Fields an update_field action may never overwrite; status changes go through
# the state machine and the cascade
PROTECTED_FIELDS = {"id", "workflow_id", "stage_id", "step_id", "task_id", "organization_id",
                    "status", "review_status", "completed_by", "completed_at"}

ENTITY_CONTEXT_IDS = {
    "task": "task_id",
    "step": "step_id",
    "stage": "stage_id",
    "workflow": "workflow_id",
    "pipeline": "workflow_id",
}

ActionHandler = Callable[[Dict[str, Any], ExecutionContext], Awaitable[Any]]

# =========================
# PATH HELPERS
# =========================

def resolve_path(data: Any, path: str) -> Any:
    """Resolve dot notation paths like 'client.tags' or 'data.amount'.

    Returns ``_MISSING`` when any segment is absent.
    """
    if isinstance(data, dict) and path in data:
        return data[path]

    current = data
    for part in path.split('.'):
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        elif current is not None and hasattr(current, part):
            current = getattr(current, part)
        else:
            return _MISSING
    return current

def set_nested_value(context: Dict[str, Any], path: str, value: Any):
    """Set nested value in context using dot notation."""
    if '.' not in path:
        context[path] = value
        return

    parts = path.split('.')
    current = context

    # Navigate to the parent of the target key
    for part in parts[:-1]:
        if part not in current or not isinstance(current[part], dict):
            current[part] = {}
        current = current[part]

    current[parts[-1]] = value

def substitute_variables(value: Any, context: Dict[str, Any]) -> Any:
    """Substitute ${path} patterns in strings, recursing into dicts and lists.

    A string that is exactly one placeholder keeps the referenced value's type.
    """
    if isinstance(value, dict):
        return {k: substitute_variables(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_variables(v, context) for v in value]
    if not isinstance(value, str) or '${' not in value:
        return value

    whole = _VARIABLE_PATTERN.fullmatch(value)
    if whole:
        resolved = resolve_path(context, whole.group(1).strip())
        return None if resolved is _MISSING else resolved

    def replace_var(match):
        var_path = match.group(1).strip()
        resolved = resolve_path(context, var_path)
        return str(resolved) if resolved is not _MISSING and resolved is not None else f"MISSING({var_path})"

    return _VARIABLE_PATTERN.sub(replace_var, value)

# =========================
# CONDITION PARSING
# =========================

_INVALID_CONDITION = Condition(field="", operator="__invalid__")

def parse_condition_node(node: Any) -> ConditionNode:
    if isinstance(node, (Condition, ConditionGroup)):
        return node
    if isinstance(node, list):
        return ConditionGroup(logic="and", conditions=[parse_condition_node(n) for n in node])
    if isinstance(node, dict):
        try:
            if "conditions" in node:
                return ConditionGroup(
                    logic=node.get("logic") or "and",
                    conditions=[parse_condition_node(n) for n in node.get("conditions") or []]
                )
            return Condition.model_validate(node)
        except PydanticValidationError as e:
            logger.warning(f"Malformed condition {node}: {str(e)}")
            return _INVALID_CONDITION
    logger.warning(f"Unsupported condition node of type {type(node).__name__}")
    return _INVALID_CONDITION

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

def _loose_equals(left: Any, right: Any) -> bool:
    if left == right:
        return True
    # "5" equals 5, "true" equals True
    if isinstance(left, str) != isinstance(right, str):
        text, other = (left, right) if isinstance(left, str) else (right, left)
        if isinstance(other, bool):
            return text.strip().lower() == str(other).lower()
        if _is_number(other):
            try:
                return float(text) == float(other)
            except ValueError:
                return False
    return False

def _contains(container: Any, item: Any) -> bool:
    if isinstance(container, (list, tuple, set)):
        return item in container
    if isinstance(container, dict):
        return item in container
    return str(item) in str(container)

def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


class AutomationEngine:
    """Evaluates condition trees and executes automation action lists."""

    def __init__(self, store: HierarchyStore, event_publisher: WorkflowEventPublisher,
                 agent_gateway=None, http_client: Optional[httpx.AsyncClient] = None):
        self.store = store
        self.event_publisher = event_publisher
        self.agent_gateway = agent_gateway
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)

        self._handlers: Dict[str, ActionHandler] = {
            ActionType.CREATE_TASK.value: self._create_task,
            ActionType.UPDATE_FIELD.value: self._update_field,
            ActionType.SEND_NOTIFICATION.value: self._send_notification,
            ActionType.SEND_MESSAGE.value: self._send_message,
            ActionType.SET_CONTEXT.value: self._set_context,
            ActionType.CALL_API.value: self._call_api,
            ActionType.RUN_AI_AGENT.value: self._run_ai_agent,
        }

    # =========================
    # CONDITIONS
    # =========================

    def evaluate_conditions(self, conditions: Any, context: Dict[str, Any]) -> bool:
        """Evaluate a condition tree. Empty or missing conditions pass; never raises."""
        if conditions is None:
            return True
        if isinstance(conditions, (list, dict)) and len(conditions) == 0:
            return True
        return self._evaluate_node(parse_condition_node(conditions), context or {})

    def _evaluate_node(self, node: ConditionNode, context: Dict[str, Any]) -> bool:
        if isinstance(node, Condition):
            return self._evaluate_leaf(node, context)

        if not node.conditions:
            return True

        if node.logic.lower() == "or":
            return any(self._evaluate_node(child, context) for child in node.conditions)

        # AND group; a leaf may still carry its own sequential "OR" combinator
        result = True
        for child in node.conditions:
            child_result = self._evaluate_node(child, context)
            if isinstance(child, Condition) and (child.logic or "").upper() == "OR":
                result = result or child_result
            else:
                result = result and child_result
        return result

    def _evaluate_leaf(self, condition: Condition, context: Dict[str, Any]) -> bool:
        field_value = resolve_path(context, condition.field) if condition.field else _MISSING
        # Presence checks are the only operators that see a missing field
        if condition.operator == ConditionOperator.EXISTS.value:
            return field_value is not _MISSING and field_value is not None
        if condition.operator == ConditionOperator.NOT_EXISTS.value:
            return field_value is _MISSING or field_value is None
        if field_value is _MISSING:
            return False

        expected = condition.value
        operator = condition.operator
        try:
            if operator == ConditionOperator.EQUALS.value:
                return _loose_equals(field_value, expected)
            if operator == ConditionOperator.NOT_EQUALS.value:
                return not _loose_equals(field_value, expected)
            if operator == ConditionOperator.GREATER_THAN.value:
                return float(field_value) > float(expected)
            if operator == ConditionOperator.LESS_THAN.value:
                return float(field_value) < float(expected)
            if operator == ConditionOperator.GREATER_THAN_OR_EQUAL.value:
                return float(field_value) >= float(expected)
            if operator == ConditionOperator.LESS_THAN_OR_EQUAL.value:
                return float(field_value) <= float(expected)
            if operator == ConditionOperator.CONTAINS.value:
                return _contains(field_value, expected)
            if operator == ConditionOperator.NOT_CONTAINS.value:
                return not _contains(field_value, expected)
            if operator == ConditionOperator.STARTS_WITH.value:
                return str(field_value).startswith(str(expected))
            if operator == ConditionOperator.ENDS_WITH.value:
                return str(field_value).endswith(str(expected))
            if operator == ConditionOperator.IN.value:
                return isinstance(expected, (list, tuple, set)) and field_value in expected
            if operator == ConditionOperator.NOT_IN.value:
                return isinstance(expected, (list, tuple, set)) and field_value not in expected
            if operator == ConditionOperator.CONTAINS_ANY.value:
                if not isinstance(field_value, (list, tuple, set)) or not isinstance(expected, (list, tuple, set)):
                    return False
                return any(item in field_value for item in expected)
            if operator == ConditionOperator.CONTAINS_ALL.value:
                if not isinstance(field_value, (list, tuple, set)) or not isinstance(expected, (list, tuple, set)):
                    return False
                return all(item in field_value for item in expected)
            if operator == ConditionOperator.IS_EMPTY.value:
                return _is_empty(field_value)
            if operator == ConditionOperator.IS_NOT_EMPTY.value:
                return not _is_empty(field_value)
        except (TypeError, ValueError) as e:
            logger.debug(f"Condition {condition.field} {operator} failed to compare: {str(e)}")
            return False

        logger.warning(f"Unknown operator in condition: {operator}")
        return False

    # =========================
    # ACTIONS
    # =========================

    async def execute_actions(self, actions: List[Union[AutomationAction, Dict[str, Any]]],
                              context: ExecutionContext) -> List[ActionResult]:
        """Run actions in order. A failing action is reported and the rest still run."""
        results: List[ActionResult] = []

        for raw_action in actions or []:
            action_type = raw_action.get("type", "unknown") if isinstance(raw_action, dict) else getattr(raw_action, "type", "unknown")
            try:
                action = raw_action if isinstance(raw_action, AutomationAction) else AutomationAction.model_validate(raw_action)

                if action.conditions:
                    if not self.evaluate_conditions(action.conditions, context.flatten()):
                        logger.info(f"Skipping action {action.type}: conditions not met")
                        results.append(ActionResult(
                            action=action.type, success=True, skipped=True, reason="conditions not met"
                        ))
                        continue

                handler = self._handlers.get(action.type)
                if handler is None:
                    raise ValidationError(f"Unknown action type: {action.type}")

                config = substitute_variables(action.config, context.flatten())
                result = await handler(config, context)
                results.append(ActionResult(action=action.type, success=True, result=result))

            except Exception as e:
                logger.error(f"Action {action_type} failed: {str(e)}")
                results.append(ActionResult(action=str(action_type), success=False, error=str(e)))

        return results

    async def _create_task(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        """Create a task in the target step, which must belong to the same organization."""
        target_step_id = config.get("step_id") or context.step_id
        if not target_step_id:
            raise ValidationError("step_id required to create task - provide it in action config or context")

        step = await self.store.get_step(target_step_id)
        if not step:
            raise NotFoundError("step", target_step_id)
        stage = await self.store.get_stage(step.stage_id)
        if not stage:
            raise NotFoundError("stage", step.stage_id)
        workflow = await self.store.get_workflow(stage.workflow_id)
        if not workflow:
            raise NotFoundError("workflow", stage.workflow_id)

        if workflow.organization_id != context.organization_id:
            raise ValidationError("Cannot create task in a different organization")

        task_type = config.get("type") or TaskType.MANUAL.value
        if task_type == TaskType.AUTOMATED.value and not config.get("ai_agent_id"):
            raise ValidationError("Automated tasks require an ai_agent_id")

        task = Task(
            step_id=target_step_id,
            name=config.get("name") or "Auto-created Task",
            type=task_type,
            assigned_to=config.get("assigned_to"),
            order=config.get("order") or 0,
            ai_agent_id=config.get("ai_agent_id"),
            automation_input=config.get("automation_input"),
            review_required=bool(config.get("review_required", False)),
        )
        created = await self.store.create_task(task)
        logger.info(f"Automation created task {created.id} in step {target_step_id}")
        return created.model_dump(mode="json")

    async def _update_field(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        entity = config.get("entity")
        field = config.get("field")
        if entity not in ENTITY_CONTEXT_IDS:
            raise ValidationError(f"Unknown entity: {entity}")
        if not field or field in PROTECTED_FIELDS:
            raise ValidationError(f"Field {field!r} cannot be updated by automation")

        context_key = ENTITY_CONTEXT_IDS[entity]
        entity_id = getattr(context, context_key)
        if not entity_id:
            raise ValidationError(f"{context_key} required")

        kind = "workflow" if entity == "pipeline" else entity
        if field not in ENTITY_TYPES[kind].model_fields:
            raise ValidationError(f"{kind.capitalize()} has no field {field!r}")
        updated = await self.store.update(kind, entity_id, {field: config.get("value")})
        if updated is None:
            raise NotFoundError(kind, entity_id)
        return updated.model_dump(mode="json")

    async def _send_notification(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        return await self.event_publisher.create_notification(
            user_id=config.get("user_id") or context.actor_id,
            title=config.get("title") or "Workflow Notification",
            message=config.get("message") or "",
            notification_type=config.get("notification_type") or "info",
            metadata={
                "workflow_id": context.workflow_id,
                "stage_id": context.stage_id,
                "step_id": context.step_id,
                "task_id": context.task_id,
            }
        )

    async def _send_message(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        recipient = config.get("to")
        if not recipient:
            raise ValidationError("No message recipient specified")
        return await self.event_publisher.send_message(
            recipient=recipient,
            body=config.get("body") or "",
            channel=config.get("channel") or "in_app",
            subject=config.get("subject"),
            metadata={"organization_id": context.organization_id, "task_id": context.task_id}
        )

    async def _set_context(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        """Write values into the shared payload for later actions in the same list."""
        values = dict(config.get("values") or {})
        if config.get("field"):
            values[config["field"]] = config.get("value")
        if not values:
            raise ValidationError("set_context requires 'field' or 'values'")

        for path, value in values.items():
            set_nested_value(context.data, path, value)
        return {"set": sorted(values)}

    async def _call_api(self, config: Dict[str, Any], context: ExecutionContext) -> Any:
        url = config.get("url")
        if not url:
            raise ValidationError("call_api requires a url")

        response = await self.http_client.request(
            config.get("method", "POST").upper(),
            url,
            headers={"Content-Type": "application/json", **(config.get("headers") or {})},
            json=config.get("body"),
            timeout=config.get("timeout", 30.0)
        )
        response.raise_for_status()

        try:
            payload = response.json()
        except ValueError:
            payload = response.text

        if config.get("output_key"):
            set_nested_value(context.data, config["output_key"], payload)
        return payload

    async def _run_ai_agent(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        if self.agent_gateway is None:
            raise ValidationError("No agent gateway configured for run_ai_agent")

        agent_id = config.get("agent_id") or config.get("agent_name")
        if not agent_id:
            raise ValidationError("run_ai_agent requires agent_id")

        agent = await self.agent_gateway.prepare(agent_id, context.organization_id, config.get("llm_config_id"))
        output = await self.agent_gateway.invoke(
            agent, config.get("input") or {}, config.get("timeout"), task_id=context.task_id
        )

        set_nested_value(context.data, config.get("output_key") or "ai_result", output)
        return {"agent_id": agent_id, "result": output}

    async def close(self):
        await self.http_client.aclose()

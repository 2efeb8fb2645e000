# test_automation_engine.py - Condition evaluation and action execution

import httpx
import pytest

from services.workflow_service.automation_engine import (
    AutomationEngine, resolve_path, substitute_variables, _MISSING
)
from services.workflow_service.event_publisher import InMemoryEventPublisher
from services.workflow_service.models import AutomationAction, ExecutionContext, TaskType

OTHER_ORG_ID = "org-2"  # installed agents, no LLM configuration

DATA = {
    "status": "active",
    "amount": 1500,
    "amount_text": "1500",
    "client": {"name": "Acme Ltd", "tags": ["vip", "quarterly"], "notes": ""},
    "entries": [{"total": 10}, {"total": 20}],
    "closed_at": None,
}


@pytest.fixture
def automation(engine) -> AutomationEngine:
    return engine.automation_engine


def leaf(field, operator, value=None):
    return {"field": field, "operator": operator, "value": value}


@pytest.mark.parametrize("condition, expected", [
    (leaf("status", "equals", "active"), True),
    (leaf("amount_text", "equals", 1500), True),
    (leaf("status", "not_equals", "active"), False),
    (leaf("amount", "greater_than", 1000), True),
    (leaf("amount", "less_than", "1000"), False),
    (leaf("amount", "greater_than_or_equal", 1500), True),
    (leaf("amount", "less_than_or_equal", 1499), False),
    (leaf("client.name", "contains", "Acme"), True),
    (leaf("client.tags", "contains", "vip"), True),
    (leaf("client.tags", "not_contains", "vip"), False),
    (leaf("client.name", "starts_with", "Acme"), True),
    (leaf("client.name", "ends_with", "Inc"), False),
    (leaf("status", "in", ["active", "paused"]), True),
    (leaf("status", "not_in", ["active", "paused"]), False),
    (leaf("client.tags", "contains_any", ["new", "vip"]), True),
    (leaf("client.tags", "contains_all", ["vip", "new"]), False),
    (leaf("client.notes", "is_empty"), True),
    (leaf("client.name", "is_not_empty"), True),
    (leaf("client.notes", "exists"), True),
    (leaf("client.phone", "exists"), False),
    (leaf("closed_at", "exists"), False),
    (leaf("client.phone", "not_exists"), True),
    (leaf("closed_at", "not_exists"), True),
    (leaf("status", "not_exists"), False),
    (leaf("entries.1.total", "equals", 20), True),
])
def test_operators(automation, condition, expected):
    assert automation.evaluate_conditions([condition], DATA) is expected


def test_missing_field_is_false_for_every_operator(automation):
    assert automation.evaluate_conditions([leaf("client.phone", "is_empty")], DATA) is False
    assert automation.evaluate_conditions([leaf("client.phone", "not_equals", "x")], DATA) is False


def test_bad_comparisons_and_unknown_operators_are_false(automation):
    assert automation.evaluate_conditions([leaf("status", "greater_than", 3)], DATA) is False
    assert automation.evaluate_conditions([leaf("status", "matches_regex", ".*")], DATA) is False
    assert automation.evaluate_conditions([{"field": "status"}], DATA) is False
    assert automation.evaluate_conditions(["not a condition"], DATA) is False


def test_empty_conditions_pass(automation):
    assert automation.evaluate_conditions(None, DATA) is True
    assert automation.evaluate_conditions([], DATA) is True
    assert automation.evaluate_conditions({"logic": "or", "conditions": []}, DATA) is True


def test_groups_nest(automation):
    tree = {
        "logic": "and",
        "conditions": [
            leaf("status", "equals", "active"),
            {"logic": "or", "conditions": [
                leaf("amount", "greater_than", 10000),
                leaf("client.tags", "contains", "vip"),
            ]},
        ],
    }
    assert automation.evaluate_conditions(tree, DATA) is True
    tree["conditions"][1]["conditions"][1]["value"] = "new"
    assert automation.evaluate_conditions(tree, DATA) is False


def test_leaf_or_folds_into_running_result(automation):
    conditions = [
        leaf("status", "equals", "closed"),
        {**leaf("amount", "greater_than", 100), "logic": "OR"},
    ]
    assert automation.evaluate_conditions(conditions, DATA) is True
    assert automation.evaluate_conditions(conditions[:1], DATA) is False


def test_evaluation_does_not_mutate_context(automation):
    data = {"client": {"tags": ["vip"]}}
    automation.evaluate_conditions([leaf("client.tags", "contains", "vip")], data)
    assert data == {"client": {"tags": ["vip"]}}


def test_path_and_template_helpers():
    assert resolve_path(DATA, "client.tags.0") == "vip"
    assert resolve_path(DATA, "client.email") is _MISSING
    assert substitute_variables("${amount}", DATA) == 1500
    assert substitute_variables({"msg": "Hi ${client.name}, ${missing}"}, DATA) == {
        "msg": "Hi Acme Ltd, MISSING(missing)"
    }


def context_for(workflow, stage, step, task=None, organization_id=None, **data):
    return ExecutionContext(
        workflow_id=workflow.id,
        organization_id=organization_id or workflow.organization_id,
        actor_id="user-1",
        stage_id=stage.id,
        step_id=step.id,
        task_id=task.id if task else None,
        data=data,
    )


@pytest.mark.asyncio
async def test_actions_run_in_order_and_fail_independently(automation, builder):
    workflow, stage, step, (task,) = await builder.chain()
    context = context_for(workflow, stage, step, task, amount=50)

    results = await automation.execute_actions([
        {"type": "set_context", "config": {"field": "client.name", "value": "Acme"}},
        {"type": "send_carrier_pigeon", "config": {}},
        {"type": "set_context", "config": {"values": {"greeting": "Hello ${client.name}"}},
         "conditions": [leaf("amount", "less_than", 100)]},
        {"type": "set_context", "config": {"field": "big", "value": True},
         "conditions": [leaf("amount", "greater_than", 100)]},
    ], context)

    assert [r.success for r in results] == [True, False, True, True]
    assert "Unknown action type" in results[1].error
    assert results[3].skipped and results[3].reason == "conditions not met"
    assert context.data["greeting"] == "Hello Acme"
    assert "big" not in context.data


@pytest.mark.asyncio
async def test_create_task_in_same_organization(automation, builder, store):
    workflow, stage, step, _ = await builder.chain(tasks=0)
    context = context_for(workflow, stage, step, client="Acme")

    results = await automation.execute_actions([
        AutomationAction(type="create_task", config={"name": "Follow up with ${client}", "assigned_to": "user-2"})
    ], context)

    assert results[0].success, results[0].error
    tasks = await store.get_tasks_by_step(step.id)
    assert [(t.name, t.assigned_to, t.type) for t in tasks] == [("Follow up with Acme", "user-2", TaskType.MANUAL)]


@pytest.mark.asyncio
async def test_create_task_rejects_other_organization(automation, builder, store):
    workflow, stage, step, _ = await builder.chain(tasks=0)
    context = context_for(workflow, stage, step, organization_id=OTHER_ORG_ID)

    results = await automation.execute_actions([
        {"type": "create_task", "config": {"name": "Sneaky"}},
        {"type": "create_task", "config": {"name": "Robot", "type": "automated"}},
    ], context)

    assert not results[0].success and "different organization" in results[0].error
    assert not results[1].success
    assert await store.get_tasks_by_step(step.id) == []


@pytest.mark.asyncio
async def test_update_field_guards_identity_fields(automation, builder, store):
    workflow, stage, step, (task,) = await builder.chain()
    context = context_for(workflow, stage, step, task)

    results = await automation.execute_actions([
        {"type": "update_field", "config": {"entity": "task", "field": "assigned_to", "value": "user-9"}},
        {"type": "update_field", "config": {"entity": "task", "field": "step_id", "value": "elsewhere"}},
        {"type": "update_field", "config": {"entity": "client", "field": "name", "value": "x"}},
    ], context)

    assert [r.success for r in results] == [True, False, False]
    updated = await store.get_task(task.id)
    assert updated.assigned_to == "user-9"
    assert updated.step_id == step.id


@pytest.mark.asyncio
async def test_update_field_rejects_unknown_and_status_fields(automation, builder, store):
    workflow, stage, step, (task,) = await builder.chain()
    context = context_for(workflow, stage, step, task)
    writes = store.writes

    results = await automation.execute_actions([
        {"type": "update_field", "config": {"entity": "task", "field": "priorty", "value": "high"}},
        {"type": "update_field", "config": {"entity": "task", "field": "status", "value": "completed"}},
        {"type": "update_field", "config": {"entity": "step", "field": "status", "value": "completed"}},
        {"type": "update_field", "config": {"entity": "task", "field": "review_status", "value": "approved"}},
    ], context)

    assert [r.success for r in results] == [False, False, False, False]
    assert results[0].error == "Task has no field 'priorty'"
    assert store.writes == writes
    assert (await store.get_task(task.id)).status.value == "pending"
    assert (await store.get_step(step.id)).status.value == "pending"


@pytest.mark.asyncio
async def test_notification_failure_only_fails_that_action(builder, store, gateway):
    class Unreachable(InMemoryEventPublisher):
        async def _send_to_communication(self, event_data):
            raise httpx.ConnectError("communication service down")

    automation = AutomationEngine(store, Unreachable(), gateway)
    workflow, stage, step, (task,) = await builder.chain()
    context = context_for(workflow, stage, step, task)

    results = await automation.execute_actions([
        {"type": "send_notification", "config": {"title": "Heads up"}},
        {"type": "send_message", "config": {"body": "no recipient"}},
        {"type": "set_context", "config": {"field": "after", "value": 1}},
    ], context)

    assert [r.success for r in results] == [False, False, True]
    assert "communication service down" in results[0].error
    assert context.data["after"] == 1


@pytest.mark.asyncio
async def test_call_api_stores_response(builder, store, publisher, gateway):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = request.content
        return httpx.Response(200, json={"invoice_id": "inv-7"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    automation = AutomationEngine(store, publisher, gateway, http_client=client)
    workflow, stage, step, (task,) = await builder.chain()
    context = context_for(workflow, stage, step, task, amount=42)

    results = await automation.execute_actions([
        {"type": "call_api", "config": {
            "url": "https://billing.example.com/invoices",
            "body": {"amount": "${amount}"},
            "output_key": "invoice",
        }},
    ], context)

    assert results[0].success, results[0].error
    assert seen["method"] == "POST"
    assert b'"amount": 42' in seen["body"] or b'"amount":42' in seen["body"]
    assert context.data["invoice"] == {"invoice_id": "inv-7"}
    await automation.close()


@pytest.mark.asyncio
async def test_run_ai_agent_action(automation, builder, agent_script):
    workflow, stage, step, (task,) = await builder.chain()
    context = context_for(workflow, stage, step, task, rows=3)

    results = await automation.execute_actions([
        {"type": "run_ai_agent", "config": {"agent_id": "Parity", "input": {"rows": "${rows}"}, "output_key": "check"}},
        {"type": "run_ai_agent", "config": {"agent_id": "echo", "input": {"text": "hi"}}},
    ], context)

    assert results[0].success, results[0].error
    assert agent_script["calls"][0].input_data == {"rows": 3}
    assert context.data["check"] == agent_script["output"]
    assert not results[1].success and "not installed" in results[1].error

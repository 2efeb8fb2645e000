# test_ai_executor.py - AI agent execution and the review gate

import httpx
import pytest

from services.workflow_service.errors import (
    ConfigurationError, InvalidStateError, NotFoundError, NotInstalledError, ValidationError
)
from services.workflow_service.event_publisher import InMemoryEventPublisher
from services.workflow_service.models import (
    NodeStatus, ReviewStatus, TaskStatus, TaskType, WorkflowStatus
)
from services.workflow_service.workflow_engine import WorkflowEngine

AUTOMATED = {"type": TaskType.AUTOMATED, "ai_agent_id": "parity", "automation_input": {"ledger": [100, -100]}}


@pytest.mark.asyncio
async def test_review_required_parks_task_until_approved(engine, builder, store, publisher, agent_script):
    workflow, stage, step, (task,) = await builder.chain(review_required=True, **AUTOMATED)

    run = await engine.execute_task_automation(task.id, "user-1")

    assert run.success and run.requires_review
    parked = await store.get_task(task.id)
    assert parked.review_status == ReviewStatus.PENDING_REVIEW
    assert parked.status == TaskStatus.IN_PROGRESS
    assert parked.automation_output == agent_script["output"]
    assert (await store.get_step(step.id)).status == NodeStatus.PENDING
    assert "task.ai_pending_review" in publisher.event_types()

    approved = await engine.approve_review(task.id, "reviewer-1", "Looks right")

    assert approved.status == TaskStatus.COMPLETED
    assert approved.review_status == ReviewStatus.APPROVED
    assert (approved.reviewed_by, approved.review_notes) == ("reviewer-1", "Looks right")
    assert approved.reviewed_at is not None
    assert (await store.get_workflow(workflow.id)).status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_task_actions_cannot_bypass_review(engine, builder, store, agent_script):
    workflow, stage, step, (task,) = await builder.chain(
        review_required=True,
        automation_actions=[{"type": "set_context", "config": {"field": "x", "value": 1}}],
        **AUTOMATED
    )

    with pytest.raises(InvalidStateError):
        await engine.run_task_actions(task.id, "user-1")

    await engine.execute_task_automation(task.id, "user-1")
    writes = store.writes
    with pytest.raises(InvalidStateError):
        await engine.run_task_actions(task.id, "user-1")

    parked = await store.get_task(task.id)
    assert store.writes == writes
    assert parked.status == TaskStatus.IN_PROGRESS
    assert parked.review_status == ReviewStatus.PENDING_REVIEW
    assert parked.automation_output == agent_script["output"]
    assert (await store.get_step(step.id)).status == NodeStatus.PENDING


@pytest.mark.asyncio
async def test_task_actions_record_who_completed(engine, builder, store):
    workflow, stage, step, (task,) = await builder.chain(
        automation_actions=[{"type": "set_context", "config": {"field": "x", "value": 1}}]
    )

    outcome = await engine.run_task_actions(task.id, "user-4")

    assert outcome.all_successful
    done = await store.get_task(task.id)
    assert done.status == TaskStatus.COMPLETED
    assert done.completed_by == "user-4"
    assert done.completed_at is not None


@pytest.mark.asyncio
async def test_output_without_review_completes_and_cascades(engine, builder, store, agent_script):
    workflow, stage, step, (task,) = await builder.chain(**AUTOMATED)

    run = await engine.execute_task_automation(task.id, "user-1")

    assert run.success and not run.requires_review
    done = await store.get_task(task.id)
    assert done.status == TaskStatus.COMPLETED
    assert done.completed_by == "user-1"
    assert done.review_status is None
    assert done.automation_output == agent_script["output"]
    assert agent_script["calls"][0].input_data == AUTOMATED["automation_input"]
    assert (await store.get_workflow(workflow.id)).status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_missing_agent_is_rejected_without_writes(engine, builder, store):
    workflow, stage, step, (task,) = await builder.chain(type=TaskType.AUTOMATED, automation_input={"a": 1})
    writes = store.writes

    with pytest.raises(ValidationError):
        await engine.execute_task_automation(task.id, "user-1")

    assert store.writes == writes
    assert (await store.get_task(task.id)).status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_missing_input_is_rejected(engine, builder, store):
    workflow, stage, step, (task,) = await builder.chain(type=TaskType.AUTOMATED, ai_agent_id="parity")

    with pytest.raises(ValidationError):
        await engine.execute_task_automation(task.id, "user-1")


@pytest.mark.asyncio
async def test_timeout_resets_task_with_error_output(engine, builder, store, agent_script):
    agent_script["delay"] = 1.0
    workflow, stage, step, (task,) = await builder.chain(**AUTOMATED)

    run = await engine.execute_task_automation(task.id, "user-1", timeout=0.05)

    assert run.success is False
    assert "timed out" in run.error
    failed = await store.get_task(task.id)
    assert failed.status == TaskStatus.PENDING
    assert failed.automation_output == {"error": run.error}
    assert (await store.get_step(step.id)).status == NodeStatus.PENDING


@pytest.mark.asyncio
async def test_provider_error_is_recorded(engine, builder, store, publisher, agent_script):
    agent_script["error"] = "rate limit exceeded"
    workflow, stage, step, (task,) = await builder.chain(review_required=True, **AUTOMATED)

    run = await engine.execute_task_automation(task.id, "user-1")

    assert (run.success, run.error) == (False, "rate limit exceeded")
    failed = await store.get_task(task.id)
    assert failed.status == TaskStatus.PENDING
    assert failed.review_status is None
    assert publisher.events[-1]["event_type"] == "task.ai_failed"


@pytest.mark.asyncio
async def test_unknown_or_uninstalled_agent(engine, builder, store):
    workflow, stage, step, (unknown, uninstalled) = await builder.chain(tasks=2, **AUTOMATED)
    await store.update_task(unknown.id, {"ai_agent_id": "ledgerbot"})
    await store.update_task(uninstalled.id, {"ai_agent_id": "echo"})
    writes = store.writes

    with pytest.raises(NotInstalledError):
        await engine.execute_task_automation(unknown.id, "user-1")
    with pytest.raises(NotInstalledError):
        await engine.execute_task_automation(uninstalled.id, "user-1")
    assert store.writes == writes


@pytest.mark.asyncio
async def test_agent_names_are_normalized(engine, builder, store):
    workflow, stage, step, (task,) = await builder.chain(**{**AUTOMATED, "ai_agent_id": "Kanban View"})

    run = await engine.execute_task_automation(task.id, "user-1")

    assert run.success


@pytest.mark.asyncio
async def test_missing_llm_configuration(engine, builder, store):
    workflow, stage, step, (task,) = await builder.chain(organization_id="org-2", **AUTOMATED)
    writes = store.writes

    with pytest.raises(ConfigurationError):
        await engine.execute_task_automation(task.id, "user-1")
    assert store.writes == writes
    assert (await store.get_task(task.id)).status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_task_specific_llm_configuration(engine, builder, agent_script):
    workflow, stage, step, (default_task, large_task) = await builder.chain(tasks=2, **AUTOMATED)
    await engine.store.update_task(large_task.id, {"llm_config_id": "cfg-large"})

    await engine.execute_task_automation(default_task.id, "user-1")
    await engine.execute_task_automation(large_task.id, "user-1")

    assert agent_script["models"] == ["gpt-4o-mini", "gpt-4o"]


@pytest.mark.asyncio
async def test_unknown_task(engine):
    with pytest.raises(NotFoundError):
        await engine.execute_task_automation("missing", "user-1")


@pytest.mark.asyncio
async def test_cannot_rerun_while_awaiting_review(engine, builder):
    workflow, stage, step, (task,) = await builder.chain(review_required=True, **AUTOMATED)
    await engine.execute_task_automation(task.id, "user-1")

    with pytest.raises(InvalidStateError):
        await engine.execute_task_automation(task.id, "user-1")


@pytest.mark.asyncio
async def test_rejection_requires_notes(engine, builder, store):
    workflow, stage, step, (task,) = await builder.chain(review_required=True, **AUTOMATED)
    await engine.execute_task_automation(task.id, "user-1")
    writes = store.writes

    with pytest.raises(ValidationError):
        await engine.reject_review(task.id, "reviewer-1", "   ")
    with pytest.raises(ValidationError):
        await engine.reject_review(task.id, "reviewer-1", None)

    assert store.writes == writes
    assert (await store.get_task(task.id)).review_status == ReviewStatus.PENDING_REVIEW


@pytest.mark.asyncio
async def test_rejection_resets_task_and_allows_rerun(engine, builder, store, publisher):
    workflow, stage, step, (task,) = await builder.chain(review_required=True, **AUTOMATED)
    await engine.execute_task_automation(task.id, "user-1")

    rejected = await engine.reject_review(task.id, "reviewer-1", "  Totals do not tie out  ")

    assert rejected.review_status == ReviewStatus.REJECTED
    assert rejected.status == TaskStatus.PENDING
    assert rejected.automation_output is None
    assert (rejected.reviewed_by, rejected.review_notes) == ("reviewer-1", "Totals do not tie out")
    assert (await store.get_step(step.id)).status == NodeStatus.PENDING
    assert "task.review_rejected" in publisher.event_types()

    with pytest.raises(InvalidStateError):
        await engine.approve_review(task.id, "reviewer-1")

    rerun = await engine.execute_task_automation(task.id, "user-1")
    assert rerun.requires_review
    assert (await store.get_task(task.id)).review_status == ReviewStatus.PENDING_REVIEW


@pytest.mark.asyncio
async def test_approve_requires_pending_review(engine, builder):
    workflow, stage, step, (task,) = await builder.chain(review_required=True, **AUTOMATED)

    with pytest.raises(InvalidStateError):
        await engine.approve_review(task.id, "reviewer-1")


@pytest.mark.asyncio
async def test_notification_outage_does_not_affect_state(store, gateway, builder):
    class Unreachable(InMemoryEventPublisher):
        async def _send_to_communication(self, event_data):
            raise httpx.ConnectError("communication service down")

    engine = WorkflowEngine(store, Unreachable(), gateway)
    workflow, stage, step, (task,) = await builder.chain(**AUTOMATED)

    run = await engine.execute_task_automation(task.id, "user-1")

    assert run.success
    assert (await store.get_workflow(workflow.id)).status == WorkflowStatus.COMPLETED

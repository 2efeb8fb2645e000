# services/workflow_service/event_publisher.py
# Event publishing for workflow service

import httpx
import logging
from typing import Dict, Any, List, Optional
from datetime import datetime

from .config import settings
from .models import Task, new_id

logger = logging.getLogger(__name__)

class WorkflowEventPublisher:
    """Publishes workflow events to the communication service.

    State-change events are fire-and-forget: a delivery failure is logged and
    never propagates to the operation that triggered it. Notifications and
    messages sent by automation actions can opt into ``raise_errors`` so the
    action result reflects the delivery outcome.
    """

    def __init__(self, communication_url: Optional[str] = None, timeout: Optional[float] = None):
        self.communication_url = communication_url or settings.communication_service_url
        self.http_client = httpx.AsyncClient(timeout=timeout or settings.notification_timeout)

    async def publish(self, event_type: str, source_id: str, payload: Dict[str, Any],
                      priority: str = "medium", raise_errors: bool = False) -> Dict[str, Any]:
        event_data = {
            "event_type": event_type,
            "source_service": settings.service_name,
            "source_id": source_id,
            "priority": priority,
            "payload": payload,
            "metadata": {
                "timestamp": datetime.utcnow().isoformat()
            }
        }

        try:
            await self._send_to_communication(event_data)
        except Exception as e:
            if raise_errors:
                raise
            logger.warning(f"Failed to publish {event_type} for {source_id}: {str(e)}")
        return event_data

    # Task lifecycle

    async def publish_task_completed(self, task: Task, actor_id: Optional[str]):
        await self.publish("task.completed", task.id, {
            "task_id": task.id,
            "step_id": task.step_id,
            "completed_by": actor_id
        })

    async def publish_task_assigned(self, task: Task, user_id: str):
        await self.publish("task.assigned", task.id, {
            "task_id": task.id,
            "assigned_to": user_id
        })

    async def publish_ai_pending_review(self, task: Task, actor_id: str):
        await self.publish("task.ai_pending_review", task.id, {
            "task_id": task.id,
            "ai_agent_id": task.ai_agent_id,
            "executed_by": actor_id
        })

    async def publish_ai_failed(self, task: Task, actor_id: str, error_message: str):
        await self.publish("task.ai_failed", task.id, {
            "task_id": task.id,
            "ai_agent_id": task.ai_agent_id,
            "executed_by": actor_id,
            "error_message": error_message
        }, priority="high")

    async def publish_review_decision(self, task: Task, reviewer_id: str, approved: bool):
        event_type = "task.review_approved" if approved else "task.review_rejected"
        await self.publish(event_type, task.id, {
            "task_id": task.id,
            "reviewed_by": reviewer_id,
            "review_notes": task.review_notes
        })

    async def publish_node_completed(self, kind: str, node_id: str, parent_id: Optional[str] = None):
        """Publish step.completed / stage.completed / workflow.completed."""
        await self.publish(f"{kind}.completed", node_id, {
            f"{kind}_id": node_id,
            "parent_id": parent_id,
            "auto_progressed": True
        }, priority="low" if kind != "workflow" else "medium")

    # Automation action side effects

    async def create_notification(self, user_id: str, title: str, message: str,
                                  notification_type: str = "info",
                                  metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        notification = {
            "id": new_id(),
            "user_id": user_id,
            "title": title,
            "message": message,
            "type": notification_type,
            "metadata": metadata or {}
        }
        await self.publish("notification.created", notification["id"], notification, raise_errors=True)
        return notification

    async def send_message(self, recipient: str, body: str, channel: str = "in_app",
                           subject: Optional[str] = None,
                           metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        message = {
            "id": new_id(),
            "recipient": recipient,
            "channel": channel,
            "subject": subject,
            "body": body,
            "metadata": metadata or {}
        }
        await self.publish("message.sent", message["id"], message, raise_errors=True)
        return message

    async def _send_to_communication(self, event_data: Dict[str, Any]):
        """Send event to communication service."""
        response = await self.http_client.post(
            f"{self.communication_url}/events/publish",
            json=event_data
        )
        response.raise_for_status()

    async def close(self):
        """Close HTTP client."""
        await self.http_client.aclose()


class InMemoryEventPublisher(WorkflowEventPublisher):
    """Keeps published events in a list instead of sending them. Used when
    notifications are disabled and in tests."""

    def __init__(self):
        super().__init__(communication_url="memory://")
        self.events: List[Dict[str, Any]] = []

    async def _send_to_communication(self, event_data: Dict[str, Any]):
        self.events.append(event_data)

    def event_types(self) -> List[str]:
        return [event["event_type"] for event in self.events]

# errors.py - Error taxonomy for the workflow engine
# This file defines the exceptions raised by engine operations and how they map to HTTP responses.

from typing import Optional


class WorkflowEngineError(Exception):
    """Base class for all engine errors."""

    status_code = 500

    def __init__(self, message: str, entity: Optional[str] = None, entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(WorkflowEngineError):
    """Missing or invalid input, rejected before any state mutation."""

    status_code = 400


class NotFoundError(WorkflowEngineError):
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity.capitalize()} {entity_id} not found", entity, entity_id)


class NotInstalledError(WorkflowEngineError):
    """The AI agent is unknown or not installed for the organization."""

    status_code = 424


class ConfigurationError(WorkflowEngineError):
    """No usable LLM configuration for the organization."""

    status_code = 424


class AdapterError(WorkflowEngineError):
    """An AI agent adapter call failed or timed out. Recoverable."""

    status_code = 502

    def __init__(self, message: str, agent_id: Optional[str] = None, retriable: bool = True):
        super().__init__(message, "agent", agent_id)
        self.retriable = retriable


class InvalidStateError(WorkflowEngineError):
    status_code = 409

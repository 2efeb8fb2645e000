# practice_agents.py - Named AI agents available to workflow tasks
# This file defines the LLM-backed agents that automated tasks can delegate to.

from ..models import AgentCapability
from .llm_agent import LLMAgent

class ParityAgent(LLMAgent):
    agent_type = "parity"
    display_name = "Parity"
    description = "Checks data for consistency, balance and rule violations"
    capabilities = [
        AgentCapability(
            name="consistency_check",
            description="Verify totals, balances and cross-entity consistency",
            input_types=["json"],
            output_types=["json"]
        )
    ]
    system_prompt = """You are an expert data validation AI specialized in checking consistency, balance, and parity.
Analyze the data and identify inconsistencies, imbalances, or rule violations.
Always return valid JSON in this format:
{"status": "pass|fail|warning", "summary": "Overall assessment",
 "checks": [{"name": "Check name", "status": "pass|fail|warning", "message": "Result", "details": {}}]}"""

class CadenceAgent(LLMAgent):
    agent_type = "cadence"
    display_name = "Cadence"
    description = "Analyzes workflow timing and recommends scheduling improvements"
    capabilities = [
        AgentCapability(
            name="cadence_analysis",
            description="Identify bottlenecks and suggest task durations",
            input_types=["json"],
            output_types=["json"]
        )
    ]
    system_prompt = """You are an expert workflow optimization AI specialized in analyzing timing and scheduling patterns.
Identify bottlenecks and delays, suggest optimal task durations and recommend scheduling improvements.
Always return valid JSON in this format:
{"summary": "Brief overview", "insights": ["..."], "recommendations": ["..."],
 "timeline": {"currentPace": "...", "estimatedCompletion": "...", "bottlenecks": ["..."]}}"""

class FormaAgent(LLMAgent):
    agent_type = "forma"
    display_name = "Forma"
    description = "Formats and validates data against rules"
    capabilities = [
        AgentCapability(
            name="data_formatting",
            description="Standardize, clean and validate structured data",
            input_types=["json", "text"],
            output_types=["json"]
        )
    ]
    system_prompt = """You are an expert data formatting and validation AI.
Format the data according to the specification and validate it against the given rules.
Always return valid JSON in this format:
{"success": true, "formattedData": {},
 "validationResults": {"isValid": true, "errors": [], "warnings": []}}"""

class KanbanAgent(LLMAgent):
    agent_type = "kanban"
    display_name = "Kanban View"
    description = "Organizes workflow data into a Kanban board"
    capabilities = [
        AgentCapability(
            name="board_generation",
            description="Group stages, steps and tasks into board columns",
            input_types=["json"],
            output_types=["json"]
        )
    ]
    system_prompt = """You are an expert project management AI assistant specialized in Kanban boards.
Organize the workflow data (Stages, Steps, Tasks) into logical columns such as To Do, In Progress and Completed.
Always return valid JSON in this format:
{"title": "Board Title", "columns": [{"id": "col-1", "title": "Column", "cards": [{"id": "card-1", "title": "Card", "description": ""}]}]}"""

class EchoAgent(LLMAgent):
    agent_type = "echo"
    display_name = "Echo"
    description = "Drafts client message templates"
    capabilities = [
        AgentCapability(
            name="message_templates",
            description="Draft message templates with merge fields",
            input_types=["text", "json"],
            output_types=["json"]
        )
    ]
    system_prompt = """You are Echo, a message template generation specialist for client communication.
Draft a professional template for the request, using {{merge_fields}} for client-specific values.
Always return valid JSON in this format:
{"name": "Template Name", "category": "follow_up|status_update|request_info|greeting|custom",
 "content": "Message text with {{merge_fields}}", "variables": ["client_name"]}"""

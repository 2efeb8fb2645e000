# services/agent_service/agent_types/llm_agent.py
# OpenAI-compatible LLM agent implementation shared by the practice agents

import json
import logging
from typing import Dict, Any, List
from openai import AsyncOpenAI, AsyncAzureOpenAI
from ..models import AgentCapability, AgentRequest, LLMConfiguration
from .base_agent import BaseAgent

logger = logging.getLogger(__name__)

class LLMAgent(BaseAgent):
    """Agent that sends the task input to a chat completion model.

    Subclasses set ``agent_type``, ``display_name``, ``system_prompt`` and
    ``capabilities``; the input is forwarded as JSON and the reply is parsed as
    JSON when possible.
    """

    agent_type = "llm"
    display_name = "LLM Agent"
    description = "General purpose LLM agent"
    system_prompt = "You are a helpful AI assistant for an accounting practice. Respond with JSON."
    capabilities: List[AgentCapability] = []

    def __init__(self, llm_config: LLMConfiguration, config: Dict[str, Any] = None, client=None):
        super().__init__(self.display_name, self.agent_type, list(self.capabilities), llm_config, config)
        self.client = client or self._initialize_client()
        self.model = llm_config.model
        self.max_tokens = llm_config.max_tokens
        self.temperature = llm_config.temperature
        logger.info(f"Initialized {self.display_name} with model: {self.model}")

    def _initialize_client(self):
        """Initialize the OpenAI client for the configured provider."""
        if not self.llm_config.api_key:
            raise ValueError("LLM API key is required")

        if self.llm_config.provider == "azure_openai":
            if not self.llm_config.endpoint:
                raise ValueError("Azure OpenAI endpoint is required")
            return AsyncAzureOpenAI(
                azure_endpoint=self.llm_config.endpoint,
                api_key=self.llm_config.api_key,
                api_version=self.llm_config.api_version
            )

        return AsyncOpenAI(
            api_key=self.llm_config.api_key,
            base_url=self.llm_config.endpoint or None
        )

    def build_user_prompt(self, input_data: Dict[str, Any]) -> str:
        prompt = input_data.get("prompt")
        payload = {k: v for k, v in input_data.items() if k != "prompt"}
        if prompt and payload:
            return f"{prompt}\n\nInput:\n{json.dumps(payload, indent=2, default=str)}"
        if prompt:
            return str(prompt)
        return json.dumps(input_data, indent=2, default=str)

    async def process_task(self, request: AgentRequest) -> Dict[str, Any]:
        input_data = request.input_data or {}
        if not input_data:
            raise ValueError("No input provided for agent")

        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.build_user_prompt(input_data)}
        ]

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=self.max_tokens,
            temperature=self.temperature
        )

        content = response.choices[0].message.content or ""

        # Try to parse as JSON, fallback to text
        try:
            result = json.loads(content)
        except json.JSONDecodeError:
            result = {"text": content}

        output = {
            "agent": self.agent_type,
            "result": result,
            "model": self.model
        }
        if getattr(response, "usage", None):
            output["usage"] = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens
            }
        return output

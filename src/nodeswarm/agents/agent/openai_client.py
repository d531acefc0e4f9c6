"""OpenAI-compatible LLM client with native tool calling."""

import json
from typing import Any, Dict, List, Optional
import openai
from openai import AsyncOpenAI
import tiktoken
from loguru import logger

from ...settings import Settings
from ..errors import ProviderError, ProviderTimeout
from .base import LLMClient
from .models import LLMResponse, Message, TokenUsage, ToolCall


def to_openai_tools(tool_schemas: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Convert ``{name, description, input_schema}`` into OpenAI function tools."""
    return [
        {
            "type": "function",
            "function": {
                "name": schema["name"],
                "description": schema.get("description", ""),
                "parameters": schema.get("input_schema") or {"type": "object", "properties": {}}
            }
        }
        for schema in tool_schemas
    ]


def to_openai_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    """Convert conversation messages into chat-completions format."""
    converted = []
    for message in messages:
        item: Dict[str, Any] = {"role": message.role, "content": message.content}
        if message.tool_calls:
            item["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)}
                }
                for call in message.tool_calls
            ]
        if message.role == "tool":
            item["tool_call_id"] = message.tool_call_id
        converted.append(item)
    return converted


def _parse_arguments(raw: Optional[str], tool_name: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"[LLM] Could not parse arguments for '{tool_name}': {raw[:200]}")
        return {"input": raw}
    return value if isinstance(value, dict) else {"input": value}


class OpenAIChatClient(LLMClient):
    """``LLMClient`` backed by an OpenAI-compatible chat-completions endpoint.

    Works with OpenAI and local servers exposing the same API (Ollama,
    vLLM, LM Studio). Cost is computed from the per-1k token prices in
    settings.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None
    ):
        self.settings = settings or Settings()
        self.client = client or AsyncOpenAI(
            base_url=self.settings.llm_api_base,
            api_key=self.settings.llm_api_key,
            max_retries=0
        )
        self.model = model or self.settings.llm_model
        self.temperature = self.settings.llm_temperature if temperature is None else temperature
        self._encoding = None

    async def send(self, messages: List[Message], tool_schemas: List[Dict[str, Any]]) -> LLMResponse:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(messages),
            "temperature": self.temperature
        }
        if self.settings.llm_max_tokens:
            request["max_tokens"] = self.settings.llm_max_tokens
        if tool_schemas:
            request["tools"] = to_openai_tools(tool_schemas)

        logger.debug(f"[LLM] Sending {len(messages)} message(s), {len(tool_schemas)} tool(s) to {self.model}")
        try:
            response = await self.client.chat.completions.create(**request)
        except openai.APITimeoutError as e:
            raise ProviderTimeout(f"LLM request timed out: {e}") from e
        except openai.OpenAIError as e:
            raise ProviderError(f"LLM request failed: {e}") from e

        if not response.choices:
            raise ProviderError("LLM response contained no choices")
        message = response.choices[0].message

        tool_calls = tuple(
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=_parse_arguments(call.function.arguments, call.function.name)
            )
            for call in (message.tool_calls or [])
        )
        usage = self._usage(response, messages, message.content)
        return LLMResponse(content=message.content, tool_calls=tool_calls, usage=usage)

    def _usage(self, response: Any, messages: List[Message], content: Optional[str]) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is not None:
            input_tokens = usage.prompt_tokens or 0
            output_tokens = usage.completion_tokens or 0
        else:
            # Fallback: estimate when the server reports no usage
            input_tokens = sum(self.count_tokens(m.content or "") for m in messages)
            output_tokens = self.count_tokens(content or "")

        cost = (
            input_tokens / 1000 * self.settings.llm_input_cost_per_1k
            + output_tokens / 1000 * self.settings.llm_output_cost_per_1k
        )
        return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens, cost=cost)

    def count_tokens(self, text: str) -> int:
        if self._encoding is None:
            try:
                self._encoding = tiktoken.get_encoding("cl100k_base")
            except Exception as e:
                logger.warning(f"[LLM] Could not load tokenizer, estimating: {e}")
                return len(text) // 4
        return len(self._encoding.encode(text))

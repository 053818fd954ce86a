"""LLM providers with tool calling (Anthropic and OpenAI).

Conversations are passed around in a provider-neutral shape:

- ``{"role": "user" | "assistant", "content": str}``
- ``{"role": "assistant", "content": str | None, "tool_calls": [ToolCall]}``
- ``{"role": "tool", "tool_call_id": str, "name": str, "content": str}``

Each provider converts that to its own wire format.
"""

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import anthropic
import openai

from ..logging_config import get_logger
from ..models import ToolCall

logger = get_logger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5"
DEFAULT_OPENAI_MODEL = "gpt-4o"


class LLMProviderKind(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class ToolSpec:
    """What the model is told about a tool."""

    name: str
    description: str
    input_schema: dict


@dataclass
class LLMResponse:
    text: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


class ILLMProvider(Protocol):
    """Abstraction for LLM access."""

    async def chat(
        self,
        messages: list[dict],
        system: str | None = None,
        tools: list[ToolSpec] | None = None,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        """One model turn: text and any requested tool calls."""
        ...


def _to_anthropic_messages(messages: list[dict]) -> list[dict]:
    converted: list[dict] = []

    def append(role: str, blocks: list[dict]) -> None:
        # Consecutive same-role turns are merged into one message.
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})

    for message in messages:
        role = message["role"]
        if role == "tool":
            append(
                "user",
                [
                    {
                        "type": "tool_result",
                        "tool_use_id": message["tool_call_id"],
                        "content": message["content"],
                    }
                ],
            )
            continue

        blocks: list[dict] = []
        if message.get("content"):
            blocks.append({"type": "text", "text": message["content"]})
        for call in message.get("tool_calls") or []:
            blocks.append(
                {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments}
            )
        if blocks:
            append(role, blocks)

    if converted and converted[0]["role"] != "user":
        converted.insert(
            0, {"role": "user", "content": [{"type": "text", "text": "(conversation start)"}]}
        )
    return converted


class AnthropicProvider:
    """Anthropic Claude API provider."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        if client is None:
            api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
            if not api_key:
                raise ValueError("ANTHROPIC_API_KEY environment variable not set")
            client = anthropic.AsyncAnthropic(api_key=api_key)

        self._model = model or DEFAULT_ANTHROPIC_MODEL
        self._client = client

    async def chat(
        self,
        messages: list[dict],
        system: str | None = None,
        tools: list[ToolSpec] | None = None,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": _to_anthropic_messages(messages),
            "max_tokens": max_tokens,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                for t in tools
            ]

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise RuntimeError(f"LLM API error: {e}") from e

        texts: list[str] = []
        calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input)))

        return LLMResponse(text="\n".join(texts) or None, tool_calls=calls)


def _to_openai_messages(messages: list[dict], system: str | None) -> list[dict]:
    converted: list[dict] = []
    if system:
        converted.append({"role": "system", "content": system})

    for message in messages:
        if message["role"] == "tool":
            converted.append(
                {
                    "role": "tool",
                    "tool_call_id": message["tool_call_id"],
                    "content": message["content"],
                }
            )
        elif message.get("tool_calls"):
            converted.append(
                {
                    "role": "assistant",
                    "content": message.get("content"),
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments),
                            },
                        }
                        for call in message["tool_calls"]
                    ],
                }
            )
        else:
            converted.append({"role": message["role"], "content": message["content"]})
    return converted


class OpenAIProvider:
    """OpenAI chat completions provider."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: openai.AsyncOpenAI | None = None,
    ):
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY environment variable not set")
            client = openai.AsyncOpenAI(api_key=api_key)

        self._model = model or DEFAULT_OPENAI_MODEL
        self._client = client

    async def chat(
        self,
        messages: list[dict],
        system: str | None = None,
        tools: list[ToolSpec] | None = None,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": _to_openai_messages(messages, system),
            "max_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.input_schema,
                    },
                }
                for t in tools
            ]

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise RuntimeError(f"LLM API error: {e}") from e

        message = response.choices[0].message
        calls: list[ToolCall] = []
        for call in message.tool_calls or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("Model sent malformed arguments for %s", call.function.name)
                arguments = {}
            calls.append(ToolCall(id=call.id, name=call.function.name, arguments=arguments))

        return LLMResponse(text=message.content or None, tool_calls=calls)


def create_llm_provider(
    kind: LLMProviderKind | str, model: str | None = None
) -> ILLMProvider:
    """Build the provider selected at startup."""
    kind = LLMProviderKind(kind)
    if kind is LLMProviderKind.ANTHROPIC:
        provider: ILLMProvider = AnthropicProvider(model=model)
    else:
        provider = OpenAIProvider(model=model)
    logger.info("Using LLM provider %s", kind.value, extra={"context": {"model": model}})
    return provider

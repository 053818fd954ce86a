"""LLM module."""

from .llm_provider import (
    AnthropicProvider,
    ILLMProvider,
    LLMProviderKind,
    LLMResponse,
    OpenAIProvider,
    ToolSpec,
    create_llm_provider,
)

__all__ = [
    "ILLMProvider",
    "LLMProviderKind",
    "LLMResponse",
    "ToolSpec",
    "AnthropicProvider",
    "OpenAIProvider",
    "create_llm_provider",
]

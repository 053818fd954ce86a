"""Agent invoker and prompts."""

from .agent import AgentInvoker, IAgentInvoker
from .prompts import SYSTEM_PROMPT, build_system_prompt

__all__ = ["AgentInvoker", "IAgentInvoker", "SYSTEM_PROMPT", "build_system_prompt"]

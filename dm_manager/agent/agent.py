"""Agent invoker: runs the model in a tool loop over one transcript."""

import json
from typing import Protocol

from ..llm import ILLMProvider, ToolSpec
from ..logging_config import get_logger
from ..models import AgentResult, MessageType, SenderProfile, TranscriptEntry
from ..tools import ToolCatalog, ToolContext
from ..tracker import ITracker
from .prompts import build_system_prompt

logger = get_logger(__name__)

_EMPTY_CONTENT = "[non-text message]"


class IAgentInvoker(Protocol):
    """Decides what to do about a conversation."""

    async def run(
        self,
        thread_id: str,
        transcript: list[TranscriptEntry],
        sender: SenderProfile,
        latest_message_type: MessageType | None = None,
    ) -> AgentResult:
        """Run the model until it stops calling tools."""
        ...


class AgentInvoker:
    """Calls the provider once per turn and executes requested tools."""

    def __init__(
        self,
        llm_provider: ILLMProvider,
        catalog: ToolCatalog,
        tracker: ITracker | None = None,
        max_turns: int = 8,
        max_tokens: int = 1024,
        coordinator_name: str = "",
    ):
        self._llm = llm_provider
        self._catalog = catalog
        self._tracker = tracker
        self._max_turns = max_turns
        self._max_tokens = max_tokens
        self._coordinator_name = coordinator_name
        self._tools = [
            ToolSpec(name=d.name.value, description=d.description, input_schema=d.input_schema)
            for d in catalog.definitions
        ]

    async def run(
        self,
        thread_id: str,
        transcript: list[TranscriptEntry],
        sender: SenderProfile,
        latest_message_type: MessageType | None = None,
    ) -> AgentResult:
        system = build_system_prompt(
            sender, thread_id, self._coordinator_name, latest_message_type
        )
        messages: list[dict] = [
            {"role": entry.role, "content": entry.content or _EMPTY_CONTENT}
            for entry in transcript
        ]
        context = ToolContext(thread_id=thread_id, sender=sender)
        result = AgentResult()
        log_context = {"thread_id": thread_id}

        for turn in range(self._max_turns):
            response = await self._llm.chat(
                messages=messages,
                system=system,
                tools=self._tools,
                max_tokens=self._max_tokens,
            )
            result.text = response.text

            if not response.tool_calls:
                logger.debug(
                    "Agent finished after %d turns", turn + 1, extra={"context": log_context}
                )
                break

            messages.append(
                {
                    "role": "assistant",
                    "content": response.text,
                    "tool_calls": response.tool_calls,
                }
            )
            for call in response.tool_calls:
                tool, output = await self._catalog.execute(call.name, call.arguments, context)
                if tool is not None:
                    result.tools_invoked.append(tool)
                logger.info(
                    "Tool %s executed",
                    call.name,
                    extra={"context": {**log_context, "success": output.get("success")}},
                )
                if self._tracker:
                    await self._tracker.track(
                        event_type="tool_executed",
                        actor="agent",
                        data={"tool": call.name, "arguments": call.arguments, "result": output},
                        thread_id=thread_id,
                    )
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "name": call.name,
                        "content": json.dumps(output, default=str),
                    }
                )
        else:
            logger.warning(
                "Agent stopped after reaching %d turns",
                self._max_turns,
                extra={"context": log_context},
            )

        return result

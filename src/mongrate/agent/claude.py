"""Claude Agent SDK implementation of the agent handle.

One ``ClaudeSDKClient`` connection is kept open per job so that the planning
turn, the execution turn and any chat messages share one conversation. SDK
messages are translated into the normalized events in ``events``.
"""

import logging
from typing import Any, AsyncIterator, Callable, Dict, Iterator, List, Optional

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient
from claude_agent_sdk.types import (
    AssistantMessage,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)

from .events import AgentEvent, SessionStarted, TextDelta, ToolCall, ToolResult, TurnComplete
from .handle import AgentError, AgentHandle, LaunchConfig

logger = logging.getLogger(__name__)

MAX_TOOL_OUTPUT = 2000


def build_options(config: LaunchConfig) -> ClaudeAgentOptions:
    """Build SDK options with streaming enabled."""
    options: Dict[str, Any] = {
        "allowed_tools": list(config.allowed_tools),
        "permission_mode": config.permission_mode,
        "cwd": str(config.work_dir),
        "include_partial_messages": True,
    }
    if config.persist_session and config.resume_token:
        options["resume"] = config.resume_token
    if config.system_prompt:
        options["system_prompt"] = config.system_prompt
    if config.model:
        options["model"] = config.model
    if config.max_buffer_size:
        options["max_buffer_size"] = config.max_buffer_size
    return ClaudeAgentOptions(**options)


def tool_result_text(content: Any) -> Optional[str]:
    """Flatten a tool result payload to text, truncated for display."""
    if content is None:
        return None
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                parts.append(item.get("text", ""))
            else:
                parts.append(str(item))
        text = "\n".join(parts)
    else:
        text = str(content)
    return text[:MAX_TOOL_OUTPUT] if len(text) > MAX_TOOL_OUTPUT else text


class ClaudeAgentHandle(AgentHandle):
    """Agent handle backed by a persistent ``ClaudeSDKClient``."""

    def __init__(
        self,
        config: LaunchConfig,
        client_factory: Callable[..., Any] = ClaudeSDKClient,
    ):
        self.config = config
        self.session_id: Optional[str] = config.resume_token if config.persist_session else None
        self._client = client_factory(options=build_options(config))
        self._streamed_text = False

    async def init_session(self) -> Optional[str]:
        await self._client.connect()
        logger.debug("Connected agent session in %s (resume=%s)", self.config.work_dir, self.session_id)
        return self.session_id

    async def send_and_stream(self, prompt: str) -> AsyncIterator[AgentEvent]:
        self._streamed_text = False
        await self._client.query(prompt)
        async for message in self._client.receive_response():
            for event in self.translate(message):
                yield event

    async def cleanup(self) -> None:
        await self._client.disconnect()

    def translate(self, message: Any) -> Iterator[AgentEvent]:
        """Translate one SDK message into zero or more agent events.

        Text arrives twice when partial messages are enabled: as stream
        deltas and again inside the completed AssistantMessage. Only the
        deltas are forwarded in that case.
        """
        if isinstance(message, SystemMessage):
            data = message.data or {}
            session_id = data.get("session_id")
            if message.subtype == "init" and session_id:
                yield from self._session_event(session_id)

        elif isinstance(message, StreamEvent):
            event = message.event
            if isinstance(event, dict) and event.get("type") == "content_block_delta":
                delta = event.get("delta", {})
                if delta.get("type") == "text_delta" and delta.get("text"):
                    self._streamed_text = True
                    yield TextDelta(text=delta["text"])

        elif isinstance(message, AssistantMessage):
            for block in message.content:
                if isinstance(block, TextBlock):
                    if not self._streamed_text and block.text:
                        yield TextDelta(text=block.text)
                elif isinstance(block, ToolUseBlock):
                    yield ToolCall(id=block.id, name=block.name, input=block.input or {})
            self._streamed_text = False

        elif isinstance(message, UserMessage):
            if isinstance(message.content, list):
                for block in message.content:
                    if isinstance(block, ToolResultBlock):
                        yield ToolResult(
                            tool_use_id=block.tool_use_id,
                            content=tool_result_text(block.content),
                            is_error=bool(block.is_error),
                        )

        elif isinstance(message, ResultMessage):
            if message.session_id:
                yield from self._session_event(message.session_id)
            if message.is_error:
                raise AgentError(message.result or f"Agent turn failed ({message.subtype})")
            yield TurnComplete(
                result=message.result,
                cost_usd=message.total_cost_usd,
                usage=message.usage,
            )

    def _session_event(self, session_id: str) -> List[AgentEvent]:
        if session_id == self.session_id:
            return []
        self.session_id = session_id
        return [SessionStarted(session_id=session_id)]


async def launch_claude_agent(config: LaunchConfig) -> AgentHandle:
    """Launcher used by the session manager in production."""
    return ClaudeAgentHandle(config)

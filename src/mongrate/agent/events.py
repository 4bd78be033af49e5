"""Normalized events produced by agent handles."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union


@dataclass
class TextDelta:
    """A chunk of assistant text."""

    text: str


@dataclass
class ToolCall:
    """The agent started using a tool."""

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """A tool finished."""

    tool_use_id: str
    content: Optional[str] = None
    is_error: bool = False


@dataclass
class SessionStarted:
    """The agent announced the session id that resumes this conversation."""

    session_id: str


@dataclass
class TurnComplete:
    """The agent finished responding to the current message."""

    result: Optional[str] = None
    cost_usd: Optional[float] = None
    usage: Optional[Dict[str, Any]] = None


AgentEvent = Union[TextDelta, ToolCall, ToolResult, SessionStarted, TurnComplete]

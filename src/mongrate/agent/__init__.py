"""Agent handles and session management.

The orchestrator talks to agents only through the handle contract in
``handle``; ``claude`` provides the Claude Agent SDK implementation and
``sessions`` keeps at most one live handle per job.
"""

from .events import AgentEvent, SessionStarted, TextDelta, ToolCall, ToolResult, TurnComplete
from .handle import AgentError, AgentHandle, LaunchConfig
from .sessions import SessionError, SessionLease, SessionManager

__all__ = [
    "AgentError",
    "AgentEvent",
    "AgentHandle",
    "LaunchConfig",
    "SessionError",
    "SessionLease",
    "SessionManager",
    "SessionStarted",
    "TextDelta",
    "ToolCall",
    "ToolResult",
    "TurnComplete",
]

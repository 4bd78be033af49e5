"""Live event delivery: stream event types, the broadcaster and SSE framing."""

from .broadcaster import EventBroadcaster
from .events import (
    LogEvent,
    StatusEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolResultEvent,
    ToolStartEvent,
    TurnCompleteEvent,
    UserMessageEvent,
)

__all__ = [
    "EventBroadcaster",
    "LogEvent",
    "StatusEvent",
    "StreamEvent",
    "TextDeltaEvent",
    "ToolResultEvent",
    "ToolStartEvent",
    "TurnCompleteEvent",
    "UserMessageEvent",
]

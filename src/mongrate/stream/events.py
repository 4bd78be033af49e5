"""Stream events published to job subscribers.

Each event serializes to one JSON object whose ``type`` field tags the
variant. Every event carries the time it was created.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Union

from ..core.job import utc_now


@dataclass
class _Event:
    type: ClassVar[str] = ""

    def payload(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type}
        data.update(self.payload())
        data["timestamp"] = self.timestamp  # type: ignore[attr-defined]
        return data


@dataclass
class TextDeltaEvent(_Event):
    type: ClassVar[str] = "text-delta"

    content: str
    timestamp: str = field(default_factory=utc_now)

    def payload(self) -> Dict[str, Any]:
        return {"content": self.content}


@dataclass
class ToolStartEvent(_Event):
    type: ClassVar[str] = "tool-start"

    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)

    def payload(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "args": self.args}


@dataclass
class ToolResultEvent(_Event):
    type: ClassVar[str] = "tool-result"

    id: str
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)

    def payload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "success": self.success}
        if self.output is not None:
            data["output"] = self.output
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class StatusEvent(_Event):
    type: ClassVar[str] = "status"

    status: str
    phase: Optional[str] = None
    message: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)

    def payload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status, "phase": self.phase}
        if self.message:
            data["message"] = self.message
        return data


@dataclass
class LogEvent(_Event):
    type: ClassVar[str] = "log"

    level: str
    message: str
    phase: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)

    def payload(self) -> Dict[str, Any]:
        return {"level": self.level, "message": self.message, "phase": self.phase}


@dataclass
class UserMessageEvent(_Event):
    type: ClassVar[str] = "user-message"

    content: str
    timestamp: str = field(default_factory=utc_now)

    def payload(self) -> Dict[str, Any]:
        return {"content": self.content}


@dataclass
class TurnCompleteEvent(_Event):
    type: ClassVar[str] = "turn-complete"

    content: str
    timestamp: str = field(default_factory=utc_now)

    def payload(self) -> Dict[str, Any]:
        return {"content": self.content}


StreamEvent = Union[
    TextDeltaEvent,
    ToolStartEvent,
    ToolResultEvent,
    StatusEvent,
    LogEvent,
    UserMessageEvent,
    TurnCompleteEvent,
]

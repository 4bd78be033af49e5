"""Launch configuration and the agent handle contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from ..core.config import GlobalConfig, default_allowed_tools
from .events import AgentEvent


class AgentError(Exception):
    """The agent reported a failed turn."""

    pass


@dataclass
class LaunchConfig:
    """Configuration for starting or resuming an agent session."""

    work_dir: Path
    resume_token: Optional[str] = None
    persist_session: bool = True

    # Agent settings
    allowed_tools: List[str] = field(default_factory=default_allowed_tools)
    permission_mode: str = "bypassPermissions"
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    max_buffer_size: Optional[int] = None

    @classmethod
    def from_config(
        cls,
        config: GlobalConfig,
        work_dir: Path,
        resume_token: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> "LaunchConfig":
        """Create a launch config from global settings for one job."""
        return cls(
            work_dir=work_dir,
            resume_token=resume_token,
            allowed_tools=list(config.allowed_tools),
            permission_mode=config.permission_mode,
            system_prompt=system_prompt,
            model=config.model,
            max_buffer_size=config.max_buffer_size,
        )


class AgentHandle(ABC):
    """A live connection to one agent conversation."""

    @abstractmethod
    async def init_session(self) -> Optional[str]:
        """Complete the handshake and return the resume token, if known yet."""

    @abstractmethod
    def send_and_stream(self, prompt: str) -> AsyncIterator[AgentEvent]:
        """Send one message and yield the agent's events until it finishes."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Release the underlying connection."""


AgentLauncher = Callable[[LaunchConfig], Awaitable[AgentHandle]]

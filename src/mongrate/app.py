"""Application wiring.

Builds the store, session manager, broadcaster and orchestrator once and
hands them to whichever surface (CLI or HTTP server) is running.
"""

from dataclasses import dataclass
from typing import Optional

from .agent.claude import launch_claude_agent
from .agent.handle import AgentLauncher
from .agent.sessions import SessionManager
from .core.config import GlobalConfig
from .core.store import FileJobStore, JobStore
from .orchestrator.orchestrator import AgentOrchestrator
from .orchestrator.prompts import PromptSet
from .stream.broadcaster import EventBroadcaster


@dataclass
class MongrateApp:
    config: GlobalConfig
    store: JobStore
    sessions: SessionManager
    broadcaster: EventBroadcaster
    orchestrator: AgentOrchestrator

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()


def create_app(
    config: Optional[GlobalConfig] = None,
    store: Optional[JobStore] = None,
    launcher: Optional[AgentLauncher] = None,
    prompts: Optional[PromptSet] = None,
) -> MongrateApp:
    """Assemble the services with production defaults for anything not given."""
    config = config or GlobalConfig.load()
    store = store or FileJobStore()
    sessions = SessionManager(launcher or launch_claude_agent)
    broadcaster = EventBroadcaster(max_history=config.history_size)
    orchestrator = AgentOrchestrator(
        store=store,
        sessions=sessions,
        broadcaster=broadcaster,
        config=config,
        prompts=prompts,
    )
    return MongrateApp(
        config=config,
        store=store,
        sessions=sessions,
        broadcaster=broadcaster,
        orchestrator=orchestrator,
    )

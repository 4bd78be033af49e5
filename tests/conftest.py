"""Pytest configuration and shared fakes for mongrate tests.

src/ is put on the path by ``pythonpath`` in pyproject.toml. The fakes here
stand in for the Claude agent so orchestration can be tested end to end
without a network.
"""

import asyncio
from pathlib import Path
from typing import Any, List, Optional
from unittest.mock import AsyncMock

import pytest

from mongrate.agent.events import TextDelta, TurnComplete
from mongrate.agent.handle import AgentHandle, LaunchConfig
from mongrate.agent.sessions import SessionManager
from mongrate.core.config import GlobalConfig
from mongrate.core.job import JobConfig
from mongrate.core.store import FileJobStore
from mongrate.orchestrator.orchestrator import AgentOrchestrator
from mongrate.stream.broadcaster import EventBroadcaster


class FakeAgentHandle(AgentHandle):
    """Agent handle that replays scripted turns.

    Each turn is a list of agent events; an exception in the list is raised
    at that point in the stream.
    """

    def __init__(self, config: LaunchConfig, turns: List[List[Any]], session_id: str = "session-1"):
        self.config = config
        self.turns = turns
        self.session_id = session_id
        self.prompts: List[str] = []
        self.cleanup_calls = 0
        self.fail_init: Optional[BaseException] = None

    async def init_session(self) -> Optional[str]:
        await asyncio.sleep(0)
        if self.fail_init:
            raise self.fail_init
        return self.config.resume_token or self.session_id

    async def send_and_stream(self, prompt: str):
        self.prompts.append(prompt)
        turn = self.turns.pop(0) if self.turns else [TextDelta(text="ok"), TurnComplete(result="ok")]
        for item in turn:
            if isinstance(item, (int, float)):
                # A number in the script is a pause in seconds
                await asyncio.sleep(item)
                continue
            await asyncio.sleep(0)
            if isinstance(item, BaseException):
                raise item
            yield item

    async def cleanup(self) -> None:
        self.cleanup_calls += 1


class FakeLauncher:
    """Launcher recording every handle it creates."""

    def __init__(self, turns: Optional[List[List[Any]]] = None, delay: float = 0.0):
        self.turns: List[List[Any]] = turns if turns is not None else []
        self.delay = delay
        self.launched: List[FakeAgentHandle] = []
        self.configs: List[LaunchConfig] = []
        self.fail: Optional[BaseException] = None
        self.fail_init: Optional[BaseException] = None

    async def __call__(self, config: LaunchConfig) -> FakeAgentHandle:
        self.configs.append(config)
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.fail:
            raise self.fail
        handle = FakeAgentHandle(config, self.turns)
        handle.fail_init = self.fail_init
        self.launched.append(handle)
        return handle


class RecordingStore(FileJobStore):
    """FileJobStore that remembers every update and log append."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.updates: List[dict] = []
        self.logs: List[Any] = []

    async def update(self, job_id: str, **changes: Any):
        self.updates.append(changes)
        return await super().update(job_id, **changes)

    async def append_log(self, job_id: str, entry):
        self.logs.append(entry)
        return await super().append_log(job_id, entry)


@pytest.fixture(autouse=True)
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the data directory at a temp dir and clear env defaults."""
    path = tmp_path / "data"
    monkeypatch.setenv("MONGRATE_DATA_DIR", str(path))
    monkeypatch.delenv("MONGODB_URI", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    return path


@pytest.fixture
def config() -> GlobalConfig:
    return GlobalConfig(
        text_batch_interval_ms=0,
        log_preview_interval_sec=3600.0,
        turn_timeout_sec=None,
    )


@pytest.fixture
def store(tmp_path: Path) -> RecordingStore:
    return RecordingStore(jobs_dir=tmp_path / "jobs", workspaces_dir=tmp_path / "workspaces")


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def sessions(launcher: FakeLauncher) -> SessionManager:
    return SessionManager(launcher)


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster()


@pytest.fixture
def clone() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture
def orchestrator(store, sessions, broadcaster, config, clone) -> AgentOrchestrator:
    return AgentOrchestrator(
        store=store,
        sessions=sessions,
        broadcaster=broadcaster,
        config=config,
        clone=clone,
    )


@pytest.fixture
def job_config() -> JobConfig:
    return JobConfig(
        repo_url="https://github.com/acme/shop",
        postgres_url="postgres://app:secret@db/shop",
        mongo_url="mongodb://localhost:27017/shop",
    )

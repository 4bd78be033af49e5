"""Per-job agent session management.

Keeps at most one live agent handle per job id. A handle is created lazily on
the first turn that needs it, reused by every later turn and chat message for
that job, and released only on explicit cleanup.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from .handle import AgentHandle, AgentLauncher, LaunchConfig

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """A session could not be provided."""

    pass


@dataclass
class SessionEntry:
    """A live agent handle bound to one job."""

    handle: AgentHandle
    resume_token: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Turns sharing one handle must not interleave on the wire
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@dataclass
class SessionLease:
    """What get_or_create hands back to a caller."""

    entry: SessionEntry
    is_new: bool

    @property
    def handle(self) -> AgentHandle:
        return self.entry.handle

    @property
    def resume_token(self) -> Optional[str]:
        return self.entry.resume_token


class SessionManager:
    """Owns the job id to agent session map."""

    def __init__(self, launcher: AgentLauncher):
        self._launcher = launcher
        self._sessions: Dict[str, SessionEntry] = {}
        self._pending: Dict[str, "asyncio.Future[SessionEntry]"] = {}
        self._released_while_pending: Set[str] = set()

    async def get_or_create(self, job_id: str, config: LaunchConfig) -> SessionLease:
        """Return the job's live session, creating it if needed.

        Concurrent callers for the same job share one in-flight creation, so
        exactly one handle is ever launched per job.

        Raises:
            Exception: Whatever the launcher or handshake raised; nothing is
                stored in that case.
        """
        entry = self._sessions.get(job_id)
        if entry is not None:
            return SessionLease(entry=entry, is_new=False)

        pending = self._pending.get(job_id)
        if pending is not None:
            entry = await asyncio.shield(pending)
            return SessionLease(entry=entry, is_new=False)

        future: "asyncio.Future[SessionEntry]" = asyncio.get_running_loop().create_future()
        self._pending[job_id] = future
        try:
            entry = await self._create(job_id, config)
        except asyncio.CancelledError:
            # Waiters were not cancelled themselves; they get an ordinary failure
            self._fail(future, SessionError(f"Session creation for {job_id} was cancelled"))
            raise
        except Exception as e:
            self._fail(future, e)
            raise
        else:
            future.set_result(entry)
            return SessionLease(entry=entry, is_new=True)
        finally:
            self._pending.pop(job_id, None)
            self._released_while_pending.discard(job_id)

    @staticmethod
    def _fail(future: "asyncio.Future[SessionEntry]", error: BaseException) -> None:
        future.set_exception(error)
        # Mark retrieved so an unshared failure is not reported twice
        future.exception()

    async def _create(self, job_id: str, config: LaunchConfig) -> SessionEntry:
        handle = await self._launcher(config)
        try:
            token = await handle.init_session()
        except BaseException:
            await self._release(job_id, handle)
            raise

        if job_id in self._released_while_pending:
            self._released_while_pending.discard(job_id)
            await self._release(job_id, handle)
            raise SessionError(f"Session for {job_id} was released during creation")

        entry = SessionEntry(handle=handle, resume_token=token or config.resume_token)
        self._sessions[job_id] = entry
        logger.info("Created agent session for %s (resume token: %s)", job_id, entry.resume_token)
        return entry

    def get_resume_token(self, job_id: str) -> Optional[str]:
        entry = self._sessions.get(job_id)
        return entry.resume_token if entry else None

    def update_resume_token(self, job_id: str, token: str) -> None:
        """Record a token the agent announced after the handshake."""
        entry = self._sessions.get(job_id)
        if entry is not None:
            entry.resume_token = token

    def has_active(self, job_id: str) -> bool:
        return job_id in self._sessions

    def active_count(self) -> int:
        return len(self._sessions)

    async def cleanup(self, job_id: str) -> None:
        """Release the job's session. Safe to call any number of times."""
        if job_id in self._pending:
            self._released_while_pending.add(job_id)

        entry = self._sessions.pop(job_id, None)
        if entry is None:
            return
        await self._release(job_id, entry.handle)
        logger.info("Released agent session for %s", job_id)

    async def cleanup_all(self) -> None:
        for job_id in list(self._sessions):
            await self.cleanup(job_id)

    async def _release(self, job_id: str, handle: AgentHandle) -> None:
        try:
            await handle.cleanup()
        except Exception as e:
            logger.warning("Failed to release agent session for %s: %s", job_id, e)

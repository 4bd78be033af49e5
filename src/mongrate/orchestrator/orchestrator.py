"""Agent orchestration for migration jobs.

The orchestrator drives every status-changing operation on a job: cloning
its repository, the planning turn and the execution turn. It also relays
interactive chat turns, which share the job's agent session but never touch
its status.

Status machine::

    pending -> cloning -> planning -> plan_ready -> executing -> completed
    (any non-terminal state) -> failed

completed and failed are terminal. A plan_ready job may be planned again.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from ..agent.events import SessionStarted, TextDelta, ToolCall, ToolResult, TurnComplete
from ..agent.handle import AgentError, LaunchConfig
from ..agent.sessions import SessionLease, SessionManager
from ..core.config import GlobalConfig
from ..core.job import (
    AgentPhase,
    ChatMessage,
    Job,
    JobConfig,
    JobStatus,
    LogEntry,
    LogLevel,
    TurnPhase,
)
from ..core.repo import clone_repository
from ..core.store import JobStore
from ..stream.broadcaster import EventBroadcaster
from ..stream.events import (
    LogEvent,
    StatusEvent,
    TextDeltaEvent,
    ToolResultEvent,
    ToolStartEvent,
    TurnCompleteEvent,
    UserMessageEvent,
)
from .batcher import TextBatcher
from .extract import extract_structured_payload, map_execution_result
from .prompts import PromptSet, load_prompts

logger = logging.getLogger(__name__)

CLONE = "clone"

PLANNABLE = (JobStatus.PENDING, JobStatus.CLONING, JobStatus.PLAN_READY)

ChunkCallback = Callable[[str], None]


@dataclass
class OrchestratorResult:
    """Outcome of an orchestrator operation."""

    success: bool
    output: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: Optional[str] = None) -> "OrchestratorResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str) -> "OrchestratorResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.output is not None:
            result["output"] = self.output
        if self.error is not None:
            result["error"] = self.error
        return result


def _preview(text: str, limit: int) -> str:
    return text[-limit:].replace("\n", " ")


def _label(phase: TurnPhase) -> str:
    return "Planning" if phase is TurnPhase.PLAN else "Execution"


class AgentOrchestrator:
    """Runs clone, plan, execute and chat operations for jobs."""

    def __init__(
        self,
        store: JobStore,
        sessions: SessionManager,
        broadcaster: EventBroadcaster,
        config: Optional[GlobalConfig] = None,
        prompts: Optional[PromptSet] = None,
        clone: Callable[..., Any] = clone_repository,
    ):
        self.store = store
        self.sessions = sessions
        self.broadcaster = broadcaster
        self.config = config or GlobalConfig()
        self.prompts = prompts or load_prompts()
        self._clone_fn = clone
        # Jobs with a clone, plan or execute operation in flight
        self._active: Set[str] = set()
        self._tasks: Set["asyncio.Task[Any]"] = set()

    # -- jobs ---------------------------------------------------------------

    async def create_job(self, name: str, config: JobConfig) -> Job:
        if not config.branch:
            config.branch = self.config.default_branch
        job = await self.store.create(name, config)
        self._publish_status(job.id, job.status, None)
        return job

    async def delete_job(self, job_id: str) -> OrchestratorResult:
        """Release the job's session and history, then remove the record."""
        if job_id in self._active:
            return OrchestratorResult.fail("Cannot delete a job while an agent turn is running")
        await self.sessions.cleanup(job_id)
        self.broadcaster.clear_history(job_id)
        if not await self.store.delete(job_id):
            return OrchestratorResult.fail(f"Job {job_id} not found")
        return OrchestratorResult.ok(f"Deleted {job_id}")

    def is_busy(self, job_id: str) -> bool:
        return job_id in self._active

    def snapshot_event(self, job: Job) -> StatusEvent:
        """Status event describing a job as it is now."""
        return StatusEvent(
            status=job.status.value,
            phase=job.current_phase.value if job.current_phase else None,
            message="Connected",
        )

    # -- events and persistence ---------------------------------------------

    def _publish_status(self, job_id: str, status: JobStatus, phase: Optional[AgentPhase]) -> None:
        self.broadcaster.publish(
            job_id, StatusEvent(status=status.value, phase=phase.value if phase else None)
        )

    async def _log(
        self,
        job_id: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        phase: Optional[AgentPhase] = None,
    ) -> None:
        await self.store.append_log(job_id, LogEntry(message=message, level=level, phase=phase))
        self.broadcaster.publish(
            job_id,
            LogEvent(level=level.value, message=message, phase=phase.value if phase else None),
        )

    async def _set_status(self, job_id: str, status: JobStatus, phase: Optional[AgentPhase]) -> None:
        await self.store.update(job_id, status=status, current_phase=phase)
        self._publish_status(job_id, status, phase)

    async def _fail(self, job_id: str, message: str, phase: Optional[AgentPhase]) -> None:
        await self._log(job_id, message, LogLevel.ERROR, phase)
        await self._set_status(job_id, JobStatus.FAILED, None)

    # -- preconditions ------------------------------------------------------

    def _check(self, job: Job, action: Union[str, TurnPhase]) -> Optional[str]:
        if job.status.is_terminal:
            return f"Job is {job.status.value}"

        if action == CLONE:
            if job.status is not JobStatus.PENDING:
                return f"Cannot clone a job in status {job.status.value}"
            if not job.config.repo_url:
                return "Job has no repository URL"
            if not job.work_dir or str(job.work_dir) in ("", "."):
                return "Job has no work directory"
            return None

        if action is TurnPhase.PLAN:
            if job.status not in PLANNABLE:
                return f"Cannot start planning while job is {job.status.value}"
            return None

        if job.plan is None:
            return "No plan found. Run planning agent first."
        if job.status is not JobStatus.PLAN_READY:
            return f"Job must be plan_ready to execute (current status: {job.status.value})"
        return None

    async def _reserve(self, job_id: str, action: Union[str, TurnPhase]) -> Tuple[Optional[Job], Optional[str]]:
        """Read the job and claim it for one operation, or explain why not."""
        job = await self.store.get(job_id)
        if job is None:
            return None, f"Job {job_id} not found"
        if job_id in self._active:
            return job, "Another operation is already running for this job"
        error = self._check(job, action)
        if error:
            return job, error
        self._active.add(job_id)
        return job, None

    # -- clone --------------------------------------------------------------

    async def clone_repository(self, job_id: str) -> OrchestratorResult:
        """Clone the job's repository into its work directory.

        On success the job stays in ``cloning`` until planning starts.
        """
        job, error = await self._reserve(job_id, CLONE)
        if error:
            return OrchestratorResult.fail(error)
        try:
            return await self._clone(job)
        finally:
            self._active.discard(job_id)

    async def _clone(self, job: Job) -> OrchestratorResult:
        await self._set_status(job.id, JobStatus.CLONING, None)
        await self._log(job.id, f"Cloning repository: {job.config.repo_url}")
        try:
            await self._clone_fn(
                job.config.repo_url,
                job.config.branch or self.config.default_branch,
                job.work_dir,
                credential=job.config.github_token,
                depth=self.config.clone_depth,
                timeout=self.config.clone_timeout_sec,
            )
        except Exception as e:
            message = f"Failed to clone repository: {e}"
            logger.warning("%s: %s", job.id, message)
            await self._fail(job.id, message, None)
            return OrchestratorResult.fail(message)

        await self._log(job.id, "Repository cloned successfully")
        return OrchestratorResult.ok(str(job.work_dir))

    # -- plan / execute -----------------------------------------------------

    async def run_turn(
        self,
        job_id: str,
        phase: Union[str, TurnPhase],
        on_chunk: Optional[ChunkCallback] = None,
    ) -> OrchestratorResult:
        """Run a planning or execution turn to completion.

        Args:
            job_id: Job to drive.
            phase: "plan" or "execute".
            on_chunk: Called with every text chunk as it arrives.
        """
        try:
            phase = TurnPhase(phase)
        except ValueError:
            return OrchestratorResult.fail(f"Unknown turn phase: {phase}")
        job, error = await self._reserve(job_id, phase)
        if error:
            return OrchestratorResult.fail(error)
        try:
            return await self._run_turn(job, phase, on_chunk)
        finally:
            self._active.discard(job_id)

    async def _run_turn(
        self,
        job: Job,
        phase: TurnPhase,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> OrchestratorResult:
        agent_phase = phase.agent_phase
        label = _label(phase)
        await self._set_status(job.id, phase.running_status, agent_phase)
        await self._log(job.id, f"Starting {agent_phase.value} agent...", phase=agent_phase)

        try:
            if phase is TurnPhase.PLAN:
                prompt = self.prompts.build_plan_prompt(job)
            else:
                prompt = self.prompts.build_execute_prompt(job)

            text = await self._stream_turn(job, prompt, agent_phase, on_chunk)
            payload = extract_structured_payload(text)
            if phase is TurnPhase.PLAN:
                changes: Dict[str, Any] = {"plan": payload}
            else:
                changes = {"result": map_execution_result(payload)}

            await self.store.update(job.id, status=phase.done_status, current_phase=None, **changes)
            self._publish_status(job.id, phase.done_status, None)
            await self._log(job.id, f"{label} complete. Response: {len(text)} chars", phase=agent_phase)
            return OrchestratorResult.ok(text)

        except asyncio.CancelledError:
            await self._fail(job.id, f"{label} cancelled", agent_phase)
            raise
        except Exception as e:
            logger.warning("%s turn for %s failed: %s", phase.value, job.id, e)
            await self._fail(job.id, f"{label} failed: {e}", agent_phase)
            return OrchestratorResult.fail(str(e))

    async def _stream_turn(
        self,
        job: Job,
        prompt: str,
        phase: Optional[AgentPhase],
        on_chunk: Optional[ChunkCallback],
    ) -> str:
        """Send one message on the job's session and relay the response."""
        launch = LaunchConfig.from_config(
            self.config,
            work_dir=job.work_dir,
            resume_token=job.resume_token,
            system_prompt=self.prompts.system,
        )
        lease = await self.sessions.get_or_create(job.id, launch)
        if lease.resume_token and lease.resume_token != job.resume_token:
            await self.store.update(job.id, resume_token=lease.resume_token)

        timeout = self.config.turn_timeout_sec
        async with lease.entry.turn_lock:
            consume = self._consume(job.id, lease, prompt, phase, on_chunk)
            if not timeout:
                return await consume
            try:
                return await asyncio.wait_for(consume, timeout=timeout)
            except asyncio.TimeoutError:
                await self.sessions.cleanup(job.id)
                raise AgentError(f"Agent turn timed out after {timeout:g} seconds")

    async def _consume(
        self,
        job_id: str,
        lease: SessionLease,
        prompt: str,
        phase: Optional[AgentPhase],
        on_chunk: Optional[ChunkCallback],
    ) -> str:
        chunks: List[str] = []
        known_token = lease.resume_token
        batcher = TextBatcher(
            lambda text: self.broadcaster.publish(job_id, TextDeltaEvent(content=text)),
            self.config.text_batch_interval,
        )
        preview_interval = self.config.log_preview_interval_sec
        last_preview = time.monotonic()

        try:
            async for event in lease.handle.send_and_stream(prompt):
                if isinstance(event, TextDelta):
                    chunks.append(event.text)
                    if on_chunk:
                        on_chunk(event.text)
                    batcher.add(event.text)
                    now = time.monotonic()
                    if now - last_preview >= preview_interval:
                        last_preview = now
                        preview = _preview("".join(chunks), self.config.log_preview_chars)
                        await self._log(job_id, f"Agent: ...{preview}", phase=phase)

                elif isinstance(event, ToolCall):
                    batcher.flush()
                    self.broadcaster.publish(
                        job_id, ToolStartEvent(id=event.id, name=event.name, args=event.input)
                    )

                elif isinstance(event, ToolResult):
                    batcher.flush()
                    self.broadcaster.publish(
                        job_id,
                        ToolResultEvent(
                            id=event.tool_use_id,
                            success=not event.is_error,
                            output=None if event.is_error else event.content,
                            error=event.content if event.is_error else None,
                        ),
                    )

                elif isinstance(event, SessionStarted):
                    if event.session_id != known_token:
                        known_token = event.session_id
                        self.sessions.update_resume_token(job_id, known_token)
                        await self.store.update(job_id, resume_token=known_token)

                elif isinstance(event, TurnComplete):
                    if not chunks and event.result:
                        chunks.append(event.result)
                        if on_chunk:
                            on_chunk(event.result)
                        batcher.add(event.result)
        finally:
            batcher.flush()

        return "".join(chunks)

    # -- chat ---------------------------------------------------------------

    async def send_chat_message(
        self,
        job_id: str,
        message: str,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> OrchestratorResult:
        """Send a free-form message on the job's existing agent session.

        Requires a stored resume token or a live session; never changes the
        job's status.
        """
        job = await self.store.get(job_id)
        if job is None:
            return OrchestratorResult.fail(f"Job {job_id} not found")
        if not job.resume_token and not self.sessions.has_active(job_id):
            return OrchestratorResult.fail("No active session - start planning first")

        phase = job.current_phase
        self.broadcaster.publish(job_id, UserMessageEvent(content=message))
        await self._log(job_id, f"User: {_preview(message, self.config.log_preview_chars)}", phase=phase)
        await self.store.append_chat_message(job_id, ChatMessage(role="user", content=message))

        try:
            text = await self._stream_turn(job, message, phase, on_chunk)
        except Exception as e:
            logger.warning("Chat turn for %s failed: %s", job_id, e)
            await self._log(job_id, f"Chat failed: {e}", LogLevel.ERROR, phase)
            return OrchestratorResult.fail(str(e))

        self.broadcaster.publish(job_id, TurnCompleteEvent(content=text))
        await self.store.append_chat_message(job_id, ChatMessage(role="assistant", content=text))
        return OrchestratorResult.ok(text)

    # -- background operation -----------------------------------------------

    async def start_turn(self, job_id: str, phase: Union[str, TurnPhase]) -> OrchestratorResult:
        """Validate and claim a turn, then run it in the background."""
        try:
            phase = TurnPhase(phase)
        except ValueError:
            return OrchestratorResult.fail(f"Unknown turn phase: {phase}")
        job, error = await self._reserve(job_id, phase)
        if error:
            return OrchestratorResult.fail(error)
        self._spawn(job_id, self._run_turn(job, phase))
        return OrchestratorResult.ok(f"{_label(phase)} started")

    async def start_pipeline(self, job_id: str) -> OrchestratorResult:
        """Start planning in the background, cloning first for a pending job."""
        job, error = await self._reserve(job_id, TurnPhase.PLAN)
        if error:
            return OrchestratorResult.fail(error)
        self._spawn(job_id, self._pipeline(job))
        return OrchestratorResult.ok("Planning started")

    async def _pipeline(self, job: Job) -> OrchestratorResult:
        if job.status is JobStatus.PENDING:
            cloned = await self._clone(job)
            if not cloned.success:
                return cloned
            job = await self.store.get(job.id) or job
        return await self._run_turn(job, TurnPhase.PLAN)

    def _spawn(self, job_id: str, coro: Any) -> None:
        async def guarded() -> OrchestratorResult:
            try:
                return await coro
            finally:
                self._active.discard(job_id)

        task = asyncio.create_task(guarded(), name=f"mongrate-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background operation %s failed", task.get_name(), exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait for every background operation to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel background operations and release every agent session."""
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
        await self.sessions.cleanup_all()

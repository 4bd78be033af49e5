"""Job records for mongrate.

A job is one migration workflow: a cloned repository, the planning and
execution turns run against it, and everything they produced. Records are
plain dataclasses that serialize to camelCase JSON.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

HIDDEN = "***hidden***"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobStatus(Enum):
    """Lifecycle states of a job."""

    PENDING = "pending"
    CLONING = "cloning"
    PLANNING = "planning"
    PLAN_READY = "plan_ready"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class AgentPhase(Enum):
    """Which logical agent is currently driving a job."""

    PLANNER = "planner"
    EXECUTOR = "executor"


class TurnPhase(Enum):
    """Kind of status-changing agent turn."""

    PLAN = "plan"
    EXECUTE = "execute"

    @property
    def agent_phase(self) -> AgentPhase:
        return AgentPhase.PLANNER if self is TurnPhase.PLAN else AgentPhase.EXECUTOR

    @property
    def running_status(self) -> JobStatus:
        return JobStatus.PLANNING if self is TurnPhase.PLAN else JobStatus.EXECUTING

    @property
    def done_status(self) -> JobStatus:
        return JobStatus.PLAN_READY if self is TurnPhase.PLAN else JobStatus.COMPLETED


class LogLevel(Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def _phase_value(phase: Optional[AgentPhase]) -> Optional[str]:
    return phase.value if phase else None


def _phase_from(value: Optional[str]) -> Optional[AgentPhase]:
    return AgentPhase(value) if value else None


@dataclass
class LogEntry:
    """One durable, human-readable progress line."""

    message: str
    level: LogLevel = LogLevel.INFO
    phase: Optional[AgentPhase] = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "phase": _phase_value(self.phase),
            "level": self.level.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls(
            message=data.get("message", ""),
            level=LogLevel(data.get("level", "info")),
            phase=_phase_from(data.get("phase")),
            timestamp=data.get("timestamp", ""),
        )


@dataclass
class ChatMessage:
    """One side of an interactive chat exchange."""

    role: str  # "user" or "assistant"
    content: str
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            role=data.get("role", "user"),
            content=data.get("content", ""),
            timestamp=data.get("timestamp", ""),
        )


@dataclass
class JobConfig:
    """Where the source lives and where the data goes."""

    repo_url: str
    branch: str = "main"
    postgres_url: Optional[str] = None
    mongo_url: Optional[str] = None
    github_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repoUrl": self.repo_url,
            "branch": self.branch,
            "postgresUrl": self.postgres_url,
            "mongoUrl": self.mongo_url,
            "githubToken": self.github_token,
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialized form with secrets masked."""
        result = self.to_dict()
        if self.postgres_url:
            result["postgresUrl"] = HIDDEN
        result["githubToken"] = bool(self.github_token)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobConfig":
        return cls(
            repo_url=data.get("repoUrl", ""),
            branch=data.get("branch") or "main",
            postgres_url=data.get("postgresUrl"),
            mongo_url=data.get("mongoUrl"),
            github_token=data.get("githubToken"),
        )


@dataclass
class JobResult:
    """Outcome of a successful execution turn."""

    summary: str = ""
    pr_url: Optional[str] = None
    pr_number: Optional[int] = None
    files_changed: int = 0
    collections_created: int = 0
    rows_migrated: int = 0
    raw_output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "summary": self.summary,
            "prUrl": self.pr_url,
            "prNumber": self.pr_number,
            "filesChanged": self.files_changed,
            "collectionsCreated": self.collections_created,
            "rowsMigrated": self.rows_migrated,
        }
        if self.raw_output is not None:
            result["rawOutput"] = self.raw_output
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobResult":
        return cls(
            summary=data.get("summary", ""),
            pr_url=data.get("prUrl"),
            pr_number=data.get("prNumber"),
            files_changed=data.get("filesChanged", 0),
            collections_created=data.get("collectionsCreated", 0),
            rows_migrated=data.get("rowsMigrated", 0),
            raw_output=data.get("rawOutput"),
        )


@dataclass
class Job:
    """Durable record of one migration workflow."""

    id: str
    name: str
    config: JobConfig
    work_dir: Path
    status: JobStatus = JobStatus.PENDING
    current_phase: Optional[AgentPhase] = None
    log: List[LogEntry] = field(default_factory=list)
    resume_token: Optional[str] = None
    plan: Optional[Dict[str, Any]] = None
    result: Optional[JobResult] = None
    chat: List[ChatMessage] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": 1,
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "currentPhase": _phase_value(self.current_phase),
            "config": self.config.to_dict(),
            "workDir": str(self.work_dir),
            "resumeToken": self.resume_token,
            "plan": self.plan,
            "result": self.result.to_dict() if self.result else None,
            "log": [entry.to_dict() for entry in self.log],
            "chat": [message.to_dict() for message in self.chat],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialized form safe to hand to clients."""
        result = self.to_dict()
        result["config"] = self.config.to_public_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        result = data.get("result")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            config=JobConfig.from_dict(data.get("config") or {}),
            work_dir=Path(data.get("workDir", "")),
            status=JobStatus(data.get("status", "pending")),
            current_phase=_phase_from(data.get("currentPhase")),
            log=[LogEntry.from_dict(entry) for entry in data.get("log") or []],
            resume_token=data.get("resumeToken"),
            plan=data.get("plan"),
            result=JobResult.from_dict(result) if result else None,
            chat=[ChatMessage.from_dict(m) for m in data.get("chat") or []],
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )

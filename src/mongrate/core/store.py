"""Durable job storage for mongrate.

Jobs are stored one JSON document per job under the data directory. All file
I/O runs in a worker thread and every read-modify-write of a job happens
under that job's lock, so concurrent log appends never lose entries.
"""

import asyncio
import json
import logging
import os
import shutil
import uuid
from abc import ABC, abstractmethod
from dataclasses import fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .job import ChatMessage, Job, JobConfig, LogEntry, utc_now
from .paths import ensure_directory, get_jobs_dir, get_workspaces_dir

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {f.name for f in fields(Job)} - {"id", "log", "chat", "created_at"}


class JobStoreError(Exception):
    """Error reading or writing job records."""

    pass


def generate_job_id() -> str:
    return f"job-{uuid.uuid4().hex[:8]}"


class JobStore(ABC):
    """Storage contract used by the orchestrator and the API."""

    @abstractmethod
    async def create(self, name: str, config: JobConfig) -> Job:
        """Create a pending job with its first log entry."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        """Return the job, or None when unknown."""

    @abstractmethod
    async def list(self) -> List[Job]:
        """Return all jobs, newest first."""

    @abstractmethod
    async def update(self, job_id: str, **changes: Any) -> Optional[Job]:
        """Apply field changes; returns the updated job or None when unknown."""

    @abstractmethod
    async def append_log(self, job_id: str, entry: LogEntry) -> bool:
        """Append a log entry; returns False when the job is unknown."""

    @abstractmethod
    async def append_chat_message(self, job_id: str, message: ChatMessage) -> bool:
        """Append to the chat transcript; returns False when the job is unknown."""

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        """Remove the job and its workspace; returns False when unknown."""


class FileJobStore(JobStore):
    """JobStore keeping each job in ``{jobs_dir}/{job_id}.json``."""

    def __init__(
        self,
        jobs_dir: Optional[Path] = None,
        workspaces_dir: Optional[Path] = None,
    ):
        self.jobs_dir = jobs_dir or get_jobs_dir()
        self.workspaces_dir = workspaces_dir or get_workspaces_dir()
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    def _forget_lock(self, job_id: str) -> None:
        """Drop the lock of a job that has no record, unless someone holds it."""
        lock = self._locks.get(job_id)
        if lock is not None and not lock.locked():
            del self._locks[job_id]

    def _path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{job_id}.json"

    def _read(self, job_id: str) -> Optional[Job]:
        path = self._path(job_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Job.from_dict(json.load(f))
        except (json.JSONDecodeError, OSError, KeyError, ValueError) as e:
            raise JobStoreError(f"Failed to read job {job_id}: {e}") from e

    def _write(self, job: Job) -> None:
        ensure_directory(self.jobs_dir)
        path = self._path(job.id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(job.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp_path, path)
        except OSError as e:
            raise JobStoreError(f"Failed to write job {job.id}: {e}") from e

    def _read_all(self) -> List[Job]:
        if not self.jobs_dir.exists():
            return []
        jobs = []
        for path in sorted(self.jobs_dir.glob("*.json")):
            try:
                job = self._read(path.stem)
            except JobStoreError as e:
                logger.warning("Skipping unreadable job record %s: %s", path, e)
                continue
            if job is not None:
                jobs.append(job)
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs

    def _remove(self, job_id: str) -> bool:
        path = self._path(job_id)
        if not path.exists():
            return False
        path.unlink()
        workspace = self.workspaces_dir / job_id
        if workspace.exists():
            shutil.rmtree(workspace, ignore_errors=True)
        return True

    async def create(self, name: str, config: JobConfig) -> Job:
        job_id = generate_job_id()
        work_dir = self.workspaces_dir / job_id
        job = Job(id=job_id, name=name, config=config, work_dir=work_dir)
        job.log.append(LogEntry(message="Job created"))

        async with self._lock(job_id):
            await asyncio.to_thread(ensure_directory, work_dir)
            await asyncio.to_thread(self._write, job)
        logger.info("Created job %s (%s)", job_id, name)
        return job

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._lock(job_id):
            job = await asyncio.to_thread(self._read, job_id)
        if job is None:
            self._forget_lock(job_id)
        return job

    async def list(self) -> List[Job]:
        return await asyncio.to_thread(self._read_all)


    async def _mutate(self, job_id: str, apply: Callable[[Job], None]) -> Optional[Job]:
        """Read, change and write one job under its lock; None when unknown."""
        async with self._lock(job_id):
            job = await asyncio.to_thread(self._read, job_id)
            if job is not None:
                apply(job)
                job.updated_at = utc_now()
                await asyncio.to_thread(self._write, job)
        if job is None:
            self._forget_lock(job_id)
        return job

    async def update(self, job_id: str, **changes: Any) -> Optional[Job]:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise JobStoreError(f"Cannot update job fields: {', '.join(sorted(unknown))}")

        def apply(job: Job) -> None:
            for name, value in changes.items():
                setattr(job, name, value)

        return await self._mutate(job_id, apply)

    async def append_log(self, job_id: str, entry: LogEntry) -> bool:
        job = await self._mutate(job_id, lambda job: job.log.append(entry))
        if job is None:
            logger.warning("Dropping log entry for unknown job %s", job_id)
            return False
        return True

    async def append_chat_message(self, job_id: str, message: ChatMessage) -> bool:
        job = await self._mutate(job_id, lambda job: job.chat.append(message))
        return job is not None

    async def delete(self, job_id: str) -> bool:
        async with self._lock(job_id):
            removed = await asyncio.to_thread(self._remove, job_id)
        self._locks.pop(job_id, None)
        if removed:
            logger.info("Deleted job %s", job_id)
        return removed

from __future__ import annotations

import weakref
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidTransition(ValueError):
    pass


@dataclass(slots=True)
class Job:
    job_id: str
    directory: Path
    status: JobStatus = JobStatus.QUEUED
    created_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None
    exit_code: int | None = None
    error: str | None = None
    pid: int | None = None
    program_path: str | None = None
    args: list[str] | None = None
    has_result: bool | None = None
    handle: weakref.ref | None = field(default=None, repr=False, compare=False)

    def transition(self, status: JobStatus) -> None:
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(f"job {self.job_id}: {self.status.value} -> {status.value} is not allowed")
        self.status = status

    @property
    def is_terminal(self) -> bool:
        return self.status in {JobStatus.COMPLETED, JobStatus.FAILED}

    def snapshot(self) -> dict[str, Any]:
        """Externally observable fields, as written to the job's state file."""
        return {
            "id": self.job_id,
            "status": self.status.value,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "exit_code": self.exit_code,
            "error": self.error,
            "pid": self.pid,
            "program_path": self.program_path,
            "args": self.args,
            "has_result": self.has_result,
        }


@dataclass(slots=True)
class JobSummary:
    job_id: str
    status: str
    created_at: str | None
    started_at: str | None
    finished_at: str | None
    exit_code: int | None
    error: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.job_id,
            "status": self.status,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "exit_code": self.exit_code,
            "error": self.error,
        }


@dataclass(slots=True)
class StatusView:
    job_id: str
    status: str
    pid: int | None
    started_at: str | None
    finished_at: str | None
    exit_code: int | None
    error: str | None


@dataclass(slots=True)
class JobReport:
    view: StatusView
    has_result: bool
    result: Any
    log_tail: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.view.job_id,
            "status": self.view.status,
            "pid": self.view.pid,
            "started_at": self.view.started_at,
            "finished_at": self.view.finished_at,
            "exit_code": self.view.exit_code,
            "error": self.view.error,
            "has_result": self.has_result,
            "result": self.result,
            "log_tail": self.log_tail,
        }

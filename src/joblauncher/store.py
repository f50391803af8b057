from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any

from .app_logging import log_with_fields
from .config import FilesConfig
from .models import Job, JobStatus, JobSummary
from .utils import is_valid_job_id, new_job_id, utc_now_iso


def _write_json_durable(path: Path, payload: dict[str, Any]) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp, path)


def _summary_from_snapshot(job_id: str, snapshot: dict[str, Any] | None) -> JobSummary:
    state = snapshot or {}
    return JobSummary(
        job_id=job_id,
        status=str(state.get("status") or "unknown"),
        created_at=state.get("created_at"),
        started_at=state.get("started_at"),
        finished_at=state.get("finished_at"),
        exit_code=state.get("exit_code"),
        error=state.get("error"),
    )


class JobStore:
    """Job directories on disk plus the in-memory index of jobs started by this process."""

    def __init__(self, jobs_dir: Path, files: FilesConfig, logger: logging.Logger) -> None:
        self.jobs_dir = jobs_dir
        self.files = files
        self.logger = logger
        self._jobs: dict[str, Job] = {}

    def job_dir(self, job_id: str) -> Path:
        return self.jobs_dir / job_id

    def config_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / self.files.config

    def log_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / self.files.log

    def result_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / self.files.result

    def state_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / self.files.state

    async def create_job(self, config_text: str, encoding: str = "utf-8") -> Job:
        job_id = new_job_id()
        job = Job(
            job_id=job_id,
            directory=self.job_dir(job_id),
            status=JobStatus.QUEUED,
            created_at=utc_now_iso(),
        )
        await asyncio.to_thread(self._create_on_disk, job, config_text, encoding)
        self._jobs[job_id] = job
        return job

    def _create_on_disk(self, job: Job, config_text: str, encoding: str) -> None:
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        job.directory.mkdir(exist_ok=False)
        try:
            self.config_path(job.job_id).write_bytes(config_text.encode(encoding))
            _write_json_durable(self.state_path(job.job_id), job.snapshot())
        except (OSError, UnicodeEncodeError):
            shutil.rmtree(job.directory, ignore_errors=True)
            raise

    async def persist_snapshot(self, job: Job) -> None:
        await asyncio.to_thread(_write_json_durable, self.state_path(job.job_id), job.snapshot())

    def lookup(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def exists_on_disk(self, job_id: str) -> bool:
        if not is_valid_job_id(job_id):
            return False
        return await asyncio.to_thread(self.job_dir(job_id).is_dir)

    async def read_snapshot(self, job_id: str) -> dict[str, Any] | None:
        if not is_valid_job_id(job_id):
            return None
        return await asyncio.to_thread(self._read_snapshot, job_id)

    def _read_snapshot(self, job_id: str) -> dict[str, Any] | None:
        path = self.state_path(job_id)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "snapshot_unreadable",
                job_id=job_id,
                path=str(path),
                error=str(exc),
            )
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    async def list_all(self) -> list[JobSummary]:
        return await asyncio.to_thread(self._list_all)

    def _list_all(self) -> list[JobSummary]:
        if not self.jobs_dir.exists():
            return []
        summaries = [
            _summary_from_snapshot(entry.name, self._read_snapshot(entry.name))
            for entry in self.jobs_dir.iterdir()
            if entry.is_dir() and is_valid_job_id(entry.name)
        ]
        summaries.sort(key=lambda summary: summary.job_id)
        summaries.sort(key=lambda summary: summary.created_at or "", reverse=True)
        return summaries

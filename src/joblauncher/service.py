from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from .app_logging import log_with_fields
from .config import AppConfig
from .materializer import (
    SubmissionPayload,
    ValidationError,
    materialize,
    parse_payload,
    payload_encoding,
)
from .models import Job, JobReport, JobSummary
from .reader import read_result, tail_log
from .reconciler import StatusReconciler
from .store import JobStore
from .supervisor import ProcessSupervisor


class JobService:
    def __init__(
        self,
        config: AppConfig,
        store: JobStore,
        supervisor: ProcessSupervisor,
        logger: logging.Logger,
    ) -> None:
        self.config = config
        self.store = store
        self.supervisor = supervisor
        self.reconciler = StatusReconciler(store)
        self.logger = logger
        self._launches: set[asyncio.Task[None]] = set()

    async def submit(self, payload: SubmissionPayload | Mapping[str, Any]) -> Job:
        """Create a job and schedule its launch; the returned job is still queued."""
        try:
            if isinstance(payload, Mapping):
                payload = parse_payload(payload)
            config_text = materialize(payload)
        except ValidationError as exc:
            log_with_fields(self.logger, logging.WARNING, "submission_rejected", error=str(exc))
            raise

        job = await self.store.create_job(config_text, payload_encoding(payload))
        log_with_fields(
            self.logger,
            logging.INFO,
            "job_created",
            job_id=job.job_id,
            directory=str(job.directory),
            payload=type(payload).__name__,
        )

        task = asyncio.create_task(self.supervisor.launch(job))
        self._launches.add(task)
        task.add_done_callback(self._launches.discard)
        return job

    async def describe(self, job_id: str, tail_bytes: int | None = None) -> JobReport:
        view = await self.reconciler.get_status(job_id)
        limit = self.config.limits.log_tail_bytes if tail_bytes is None else tail_bytes
        log_tail = await tail_log(self.store.log_path(job_id), limit)
        result = await read_result(self.store.result_path(job_id))
        return JobReport(view=view, has_result=result is not None, result=result, log_tail=log_tail)

    async def list_jobs(self) -> list[JobSummary]:
        return await self.store.list_all()

    async def wait_launched(self) -> None:
        while self._launches:
            await asyncio.gather(*list(self._launches))

    async def join(self) -> None:
        """Wait for pending launches, then for every spawned process to exit."""
        await self.wait_launched()
        await self.supervisor.join()


def build_service(config: AppConfig, logger: logging.Logger) -> JobService:
    store = JobStore(config.paths.jobs, config.files, logger)
    supervisor = ProcessSupervisor(config.program, store, logger)
    return JobService(config=config, store=store, supervisor=supervisor, logger=logger)

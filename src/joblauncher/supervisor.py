from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import threading
import weakref
from typing import IO, Any

from .app_logging import log_with_fields
from .config import ProgramConfig
from .models import Job, JobStatus
from .store import JobStore
from .utils import utc_now_iso


class LaunchError(RuntimeError):
    pass


def _detach_kwargs() -> dict[str, Any]:
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.DETACHED_PROCESS}
    return {"start_new_session": True}


def wait_for_exit(process: subprocess.Popen[bytes]) -> asyncio.Future[int]:
    """Future resolved with the exit code, waited on by a daemon thread.

    The thread does not keep the interpreter alive, so a supervisor that exits
    leaves the detached process running.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[int] = loop.create_future()

    def resolve(exit_code: int) -> None:
        if not future.done():
            future.set_result(exit_code)

    def wait() -> None:
        exit_code = process.wait()
        try:
            loop.call_soon_threadsafe(resolve, exit_code)
        except RuntimeError:
            # Event loop already closed; nobody is waiting for this job any more.
            return

    threading.Thread(target=wait, name=f"joblauncher-exit-{process.pid}", daemon=True).start()
    return future


def describe_exit(exit_code: int, has_result: bool) -> str | None:
    if exit_code < 0:
        return f"terminated by signal {-exit_code}"
    if exit_code != 0:
        return f"exited with code {exit_code}"
    if not has_result:
        return "exited with code 0 but produced no result file"
    return None


class ProcessSupervisor:
    """Spawns the external program for a job and finalizes the job when it exits.

    Each job gets at most one process. The process runs in its own session with
    stdout and stderr redirected to the job log, so it outlives the request that
    started it and never blocks on a full pipe. There is no cancel and no timeout.
    """

    def __init__(self, program: ProgramConfig, store: JobStore, logger: logging.Logger) -> None:
        self.program = program
        self.store = store
        self.logger = logger
        self._watchers: dict[str, asyncio.Task[None]] = {}

    def build_args(self, job_id: str) -> list[str]:
        return [
            self.program.exit_flag,
            self.program.config_flag,
            str(self.store.config_path(job_id)),
            self.program.result_flag,
            str(self.store.result_path(job_id)),
        ]

    def build_command(self, job_id: str) -> list[str]:
        return [*self.program.launcher, str(self.program.path), *self.build_args(job_id)]

    async def launch(self, job: Job) -> None:
        """Start the job's process; returns once it is spawned or the launch has failed."""
        job.transition(JobStatus.RUNNING)
        job.started_at = utc_now_iso()
        await self._persist(job)
        log_with_fields(self.logger, logging.INFO, "job_launching", job_id=job.job_id)

        try:
            await self._spawn(job)
        except Exception as exc:
            # Whatever goes wrong before the process exists must still end the job.
            if job.is_terminal:
                raise
            await self._fail(job, str(exc))
            log_with_fields(
                self.logger,
                logging.ERROR,
                "job_launch_failed",
                job_id=job.job_id,
                error=str(exc),
            )

    async def _spawn(self, job: Job) -> None:
        program = self.program.path
        try:
            found = await asyncio.to_thread(program.is_file)
        except OSError as exc:
            raise LaunchError(f"Cannot access program {program}: {exc}") from exc
        if not found:
            raise LaunchError(f"Program not found: {program}")

        args = self.build_args(job.job_id)
        command = self.build_command(job.job_id)
        log_path = self.store.log_path(job.job_id)
        try:
            log_handle = await asyncio.to_thread(log_path.open, "ab")
        except OSError as exc:
            raise LaunchError(f"Cannot open log file {log_path}: {exc}") from exc

        try:
            process = await asyncio.to_thread(
                subprocess.Popen,
                command,
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                cwd=str(program.parent),
                **_detach_kwargs(),
            )
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            await self._on_error(job, exc, log_handle)
            return

        job.pid = process.pid
        job.handle = weakref.ref(process)
        job.program_path = str(program)
        job.args = args
        await self._persist(job)
        log_with_fields(
            self.logger,
            logging.INFO,
            "job_spawned",
            job_id=job.job_id,
            pid=process.pid,
            program_path=str(program),
            args=args,
        )

        task = asyncio.create_task(self._watch(job, process, log_handle))
        self._watchers[job.job_id] = task
        task.add_done_callback(lambda _: self._watchers.pop(job.job_id, None))

    async def _watch(self, job: Job, process: subprocess.Popen[bytes], log_handle: IO[bytes]) -> None:
        try:
            exit_code = await wait_for_exit(process)
        except asyncio.CancelledError:
            log_handle.close()
            raise
        await self._on_exit(job, exit_code, log_handle)

    async def _on_error(self, job: Job, exc: Exception, log_handle: IO[bytes]) -> None:
        try:
            await self._fail(job, str(exc))
            log_with_fields(
                self.logger,
                logging.ERROR,
                "job_spawn_failed",
                job_id=job.job_id,
                error=str(exc),
            )
        finally:
            log_handle.close()

    async def _on_exit(self, job: Job, exit_code: int, log_handle: IO[bytes]) -> None:
        try:
            has_result = await asyncio.to_thread(self.store.result_path(job.job_id).is_file)
            succeeded = exit_code == 0 and (has_result or not self.program.require_result)

            job.finished_at = utc_now_iso()
            job.exit_code = exit_code
            job.has_result = has_result
            job.pid = None
            job.handle = None
            if not succeeded:
                job.error = describe_exit(exit_code, has_result)
            job.transition(JobStatus.COMPLETED if succeeded else JobStatus.FAILED)
            await self._persist(job)
            log_with_fields(
                self.logger,
                logging.INFO if succeeded else logging.WARNING,
                "job_exited",
                job_id=job.job_id,
                status=job.status.value,
                exit_code=exit_code,
                has_result=has_result,
            )
        finally:
            log_handle.close()

    async def _fail(self, job: Job, message: str) -> None:
        job.error = message
        job.finished_at = utc_now_iso()
        job.pid = None
        job.handle = None
        job.transition(JobStatus.FAILED)
        await self._persist(job)

    async def _persist(self, job: Job) -> None:
        try:
            await self.store.persist_snapshot(job)
        except OSError as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "snapshot_write_failed",
                job_id=job.job_id,
                status=job.status.value,
                error=str(exc),
            )

    async def join(self) -> None:
        """Wait until every process spawned so far has exited and been finalized."""
        while self._watchers:
            await asyncio.gather(*list(self._watchers.values()))

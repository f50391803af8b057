"""Two-tier status resolution: the live job first, the durable snapshot second."""

from __future__ import annotations

from typing import Any

from .models import Job, StatusView
from .store import JobStore

UNKNOWN_STATUS = "unknown"


class JobNotFound(LookupError):
    pass


def _pick(live_value: Any, snapshot: dict[str, Any], key: str, default: Any = None) -> Any:
    if live_value is not None:
        return live_value
    value = snapshot.get(key)
    if value is not None:
        return value
    return default


def reconcile(job_id: str, live: Job | None, snapshot: dict[str, Any] | None) -> StatusView:
    state = snapshot or {}
    return StatusView(
        job_id=job_id,
        status=_pick(live.status.value if live else None, state, "status", UNKNOWN_STATUS),
        # Process handles do not survive a restart, so the pid is never taken from disk.
        pid=live.pid if live else None,
        started_at=_pick(live.started_at if live else None, state, "started_at"),
        finished_at=_pick(live.finished_at if live else None, state, "finished_at"),
        exit_code=_pick(live.exit_code if live else None, state, "exit_code"),
        error=_pick(live.error if live else None, state, "error"),
    )


class StatusReconciler:
    def __init__(self, store: JobStore) -> None:
        self.store = store

    async def get_status(self, job_id: str) -> StatusView:
        live = self.store.lookup(job_id)
        if live is None and not await self.store.exists_on_disk(job_id):
            raise JobNotFound(f"Task not found: {job_id}")
        snapshot = await self.store.read_snapshot(job_id)
        return reconcile(job_id, live, snapshot)

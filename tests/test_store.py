from __future__ import annotations

import json
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest
from unittest import mock

from joblauncher.config import FilesConfig
from joblauncher.models import JobStatus
from joblauncher.store import JobStore

from fakes import quiet_logger


class JobStoreTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._temp_dir = TemporaryDirectory()
        self.root = Path(self._temp_dir.name)
        self.store = JobStore(self.root / "jobs", FilesConfig(), quiet_logger())

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    async def test_create_job_writes_config_and_snapshot(self) -> None:
        job = await self.store.create_job("TASK NAME:a\r\n")

        self.assertEqual(job.status, JobStatus.QUEUED)
        self.assertEqual(job.directory, self.root / "jobs" / job.job_id)
        self.assertEqual((job.directory / "start_from.txt").read_bytes(), b"TASK NAME:a\r\n")
        snapshot = json.loads((job.directory / "state.json").read_text(encoding="utf-8"))
        self.assertEqual(snapshot["id"], job.job_id)
        self.assertEqual(snapshot["status"], "queued")
        self.assertIsNotNone(snapshot["created_at"])
        self.assertIsNone(snapshot["started_at"])
        self.assertIs(self.store.lookup(job.job_id), job)

    async def test_legacy_encoding_round_trips_bytes(self) -> None:
        job = await self.store.create_job("\xcf\xf0\xe8\n", encoding="latin-1")
        self.assertEqual(self.store.config_path(job.job_id).read_bytes(), b"\xcf\xf0\xe8\n")

    async def test_directory_collision_fails_loudly(self) -> None:
        with mock.patch("joblauncher.store.new_job_id", return_value="fixed-id"):
            first = await self.store.create_job("a=1\n")
            with self.assertRaises(FileExistsError):
                await self.store.create_job("b=2\n")
        self.assertEqual(self.store.config_path(first.job_id).read_text(encoding="utf-8"), "a=1\n")

    async def test_failed_creation_leaves_no_directory(self) -> None:
        with mock.patch("joblauncher.store._write_json_durable", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                await self.store.create_job("a=1\n")
        self.assertEqual(list((self.root / "jobs").iterdir()), [])

    async def test_persist_snapshot_overwrites(self) -> None:
        job = await self.store.create_job("a=1\n")
        job.transition(JobStatus.RUNNING)
        job.started_at = "2025-01-01T00:00:00+00:00"
        await self.store.persist_snapshot(job)

        snapshot = await self.store.read_snapshot(job.job_id)
        assert snapshot is not None
        self.assertEqual(snapshot["status"], "running")
        self.assertEqual(snapshot["started_at"], "2025-01-01T00:00:00+00:00")
        self.assertEqual(sorted(p.name for p in job.directory.iterdir()), ["start_from.txt", "state.json"])

    async def test_exists_on_disk(self) -> None:
        job = await self.store.create_job("a=1\n")
        self.assertTrue(await self.store.exists_on_disk(job.job_id))
        self.assertFalse(await self.store.exists_on_disk("missing"))
        self.assertFalse(await self.store.exists_on_disk("../jobs"))
        self.assertFalse(await self.store.exists_on_disk(""))

    async def test_corrupt_snapshot_reads_as_missing(self) -> None:
        job = await self.store.create_job("a=1\n")
        self.store.state_path(job.job_id).write_text("{not json", encoding="utf-8")
        self.assertIsNone(await self.store.read_snapshot(job.job_id))

    async def test_list_all_newest_first(self) -> None:
        jobs_dir = self.root / "jobs"
        for job_id, created_at in [
            ("old", "2025-01-01T00:00:00+00:00"),
            ("new", "2025-03-01T00:00:00+00:00"),
            ("mid", "2025-02-01T00:00:00+00:00"),
        ]:
            (jobs_dir / job_id).mkdir(parents=True)
            (jobs_dir / job_id / "state.json").write_text(
                json.dumps({"id": job_id, "status": "completed", "created_at": created_at, "exit_code": 0}),
                encoding="utf-8",
            )
        (jobs_dir / "bare").mkdir()
        (jobs_dir / "stray.txt").write_text("x", encoding="utf-8")

        summaries = await self.store.list_all()
        self.assertEqual([s.job_id for s in summaries], ["new", "mid", "old", "bare"])
        self.assertEqual(summaries[0].exit_code, 0)
        self.assertEqual(summaries[-1].status, "unknown")

    async def test_list_all_without_jobs_dir(self) -> None:
        self.assertEqual(await self.store.list_all(), [])


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import os
import re
import uuid
from datetime import UTC, datetime

JOB_ID_REGEX = re.compile(r"^[A-Za-z0-9_-]+$")


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def new_job_id() -> str:
    return uuid.uuid4().hex


def is_valid_job_id(job_id: str) -> bool:
    return bool(JOB_ID_REGEX.match(job_id))


def is_plain_filename(name: str) -> bool:
    return bool(name) and name not in {".", ".."} and os.sep not in name and "/" not in name

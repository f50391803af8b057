from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any


def _read_tail(path: Path, max_bytes: int) -> str | None:
    try:
        handle = path.open("rb")
    except FileNotFoundError:
        return None
    with handle:
        size = handle.seek(0, 2)
        start = max(0, size - max_bytes)
        handle.seek(start)
        data = handle.read(size - start)
    # The cut may land inside a multi-byte character.
    return data.decode("utf-8", errors="replace")


def _read_result(path: Path) -> Any:
    try:
        raw = path.read_bytes().decode("utf-8", errors="replace")
    except FileNotFoundError:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


async def tail_log(path: Path, max_bytes: int) -> str | None:
    """Last ``max_bytes`` of the log, or None when the log does not exist yet."""
    if max_bytes < 0:
        raise ValueError("max_bytes must be >= 0")
    return await asyncio.to_thread(_read_tail, path, max_bytes)


async def read_result(path: Path) -> Any:
    """Parsed JSON result, the raw text when it is not JSON, or None when absent."""
    return await asyncio.to_thread(_read_result, path)

from __future__ import annotations

import logging
import sys
from pathlib import Path

from joblauncher.config import AppConfig, LimitsConfig, PathsConfig, ProgramConfig

FAKE_PROGRAM = """\
import pathlib
import sys

args = sys.argv[1:]
assert args[0] == "-exitondone", args
config_path = pathlib.Path(args[args.index("-cfgname") + 1])
result_path = pathlib.Path(args[args.index("-logresult") + 1])
print("config: " + "|".join(config_path.read_text(encoding="utf-8").splitlines()))
print("working", file=sys.stderr)
sys.stdout.flush()
RESULT = {result!r}
if RESULT is not None:
    result_path.write_text(RESULT, encoding="utf-8")
sys.exit({exit_code})
"""


def write_program(directory: Path, *, exit_code: int = 0, result: str | None = '{"value": 42}') -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "fake_program.py"
    path.write_text(FAKE_PROGRAM.format(exit_code=exit_code, result=result), encoding="utf-8")
    return path


def make_config(
    root: Path,
    program: Path,
    *,
    launcher: list[str] | None = None,
    require_result: bool = False,
    log_tail_bytes: int = 64 * 1024,
) -> AppConfig:
    return AppConfig(
        paths=PathsConfig(jobs=root / "jobs", log=root / "joblauncher.log"),
        program=ProgramConfig(
            path=program,
            launcher=[sys.executable] if launcher is None else launcher,
            require_result=require_result,
        ),
        limits=LimitsConfig(log_tail_bytes=log_tail_bytes),
    )


def quiet_logger() -> logging.Logger:
    logger = logging.getLogger("test_joblauncher")
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger

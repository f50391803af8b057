from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .utils import is_plain_filename


@dataclass(slots=True)
class PathsConfig:
    jobs: Path
    log: Path


@dataclass(slots=True)
class ProgramConfig:
    path: Path
    launcher: list[str] = field(default_factory=list)
    exit_flag: str = "-exitondone"
    config_flag: str = "-cfgname"
    result_flag: str = "-logresult"
    require_result: bool = False


@dataclass(slots=True)
class FilesConfig:
    config: str = "start_from.txt"
    log: str = "logs.txt"
    result: str = "rescalc.txt"
    state: str = "state.json"


@dataclass(slots=True)
class LimitsConfig:
    log_tail_bytes: int = 64 * 1024


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig
    program: ProgramConfig
    files: FilesConfig = field(default_factory=FilesConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _as_bool(value: object, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"`{key}` must be true or false")


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    paths_raw = _require(raw, "paths", "root")
    program_raw = _require(raw, "program", "root")
    files_raw = raw.get("files", {})
    limits_raw = raw.get("limits", {})

    if not isinstance(paths_raw, dict):
        raise ValueError("`paths` must be a mapping")
    if not isinstance(program_raw, dict):
        raise ValueError("`program` must be a mapping")
    if not isinstance(files_raw, dict):
        raise ValueError("`files` must be a mapping")
    if not isinstance(limits_raw, dict):
        raise ValueError("`limits` must be a mapping")

    def to_path(value: object) -> Path:
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    paths = PathsConfig(
        jobs=to_path(_require(paths_raw, "jobs", "paths")),
        log=to_path(_require(paths_raw, "log", "paths")),
    )

    launcher_raw = program_raw.get("launcher", [])
    if not isinstance(launcher_raw, list):
        raise ValueError("`program.launcher` must be a list")
    program = ProgramConfig(
        path=to_path(_require(program_raw, "path", "program")),
        launcher=[str(item) for item in launcher_raw],
        exit_flag=str(program_raw.get("exit_flag", "-exitondone")),
        config_flag=str(program_raw.get("config_flag", "-cfgname")),
        result_flag=str(program_raw.get("result_flag", "-logresult")),
        require_result=_as_bool(program_raw.get("require_result", False), "program.require_result"),
    )

    defaults = FilesConfig()
    files = FilesConfig(
        config=str(files_raw.get("config", defaults.config)),
        log=str(files_raw.get("log", defaults.log)),
        result=str(files_raw.get("result", defaults.result)),
        state=str(files_raw.get("state", defaults.state)),
    )
    names = [files.config, files.log, files.result, files.state]
    for name in names:
        if not is_plain_filename(name):
            raise ValueError(f"`files` entries must be plain file names, found: {name!r}")
    if len(set(names)) != len(names):
        raise ValueError("`files` entries must be distinct")

    limits = LimitsConfig(
        log_tail_bytes=int(limits_raw.get("log_tail_bytes", 64 * 1024)),
    )
    if limits.log_tail_bytes < 1:
        raise ValueError("`limits.log_tail_bytes` must be >= 1")

    return AppConfig(paths=paths, program=program, files=files, limits=limits)


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.jobs.mkdir(parents=True, exist_ok=True)
    config.paths.log.parent.mkdir(parents=True, exist_ok=True)

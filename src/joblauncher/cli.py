from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from .app_logging import setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .materializer import (
    EncodedPayload,
    RawPayload,
    SubmissionPayload,
    TemplatePayload,
    ValidationError,
    decode_config,
    normalize_encoding,
)
from .reader import tail_log
from .reconciler import JobNotFound
from .service import JobService, build_service

EXIT_VALIDATION = 2
EXIT_NOT_FOUND = 4
EXIT_IO = 5


def non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from exc
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="joblauncher", description="Single-node external program job launcher")
    parser.add_argument("--config", required=True, help="Path to joblauncher YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    submit = subparsers.add_parser("submit", help="Create a job and launch the program")
    source = submit.add_mutually_exclusive_group(required=True)
    source.add_argument("--config-file", help="Config file uploaded as bytes")
    source.add_argument("--config-text", help="Raw config text")
    source.add_argument("--template-file", help="Template file with TASK NAME markers")
    submit.add_argument("--task-name", help="Task to enable in the config")
    submit.add_argument("--encoding", default="utf-8", help="utf-8 (default) or win1251")
    submit.add_argument(
        "--detach",
        action="store_true",
        help="Return once the program is spawned instead of waiting for it to exit",
    )

    status = subparsers.add_parser("status", help="Show job status, result and log tail")
    status.add_argument("job_id")
    status.add_argument("--tail-bytes", type=non_negative_int, default=None, help="Override the log tail size")

    subparsers.add_parser("list", help="List jobs, newest first")

    tail = subparsers.add_parser("tail", help="Print the end of a job log")
    tail.add_argument("job_id")
    tail.add_argument("--bytes", type=non_negative_int, default=None, help="Bytes to read from the end of the log")
    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _print_error(message: str) -> None:
    print(json.dumps({"error": message}), file=sys.stderr)


def payload_from_args(args: argparse.Namespace) -> SubmissionPayload:
    if args.config_file:
        return EncodedPayload(
            data=Path(args.config_file).read_bytes(),
            task_name=args.task_name or None,
            encoding=normalize_encoding(args.encoding),
        )
    if args.template_file:
        template = decode_config(Path(args.template_file).read_bytes(), args.encoding)
        if not args.task_name:
            raise ValidationError("--template-file requires --task-name")
        return TemplatePayload(template=template, task_name=args.task_name)
    return RawPayload(text=args.config_text, task_name=args.task_name or None)


async def cmd_submit(service: JobService, args: argparse.Namespace) -> int:
    job = await service.submit(payload_from_args(args))
    if args.detach:
        await service.wait_launched()
        _print_json({"id": job.job_id, "status": job.status.value})
        return 0
    await service.join()
    report = await service.describe(job.job_id)
    _print_json(report.to_dict())
    return 0 if report.view.status == "completed" else 1


async def cmd_status(service: JobService, args: argparse.Namespace) -> int:
    report = await service.describe(args.job_id, tail_bytes=args.tail_bytes)
    _print_json(report.to_dict())
    return 0


async def cmd_list(service: JobService) -> int:
    _print_json([summary.to_dict() for summary in await service.list_jobs()])
    return 0


async def cmd_tail(service: JobService, args: argparse.Namespace) -> int:
    # Raises JobNotFound for ids this storage never issued.
    await service.reconciler.get_status(args.job_id)
    limit = service.config.limits.log_tail_bytes if args.bytes is None else args.bytes
    text = await tail_log(service.store.log_path(args.job_id), limit)
    if text:
        sys.stdout.write(text)
    return 0


async def run_command(config: AppConfig, args: argparse.Namespace) -> int:
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log)
    service = build_service(config, logger)
    if args.command == "submit":
        return await cmd_submit(service, args)
    if args.command == "status":
        return await cmd_status(service, args)
    if args.command == "list":
        return await cmd_list(service)
    if args.command == "tail":
        return await cmd_tail(service, args)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    try:
        return asyncio.run(run_command(config, args))
    except KeyboardInterrupt:
        return 130
    except ValidationError as exc:
        _print_error(str(exc))
        return EXIT_VALIDATION
    except JobNotFound as exc:
        _print_error(str(exc))
        return EXIT_NOT_FOUND
    except OSError as exc:
        _print_error(str(exc))
        return EXIT_IO


if __name__ == "__main__":
    raise SystemExit(main())

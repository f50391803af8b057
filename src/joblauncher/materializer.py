"""Turn a submitted payload into the configuration text the program reads."""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

TASK_MARKER = "TASK NAME"
LINE_TERMINATOR = "\r\n"

TASK_LINE_REGEX = re.compile(r"\s*(//\s*)?" + re.escape(TASK_MARKER) + r"\s*:\s*([A-Za-z0-9_]+)\s*")
LINE_SPLIT_REGEX = re.compile(r"\r?\n")

UTF8 = "utf-8"
# Bytes map one-to-one to characters; not a real cp1251 decode.
LEGACY = "latin-1"
ENCODING_ALIASES = {
    "utf8": UTF8,
    "utf-8": UTF8,
    "win1251": LEGACY,
    "binary": LEGACY,
    "latin1": LEGACY,
    "latin-1": LEGACY,
}


class ValidationError(ValueError):
    pass


class TaskNotFound(ValidationError):
    pass


@dataclass(frozen=True, slots=True)
class EncodedPayload:
    data: bytes
    task_name: str | None = None
    encoding: str = UTF8


@dataclass(frozen=True, slots=True)
class RawPayload:
    text: str
    task_name: str | None = None


@dataclass(frozen=True, slots=True)
class TemplatePayload:
    template: str
    task_name: str


SubmissionPayload = EncodedPayload | RawPayload | TemplatePayload


def normalize_encoding(encoding: str | None) -> str:
    if encoding is None or encoding == "":
        return UTF8
    if not isinstance(encoding, str):
        raise ValidationError("encoding must be a string")
    normalized = ENCODING_ALIASES.get(encoding.strip().lower())
    if normalized is None:
        raise ValidationError(f"Unsupported encoding: {encoding}")
    return normalized


def ensure_trailing_newline(text: str) -> str:
    return text if text.endswith("\n") else text + LINE_TERMINATOR


def select_task(config_text: str, task_name: str) -> str:
    """Enable the `TASK NAME:<task_name>` marker and comment out every other one.

    Raises TaskNotFound when no marker line carries the requested name, so a
    mistyped name never runs the wrong task.
    """
    found = False
    output: list[str] = []
    for line in LINE_SPLIT_REGEX.split(config_text):
        match = TASK_LINE_REGEX.fullmatch(line)
        if match is None:
            output.append(line)
            continue
        name = match.group(2)
        if name == task_name:
            found = True
            output.append(f"{TASK_MARKER}:{name}")
        else:
            output.append(f"//{TASK_MARKER}:{name}")

    if not found:
        raise TaskNotFound(f"{TASK_MARKER}:{task_name} not found in config")
    return ensure_trailing_newline(LINE_TERMINATOR.join(output))


def decode_config(data: bytes, encoding: str = UTF8) -> str:
    encoding = normalize_encoding(encoding)
    try:
        return data.decode(encoding)
    except UnicodeDecodeError as exc:
        raise ValidationError(f"Config is not valid {encoding}: {exc}") from exc


def parse_payload(fields: Mapping[str, Any]) -> SubmissionPayload:
    """Pick the payload shape from transport fields, in fixed priority order."""
    task_name = fields.get("taskName") or None
    if task_name is not None and not isinstance(task_name, str):
        raise ValidationError("taskName must be a string")

    encoded = fields.get("configBase64")
    if isinstance(encoded, str):
        try:
            # Line-wrapped base64 is accepted; any other stray character is not.
            data = base64.b64decode("".join(encoded.split()), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(f"configBase64 is not valid base64: {exc}") from exc
        return EncodedPayload(
            data=data,
            task_name=task_name,
            encoding=normalize_encoding(fields.get("encoding")),
        )

    text = fields.get("configText")
    if isinstance(text, str):
        return RawPayload(text=text, task_name=task_name)

    template = fields.get("configTemplateText")
    if isinstance(template, str):
        if task_name is None:
            raise ValidationError("configTemplateText requires taskName")
        return TemplatePayload(template=template, task_name=task_name)

    raise ValidationError("Payload must provide configText OR configTemplateText (+ taskName)")


def materialize(payload: SubmissionPayload) -> str:
    match payload:
        case EncodedPayload(data=data, task_name=task_name, encoding=encoding):
            text = decode_config(data, encoding)
            if task_name:
                return select_task(text, task_name)
            return ensure_trailing_newline(text)
        case RawPayload(text=text, task_name=task_name):
            if task_name:
                return select_task(text, task_name)
            return ensure_trailing_newline(text)
        case TemplatePayload(template=template, task_name=task_name):
            return select_task(template, task_name)
    raise ValidationError(f"Unsupported payload type: {type(payload).__name__}")


def payload_encoding(payload: SubmissionPayload) -> str:
    if isinstance(payload, EncodedPayload):
        return normalize_encoding(payload.encoding)
    return UTF8

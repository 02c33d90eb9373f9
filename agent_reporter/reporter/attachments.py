"""Structured attachment parsing, one parser per recognized attachment name."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterable

from agent_reporter.models.test_result import Attachment

logger = logging.getLogger(__name__)


class AttachmentParseError(ValueError):
    """An attachment payload could not be decoded into its expected shape."""


def _raw_bytes(att: Attachment) -> bytes:
    if att.body is not None:
        return att.body
    if att.path:
        try:
            return Path(att.path).read_bytes()
        except OSError as e:
            raise AttachmentParseError(f"{att.name}: cannot read {att.path}: {e}") from e
    raise AttachmentParseError(f"{att.name}: attachment has neither body nor path")


def _text(att: Attachment) -> str:
    try:
        return _raw_bytes(att).decode("utf-8")
    except UnicodeDecodeError as e:
        raise AttachmentParseError(f"{att.name}: not valid UTF-8") from e


def _json(att: Attachment) -> Any:
    try:
        return json.loads(_text(att))
    except json.JSONDecodeError as e:
        raise AttachmentParseError(f"{att.name}: invalid JSON ({e})") from e


def _string_list(att: Attachment) -> list[str]:
    value = _json(att)
    if not isinstance(value, list):
        raise AttachmentParseError(f"{att.name}: expected a JSON array")
    return [str(v) for v in value]


def _object(att: Attachment) -> dict[str, Any]:
    value = _json(att)
    if not isinstance(value, dict):
        raise AttachmentParseError(f"{att.name}: expected a JSON object")
    return value


def _lines(att: Attachment) -> list[str]:
    return [line for line in _text(att).split("\n") if line.strip()]


def _binary(att: Attachment) -> bytes:
    return _raw_bytes(att)


def _file(att: Attachment) -> Attachment:
    """Keep file-backed payloads (traces, videos) as-is; they are copied later."""
    if att.body is None and not att.path:
        raise AttachmentParseError(f"{att.name}: attachment has neither body nor path")
    return att


PARSERS: dict[str, Callable[[Attachment], Any]] = {
    "screenshot": _binary,
    "page-url": _text,
    "page-state": _object,
    "page-title": _text,
    "visible-text": _text,
    "available-selectors": _string_list,
    "html-snippet": _text,
    "action-history": _lines,
    "console-errors": _string_list,
    "network-errors": _string_list,
    "trace": _file,
    "video": _file,
}


def parse_attachment(att: Attachment) -> Any:
    """Parse one attachment. Raises AttachmentParseError for bad payloads
    and KeyError for names that are not recognized."""
    return PARSERS[att.name](att)


def parse_attachments(attachments: Iterable[Attachment]) -> dict[str, Any]:
    """Parse every recognized attachment; malformed ones are left out.

    When a name occurs more than once the last well-formed payload wins.
    """
    parsed: dict[str, Any] = {}
    for att in attachments:
        if att.name not in PARSERS:
            continue
        try:
            parsed[att.name] = parse_attachment(att)
        except AttachmentParseError as e:
            logger.warning("Ignoring attachment: %s", e)
    return parsed

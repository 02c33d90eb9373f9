"""Shared text utilities for ANSI stripping, truncation and filesystem-safe names."""

from __future__ import annotations

import hashlib
import os
import re

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
# SGR sequences whose ESC byte was already lost on the way in
_ORPHAN_SGR_RE = re.compile(r"\[(?:0|1|2|22|31|32|33|39)m")
_UNSAFE_NAME_RE = re.compile(r"[^a-z0-9]+")

TRUNCATION_MARKER = "... (truncated)"
MAX_NAME_LENGTH = 80


def strip_ansi(text: str) -> str:
    """Remove terminal color escape sequences from text."""
    text = _ANSI_RE.sub("", text)
    text = _ORPHAN_SGR_RE.sub("", text)
    return text.replace("\x1b", "")


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """Cut text to max_length characters, appending suffix when cut."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + suffix


def truncate_block(text: str, max_length: int) -> str:
    """Cut a multi-line block and mark the cut on its own line."""
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}\n{TRUNCATION_MARKER}"


def safe_name(*parts: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """Build a lowercase, filesystem-safe name from free-form parts.

    Long names are cut and suffixed with a short hash of the full value so
    that two long titles sharing a prefix still map to different names.
    """
    raw = "-".join(p for p in parts if p)
    name = _UNSAFE_NAME_RE.sub("-", raw.lower()).strip("-") or "test"
    if len(name) > max_length:
        digest = hashlib.md5(raw.encode()).hexdigest()[:8]
        name = f"{name[:max_length - 9].rstrip('-')}-{digest}"
    return name


def relative_to_cwd(path: str) -> str:
    """Return path relative to the working directory when it lives below it."""
    if not path:
        return path
    cwd = os.getcwd()
    abs_path = os.path.abspath(path)
    if abs_path == cwd or abs_path.startswith(cwd + os.sep):
        return os.path.relpath(abs_path, cwd)
    return path

"""Artifact-scoped cleanup of the report directory and output-dir overlap checks.

Only files this reporter produced are ever removed: the fixed names below plus
the per-test directories listed in the manifest written by the previous run.
Nothing else in the output directory is touched.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Iterable

from rich.console import Console
from rich.markup import escape

from agent_reporter.models.config import DO_NOT_REMOVE_ENV, cleanup_disabled

logger = logging.getLogger(__name__)

MANIFEST_FILE = ".agent-reporter.json"
MANIFEST_VERSION = 1

OWNED_NAMES = frozenset({
    "error-context.md",
    "SUMMARY.md",
    "failures.json",
    "traces",
    MANIFEST_FILE,
})


def _warn(console: Console | None, title: str, message: str) -> None:
    logger.warning("%s: %s", title, message)
    if console is not None:
        console.print(f"[yellow]⚠️  {title}:[/yellow] {escape(message)}")


def _is_plain_name(name: str) -> bool:
    if not name or name in (".", ".."):
        return False
    return os.sep not in name and "/" not in name and (os.altsep is None or os.altsep not in name)


def check_cleanup_safety(output_dir: str | Path, cwd: str | Path | None = None) -> str | None:
    """Return why cleaning output_dir would be unsafe, or None when it is safe.

    The directory must sit strictly below the working directory. This holds
    for the absolute path and, separately, for the symlink-resolved path.
    """
    cwd = Path(cwd) if cwd is not None else Path.cwd()
    candidates = (
        ("path", Path(os.path.abspath(output_dir)), Path(os.path.abspath(cwd))),
        ("resolved path", Path(output_dir).resolve(), cwd.resolve()),
    )
    for label, target, base in candidates:
        if target == Path(target.anchor):
            return f"{label} {target} is a filesystem root"
        if target == base:
            return f"{label} {target} is the current working directory"
        if base not in target.parents:
            return f"{label} {target} is outside the current working directory {base}"
    return None


def read_manifest(output_dir: Path) -> list[str]:
    """Per-test directory names recorded by the previous run."""
    path = output_dir / MANIFEST_FILE
    if not path.is_file() or path.is_symlink():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable manifest %s: %s", path, e)
        return []
    entries = data.get("entries", []) if isinstance(data, dict) else []
    return [e for e in entries if isinstance(e, str) and _is_plain_name(e)]


def write_manifest(output_dir: Path, entries: Iterable[str]) -> Path:
    """Record per-test directories so a later run can clean them up.

    Entries already in the manifest are kept while their directory still
    exists, so reports from runs that skipped cleanup stay owned.
    """
    names = {e for e in entries if _is_plain_name(e)}
    names.update(e for e in read_manifest(output_dir) if (output_dir / e).exists())
    path = output_dir / MANIFEST_FILE
    data = {"version": MANIFEST_VERSION, "entries": sorted(names)}
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def owned_artifacts(output_dir: Path) -> list[Path]:
    """Entries of output_dir that this reporter produced."""
    if not output_dir.is_dir():
        return []
    names = OWNED_NAMES | set(read_manifest(output_dir))
    return [entry for entry in sorted(output_dir.iterdir()) if entry.name in names]


def _remove(path: Path) -> None:
    if path.is_symlink() or not path.is_dir():
        path.unlink()
    else:
        shutil.rmtree(path)


def clean_output_dir(output_dir: str | Path, console: Console | None = None) -> list[Path]:
    """Remove the previous run's artifacts from output_dir.

    Returns the removed paths. Nothing is removed when the environment
    override is set or when the directory fails the safety check.
    """
    output_dir = Path(output_dir)
    if cleanup_disabled():
        logger.info("%s is set, keeping previous reports in %s", DO_NOT_REMOVE_ENV, output_dir)
        return []

    reason = check_cleanup_safety(output_dir)
    if reason is not None:
        _warn(console, "Safety Warning", f"Skipping cleanup of {output_dir}: {reason}")
        return []

    removed: list[Path] = []
    for artifact in owned_artifacts(output_dir):
        try:
            _remove(artifact)
        except OSError as e:
            logger.warning("Could not remove %s: %s", artifact, e)
            continue
        removed.append(artifact)

    if removed:
        logger.debug("Removed %d previous report artifacts from %s", len(removed), output_dir)
    return removed


def find_overlaps(output_dir: str | Path, collaborator_dirs: Iterable[str | Path]) -> list[Path]:
    """Collaborator output directories equal to, inside, or containing output_dir."""
    ours = Path(output_dir).resolve()
    overlaps = []
    for other_dir in collaborator_dirs:
        if not other_dir:
            continue
        other = Path(other_dir).resolve()
        if ours == other or other in ours.parents or ours in other.parents:
            overlaps.append(Path(other_dir))
    return overlaps


def warn_overlaps(
    output_dir: str | Path,
    collaborator_dirs: Iterable[str | Path],
    console: Console | None = None,
) -> list[Path]:
    overlaps = find_overlaps(output_dir, collaborator_dirs)
    for other in overlaps:
        _warn(
            console,
            "Configuration Warning",
            f"report directory {output_dir} overlaps with {other}. "
            "Reports may end up next to files managed by another tool; "
            "use separate output directories.",
        )
    return overlaps

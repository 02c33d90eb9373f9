"""Failure context assembly: turns a failed test result into a FailureContext."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Any

from agent_reporter.models.config import ReporterConfig
from agent_reporter.models.page_state import PageState, dedupe_selectors
from agent_reporter.models.test_result import (
    Attachment,
    FailureContext,
    TestError,
    TestMeta,
    TestResult,
)
from agent_reporter.text_utils import safe_name

from .attachments import parse_attachments

logger = logging.getLogger(__name__)

TRACES_DIR = "traces"
SCREENSHOT_FILE = "screenshot.png"

_LOCATOR_RE = re.compile(r"""locator\((['"])(.+?)\1\)""")
_WAITING_FOR_RE = re.compile(r"waiting for (.+?)(?:\n|$)")

CONSOLE_MARKERS = ("[Console Error]", "[Console Warning]")
NETWORK_MARKERS = ("ERR_", "Failed to load resource")

# Structured attachments that, when present, mean page state was captured.
_PAGE_STATE_KEYS = (
    "page-state", "page-url", "page-title", "visible-text",
    "available-selectors", "html-snippet", "action-history",
)


def extract_failed_selector(message: str) -> str | None:
    """Selector from a locator('...') call in an error message, if any."""
    match = _LOCATOR_RE.search(message or "")
    return match.group(2) if match else None


def is_timeout_message(message: str) -> bool:
    return "Timeout" in message or "exceeded" in message or "timed out" in message.lower()


def augment_timeout_message(
    message: str, duration_ms: int, page_state: PageState | None = None,
) -> str:
    """Append a "Timeout Context" block to timeout errors; other messages pass through."""
    if not is_timeout_message(message) or "Timeout Context:" in message:
        return message

    waiting_for = _WAITING_FOR_RE.search(message)
    lines = [
        "",
        "Timeout Context:",
        f"- Was waiting for: {waiting_for.group(1).strip() if waiting_for else 'unknown'}",
        f"- Duration before timeout: {duration_ms}ms",
    ]
    if page_state and page_state.url:
        lines.append(f"- Page URL at timeout: {page_state.url}")
    if page_state and page_state.action_history:
        lines.append(f"- Last action before timeout: {page_state.action_history[-1]}")
    return message + "\n" + "\n".join(lines) + "\n"


def failure_dir_name(meta: TestMeta, test_index: int) -> str:
    """Per-test output directory name, unique within a run."""
    return f"{safe_name(meta.suite_name, meta.title)}-{test_index}"


def read_code_snippet(path: str, line: int, context: int = 2) -> str | None:
    """Numbered source lines around line, the failing one marked with '>'."""
    if not path or line <= 0:
        return None
    try:
        source = Path(path).read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError):
        return None
    if line > len(source):
        return None

    start = max(1, line - context)
    end = min(len(source), line + context)
    snippet = []
    for number in range(start, end + 1):
        marker = ">" if number == line else " "
        snippet.append(f"{marker} {number:>4} | {source[number - 1]}")
    return "\n".join(snippet)


def scan_output(lines: list[str], markers: tuple[str, ...]) -> list[str]:
    """Output lines containing any of the markers."""
    found = []
    for chunk in lines:
        for line in chunk.splitlines():
            if any(m in line for m in markers):
                found.append(line.strip())
    return found


class FailureContextBuilder:
    """Builds FailureContext records and persists their binary attachments."""

    def __init__(self, config: ReporterConfig, output_dir: Path):
        self.config = config
        self.output_dir = output_dir

    def build(
        self,
        meta: TestMeta,
        error: TestError | None,
        result: TestResult,
        test_index: int,
    ) -> FailureContext:
        error = error or (result.errors[0] if result.errors else TestError(message="Unknown error"))
        parsed = parse_attachments(result.attachments)

        page_state = self._build_page_state(parsed) if self.config.capture_page_state else None

        message = augment_timeout_message(error.message or "Unknown error", result.duration, page_state)
        snippet = error.snippet
        if snippet is None and self.config.show_code_snippet:
            snippet = read_code_snippet(meta.file, error.line or meta.line)

        failure = FailureContext(
            test_title=meta.title,
            suite_name=meta.suite_name,
            test_file=meta.file,
            line_number=meta.line,
            node_id=meta.node_id,
            error=error.model_copy(update={"message": message, "snippet": snippet}),
            stdout=list(result.stdout),
            stderr=list(result.stderr),
            duration=result.duration,
            retry_count=result.retry_count,
            test_index=test_index,
            timed_out=result.status == "timedOut",
            page_state=page_state,
            report_dir=failure_dir_name(meta, test_index),
        )

        if self.config.include_console_errors:
            failure.console_errors = parsed.get("console-errors") or scan_output(
                result.stdout + result.stderr, CONSOLE_MARKERS,
            )
        if self.config.include_network_errors:
            failure.network_errors = parsed.get("network-errors") or scan_output(
                result.stdout + result.stderr, NETWORK_MARKERS,
            )
        if self.config.include_screenshots and "screenshot" in parsed:
            failure.screenshot = parsed["screenshot"]

        self._persist(failure, parsed)
        logger.debug("Built failure context #%d for %s", test_index, failure.full_title)
        return failure

    def _build_page_state(self, parsed: dict[str, Any]) -> PageState | None:
        if not any(key in parsed for key in _PAGE_STATE_KEYS):
            return None

        state = PageState(url=parsed.get("page-url", ""))
        if "page-state" in parsed:
            try:
                merged = state.model_dump()
                merged.update(PageState.model_validate(parsed["page-state"]).model_dump(exclude_unset=True))
                state = PageState(**merged)
            except ValueError as e:
                logger.warning("Ignoring malformed page-state attachment: %s", e)

        if "page-title" in parsed:
            state.title = parsed["page-title"]
        if "visible-text" in parsed:
            state.visible_text = parsed["visible-text"]
        if "available-selectors" in parsed:
            state.available_selectors = dedupe_selectors(parsed["available-selectors"])
        if "html-snippet" in parsed:
            state.html_snippet = parsed["html-snippet"]
        if "action-history" in parsed:
            state.action_history = parsed["action-history"]
        if not state.url and "page-url" in parsed:
            state.url = parsed["page-url"]
        return state

    def _persist(self, failure: FailureContext, parsed: dict[str, Any]) -> None:
        """Write screenshots, traces and videos next to the reports."""
        test_dir = self.output_dir / failure.report_dir

        if failure.screenshot:
            try:
                test_dir.mkdir(parents=True, exist_ok=True)
                (test_dir / SCREENSHOT_FILE).write_bytes(failure.screenshot)
            except OSError as e:
                logger.warning("Could not save screenshot for %s: %s", failure.full_title, e)

        trace = parsed.get("trace")
        if trace is not None:
            trace_dir = self.output_dir / TRACES_DIR
            trace_name = f"{safe_name(failure.suite_name, failure.test_title)}-{failure.test_index}.zip"
            self._copy_payload(trace, trace_dir / trace_name)

        video = parsed.get("video")
        if video is not None and self.config.include_video:
            suffix = Path(video.path).suffix if video.path else ".webm"
            self._copy_payload(video, test_dir / f"video{suffix or '.webm'}")

    @staticmethod
    def _copy_payload(att: Attachment, dest: Path) -> None:
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if att.body is not None:
                dest.write_bytes(att.body)
            elif att.path and Path(att.path).exists():
                shutil.copyfile(att.path, dest)
            else:
                logger.debug("Attachment %s points to a missing file: %s", att.name, att.path)
        except OSError as e:
            logger.warning("Could not copy %s attachment to %s: %s", att.name, dest, e)

"""Run lifecycle orchestration. Collects failures and writes every report."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Iterable

from rich.console import Console
from rich.markup import escape

from agent_reporter.capture.selector_ranker import rank
from agent_reporter.models.config import ReporterConfig
from agent_reporter.models.test_result import FailureContext, RunSummary, TestMeta, TestResult
from agent_reporter.text_utils import relative_to_cwd

from .cleanup import clean_output_dir, warn_overlaps, write_manifest
from .context_builder import FailureContextBuilder, extract_failed_selector
from .formatters import ConsoleFormatter, FormatterOptions, MarkdownFormatter
from .json_report import JSON_REPORT_FILE, generate_json_report
from .markdown_report import (
    CONSOLIDATED_REPORT_FILE,
    SUMMARY_REPORT_FILE,
    TEST_REPORT_FILE,
    generate_consolidated_report,
    generate_summary_report,
    generate_test_report,
)

logger = logging.getLogger(__name__)

FAILED_STATUSES = ("failed", "timedOut")


class ReporterState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINALIZING = "finalizing"
    DONE = "done"


class ReporterStateError(RuntimeError):
    """A lifecycle callback arrived in a state that does not accept it."""


class AgentReporter:
    """Collects failure contexts during a run and writes reports at the end.

    Lifecycle: ``on_begin`` (IDLE → RUNNING), ``on_test_end`` any number of
    times while RUNNING, then ``on_end`` (RUNNING → FINALIZING → DONE).
    Callbacks may arrive from several threads; counters and the failure list
    are guarded by a single lock.
    """

    def __init__(self, config: ReporterConfig | None = None, console: Console | None = None):
        self.config = config or ReporterConfig()
        self.console = console or Console(highlight=False)
        self.output_dir = Path(self.config.output_dir)
        self.state = ReporterState.IDLE
        self.summary = RunSummary()
        self.failures: list[FailureContext] = []
        self.written: list[Path] = []

        self._lock = threading.Lock()
        self._test_index = 0
        self._start_time = 0.0

        options = FormatterOptions.from_config(self.config)
        self.builder = FailureContextBuilder(self.config, self.output_dir)
        self.console_formatter = ConsoleFormatter(options)
        self.markdown_formatter = MarkdownFormatter(
            options,
            collapsible=self.config.collapsible_sections,
            emoji=self.config.include_emoji,
        )
        # Per-test files are read by tools as much as by people: keep them plain.
        self.test_report_formatter = MarkdownFormatter(options, collapsible=False, emoji=False)

    @property
    def report_path(self) -> Path:
        name = CONSOLIDATED_REPORT_FILE if self.config.single_report_file else SUMMARY_REPORT_FILE
        return self.output_dir / name

    def _transition(self, expected: ReporterState, new: ReporterState) -> None:
        if self.state is not expected:
            raise ReporterStateError(
                f"Cannot move to {new.value}: reporter is {self.state.value}, expected {expected.value}"
            )
        self.state = new

    # ------------------------------------------------------------------
    # Lifecycle callbacks
    # ------------------------------------------------------------------

    def on_begin(
        self,
        collaborator_output_dirs: Iterable[str | Path] = (),
        total_tests: int | None = None,
        workers: int = 1,
    ) -> None:
        with self._lock:
            self._transition(ReporterState.IDLE, ReporterState.RUNNING)
            self._start_time = time.monotonic()

        logger.debug("Report output directory: %s", self.output_dir.resolve())
        warn_overlaps(self.output_dir, collaborator_output_dirs, self.console)
        clean_output_dir(self.output_dir, self.console)

        if not self.config.silent and total_tests is not None:
            plural = "s" if workers != 1 else ""
            self.console.print(f"\nRunning {total_tests} tests using {workers} worker{plural}\n")

    def on_test_end(self, meta: TestMeta, result: TestResult) -> FailureContext | None:
        failure = None
        with self._lock:
            if self.state is not ReporterState.RUNNING:
                raise ReporterStateError(f"Test result received while reporter is {self.state.value}")
            self._test_index += 1
            index = self._test_index
            self.summary.total += 1
            if result.status == "passed":
                self.summary.passed += 1
            elif result.status in FAILED_STATUSES:
                self.summary.failed += 1
            else:
                self.summary.skipped += 1

            if result.status in FAILED_STATUSES:
                failure = self.builder.build(meta, None, result, index)
                self.failures.append(failure)
                self._record_artifacts(failure)

        if not self.config.silent:
            self._print_status(meta, result, index)
        return failure

    def on_end(self) -> RunSummary:
        with self._lock:
            self._transition(ReporterState.RUNNING, ReporterState.FINALIZING)
            self.summary.duration_seconds = round(time.monotonic() - self._start_time, 2)
            summary = self.summary.model_copy()
            failures = list(self.failures)

        for failure in failures:
            rank_failure_selectors(failure)

        self._write_reports(summary, failures)

        if not self.config.silent:
            if failures:
                self.console.print()
                self._print_detailed_failures(failures)
            self._print_summary(summary, failures)

        with self._lock:
            self._transition(ReporterState.FINALIZING, ReporterState.DONE)
        return summary

    # ------------------------------------------------------------------
    # Report files
    # ------------------------------------------------------------------

    def _write_reports(self, summary: RunSummary, failures: list[FailureContext]) -> None:
        """Write every report file. I/O errors are logged, never raised."""
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Could not create report directory %s: %s", self.output_dir, e)
            return

        for failure in failures:
            path = self.output_dir / failure.report_dir / TEST_REPORT_FILE
            self._write(path, lambda: generate_test_report(failure, self.test_report_formatter, path))

        if self.config.single_report_file:
            self._write(self.report_path, lambda: generate_consolidated_report(
                summary, failures, self.markdown_formatter, self.report_path,
            ))
        else:
            self._write(self.report_path, lambda: generate_summary_report(
                summary, failures, self.report_path, emoji=self.config.include_emoji,
            ))

        json_path = self.output_dir / JSON_REPORT_FILE
        self._write(json_path, lambda: generate_json_report(summary, failures, json_path))

        try:
            write_manifest(self.output_dir, [f.report_dir for f in failures])
        except OSError as e:
            logger.warning("Could not write report manifest: %s", e)

    def _record_artifacts(self, failure: FailureContext) -> None:
        """List a per-test directory in the manifest as soon as it exists on disk."""
        if not (self.output_dir / failure.report_dir).is_dir():
            return
        try:
            write_manifest(self.output_dir, [failure.report_dir])
        except OSError as e:
            logger.warning("Could not update report manifest: %s", e)

    def _write(self, path: Path, writer) -> None:
        try:
            writer()
        except OSError as e:
            logger.error("Failed to write %s: %s", path, e)
            return
        self.written.append(path)
        logger.debug("Wrote %s", path)

    # ------------------------------------------------------------------
    # Terminal output
    # ------------------------------------------------------------------

    def _print_status(self, meta: TestMeta, result: TestResult, index: int) -> None:
        icon = {
            "passed": "[green]✓[/green]",
            "failed": "[red]✘[/red]",
            "timedOut": "[red]✘[/red]",
        }.get(result.status, "[yellow]-[/yellow]")
        location = f"{relative_to_cwd(meta.file)}:{meta.line}"
        title = f"{meta.suite_name} › {meta.title}" if meta.suite_name else meta.title
        self.console.print(
            f"  {icon} {index} {escape(location)} › {escape(title)} ({result.duration}ms)"
        )

    def _print_detailed_failures(self, failures: list[FailureContext]) -> None:
        limit = self.config.max_inline_errors
        truncate = not self.config.verbose_errors or len(failures) > limit
        shown = failures[:limit] if truncate else failures

        for position, failure in enumerate(shown, 1):
            data = self.console_formatter.extract_error_data(failure, position)
            if data.screenshot_path:
                data.screenshot_path = str(self.output_dir / failure.report_dir / data.screenshot_path)
            self.console.print(self.console_formatter.format_error(data))
            self.console.print()

        hidden = len(failures) - len(shown)
        if hidden > 0:
            self.console.print(
                f"  ... and {hidden} more failure{'s' if hidden != 1 else ''}. "
                f"See {escape(str(self.report_path))} for all failures."
            )

    def _print_summary(self, summary: RunSummary, failures: list[FailureContext]) -> None:
        if summary.failed:
            self.console.print(f"\n  [red]{summary.failed} failed[/red]")
            if summary.passed:
                self.console.print(f"  [green]{summary.passed} passed[/green]")
            if summary.skipped:
                self.console.print(f"  [yellow]{summary.skipped} skipped[/yellow]")
            self.console.print(f"  {summary.total} total")
            self.console.print(f"  Finished in {summary.duration_seconds:.1f}s")
            if failures:
                self.console.print(f"\n  📝 Detailed error report: {escape(str(self.report_path))}")
        else:
            self.console.print(
                f"\n  [green]{summary.passed} passed[/green] ({summary.duration_seconds:.1f}s)"
            )


def rank_failure_selectors(failure: FailureContext) -> None:
    """Reorder a failure's selectors by relevance to the selector it failed on."""
    state = failure.page_state
    if state is None or not state.available_selectors:
        return
    target = extract_failed_selector(failure.error.message)
    if target:
        state.available_selectors = rank(target, state.available_selectors)

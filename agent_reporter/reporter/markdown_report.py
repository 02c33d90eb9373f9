"""Markdown report generation: consolidated, summary and per-test documents."""

from __future__ import annotations

import logging
from pathlib import Path

from agent_reporter.models.test_result import FailureContext, RunSummary

from .context_builder import is_timeout_message
from .formatters import MarkdownFormatter, is_element_not_found, reproduction_command

logger = logging.getLogger(__name__)

CONSOLIDATED_REPORT_FILE = "error-context.md"
SUMMARY_REPORT_FILE = "SUMMARY.md"
TEST_REPORT_FILE = "report.md"

CATEGORY_TITLES = {
    "timeout": "Timeouts",
    "element-not-found": "Element Not Found",
    "assertion": "Assertion Failures",
    "other": "Other Failures",
}


def categorize_failure(failure: FailureContext) -> str:
    """Coarse failure category used to group reports."""
    message = failure.error.message or ""
    if failure.timed_out or is_timeout_message(message):
        return "timeout"
    if is_element_not_found(message):
        return "element-not-found"
    if "assert" in message.lower() or "expect" in message.lower():
        return "assertion"
    return "other"


def group_failures(failures: list[FailureContext]) -> dict[str, list[FailureContext]]:
    """Failures by category, in CATEGORY_TITLES order; empty categories left out."""
    groups: dict[str, list[FailureContext]] = {key: [] for key in CATEGORY_TITLES}
    for failure in failures:
        groups[categorize_failure(failure)].append(failure)
    return {key: items for key, items in groups.items() if items}


def _statistics(summary: RunSummary, emoji: bool) -> str:
    marks = (" ✅", " ❌", " ⏭️") if emoji else ("", "", "")
    return (
        f"- **Total Tests**: {summary.total}\n"
        f"- **Passed**: {summary.passed}{marks[0]}\n"
        f"- **Failed**: {summary.failed}{marks[1]}\n"
        f"- **Skipped**: {summary.skipped}{marks[2]}\n"
        f"- **Duration**: {summary.duration_seconds:.2f}s\n\n"
    )


def _quick_fix_commands(failures: list[FailureContext]) -> str:
    commands = "\n".join(reproduction_command(f) for f in failures)
    return f"## Quick Fix Commands\n\n```bash\n# Run all failed tests\n{commands}\n```\n"


def _first_line(text: str) -> str:
    return text.strip().split("\n", 1)[0] if text.strip() else "Unknown error"


def render_consolidated_report(
    summary: RunSummary,
    failures: list[FailureContext],
    formatter: MarkdownFormatter,
) -> str:
    """Summary plus every failure in full, grouped by category."""
    report = "# Test Error Context Report\n\n## Summary\n"
    report += _statistics(summary, formatter.emoji)

    if not failures:
        return report + ("No failures to report! 🎉\n" if formatter.emoji else "No failures to report!\n")

    groups = group_failures(failures)
    report += "## Failures by Category\n\n"
    for key, items in groups.items():
        report += f"- **{CATEGORY_TITLES[key]}** ({len(items)})\n"
        for f in items:
            report += f"  - #{f.test_index} {f.full_title} ([details](./{f.report_dir}/{TEST_REPORT_FILE}))\n"
    report += "\n---\n\n"

    for key, items in groups.items():
        report += f"# {CATEGORY_TITLES[key]}\n\n"
        for f in items:
            data = formatter.extract_error_data(f)
            if data.screenshot_path:
                # links are relative to the output directory here
                data.screenshot_path = f"{f.report_dir}/{data.screenshot_path}"
            report += formatter.format_error(data)
            report += f"\nPer-test report: [{f.report_dir}/{TEST_REPORT_FILE}](./{f.report_dir}/{TEST_REPORT_FILE})\n"
            report += "\n---\n\n"

    return report + _quick_fix_commands(failures)


def render_summary_report(summary: RunSummary, failures: list[FailureContext], emoji: bool = True) -> str:
    """Statistics plus one linked entry per failure."""
    report = "# Test Execution Summary\n\n## Statistics\n"
    report += _statistics(summary, emoji)
    if not failures:
        return report

    report += "## Failed Tests\n\n"
    for key, items in group_failures(failures).items():
        report += f"### {CATEGORY_TITLES[key]}\n\n"
        for f in items:
            report += f"#### {'❌ ' if emoji else ''}{f.full_title}\n"
            report += f"- **Location**: {f.test_file}:{f.line_number or 'unknown'}\n"
            report += f"- **Error**: {_first_line(f.error.message)}\n"
            report += f"- **Details**: [View Report](./{f.report_dir}/{TEST_REPORT_FILE})\n\n"

    return report + _quick_fix_commands(failures)


def render_test_report(failure: FailureContext, formatter: MarkdownFormatter) -> str:
    """Full rendered context of one failure."""
    report = f"# Test Failure: {failure.full_title}\n\n"
    report += f"- **Location**: {failure.test_file}:{failure.line_number}\n"
    report += f"- **Category**: {CATEGORY_TITLES[categorize_failure(failure)]}\n"
    if failure.retry_count:
        report += f"- **Retry**: {failure.retry_count}\n"
    report += "\n"
    return report + formatter.format_error(formatter.extract_error_data(failure))


def generate_consolidated_report(
    summary: RunSummary,
    failures: list[FailureContext],
    formatter: MarkdownFormatter,
    output_path: Path,
) -> None:
    output_path.write_text(render_consolidated_report(summary, failures, formatter), encoding="utf-8")


def generate_summary_report(
    summary: RunSummary,
    failures: list[FailureContext],
    output_path: Path,
    emoji: bool = True,
) -> None:
    output_path.write_text(render_summary_report(summary, failures, emoji), encoding="utf-8")


def generate_test_report(failure: FailureContext, formatter: MarkdownFormatter, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_test_report(failure, formatter), encoding="utf-8")
    logger.debug("Wrote %s", output_path)

"""JSON report output."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from agent_reporter.models.test_result import FailureContext, RunSummary

from .context_builder import SCREENSHOT_FILE
from .formatters import reproduction_command
from .markdown_report import TEST_REPORT_FILE, categorize_failure

JSON_REPORT_FILE = "failures.json"


def generate_json_report(
    summary: RunSummary,
    failures: list[FailureContext],
    output_path: Path,
) -> None:
    """Write a machine-readable JSON report."""
    report: dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "summary": summary.model_dump(),
        "failures": [
            {
                **f.model_dump(),
                "full_title": f.full_title,
                "category": categorize_failure(f),
                "report": f"{f.report_dir}/{TEST_REPORT_FILE}",
                "screenshot": f"{f.report_dir}/{SCREENSHOT_FILE}" if f.screenshot else None,
                "reproduction_command": reproduction_command(f),
            }
            for f in failures
        ],
    }

    with open(output_path, "w") as f:
        json.dump(report, f, indent=2, default=str)


def load_json_report(path: Path) -> dict[str, Any]:
    """Read a report written by generate_json_report."""
    if not path.exists():
        raise FileNotFoundError(f"Report not found: {path}")
    with open(path) as f:
        return json.load(f)

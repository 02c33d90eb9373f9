"""Tests for JSON report generation."""

import json
from pathlib import Path

import pytest

from agent_reporter.models.test_result import RunSummary, TestError
from agent_reporter.reporter.json_report import generate_json_report, load_json_report


class TestGenerateJsonReport:
    """Tests for generate_json_report function."""

    def test_generate_basic_report(self, tmp_path: Path):
        """Test generating a report without failures."""
        summary = RunSummary(total=2, passed=2, duration_seconds=1.5)
        output_file = tmp_path / "failures.json"

        generate_json_report(summary, [], output_file)

        with open(output_file) as f:
            data = json.load(f)
        assert data["summary"]["total"] == 2
        assert data["summary"]["passed"] == 2
        assert data["failures"] == []
        assert data["generated_at"]

    def test_failure_entries(self, tmp_path: Path, failure_context):
        """Test each failure carries its derived fields."""
        output_file = tmp_path / "failures.json"
        generate_json_report(RunSummary(total=1, failed=1), [failure_context], output_file)

        entry = load_json_report(output_file)["failures"][0]

        assert entry["full_title"] == "TestAuth › test_login"
        assert entry["category"] == "element-not-found"
        assert entry["report"] == "testauth-test-login-1/report.md"
        assert entry["screenshot"] == "testauth-test-login-1/screenshot.png"
        assert entry["reproduction_command"] == 'pytest "tests/test_login.py::TestAuth::test_login"'
        assert entry["page_state"]["available_selectors"][0] == "#login-btn"
        assert entry["error"]["message"].startswith("Error: locator('#missing')")

    def test_without_screenshot(self, tmp_path: Path, failure_context):
        failure_context.screenshot = None
        failure_context.error = TestError(message="AssertionError: assert 1 == 2")
        output_file = tmp_path / "failures.json"

        generate_json_report(RunSummary(total=1, failed=1), [failure_context], output_file)

        entry = load_json_report(output_file)["failures"][0]
        assert entry["screenshot"] is None
        assert entry["category"] == "assertion"

    def test_load_missing_report(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_json_report(tmp_path / "failures.json")

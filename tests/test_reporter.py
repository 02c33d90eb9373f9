"""Tests for the reporter lifecycle and report output."""

import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from agent_reporter.models.config import DO_NOT_REMOVE_ENV, ReporterConfig
from agent_reporter.models.test_result import Attachment, TestError, TestResult
from agent_reporter.reporter.cleanup import read_manifest
from agent_reporter.reporter.json_report import load_json_report
from agent_reporter.reporter.reporter import AgentReporter, ReporterState, ReporterStateError

NOT_FOUND = "Error: locator('#missing').click: element not found"
REPORT_DIR = Path("agent-reports")


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def not_found_result() -> TestResult:
    return TestResult(
        status="failed",
        duration=812,
        errors=[TestError(message=NOT_FOUND)],
        attachments=[
            Attachment.text("page-url", "https://example.com/login"),
            Attachment.text("available-selectors", json.dumps(["#header", ".footer", "#missing2"])),
            Attachment(name="screenshot", content_type="image/png", body=b"\x89PNG fake"),
        ],
    )


def _reporter(console, **overrides) -> AgentReporter:
    return AgentReporter(ReporterConfig(**overrides), console)


class TestLifecycle:
    """Tests for state transitions and counters."""

    def test_happy_path_states(self, console, test_meta):
        reporter = _reporter(console)
        assert reporter.state is ReporterState.IDLE

        reporter.on_begin()
        assert reporter.state is ReporterState.RUNNING

        reporter.on_test_end(test_meta, TestResult(status="passed"))
        summary = reporter.on_end()

        assert reporter.state is ReporterState.DONE
        assert summary.total == 1 and summary.passed == 1

    def test_result_before_begin_is_rejected(self, console, test_meta):
        reporter = _reporter(console)
        with pytest.raises(ReporterStateError):
            reporter.on_test_end(test_meta, TestResult(status="passed"))

    def test_end_before_begin_is_rejected(self, console):
        with pytest.raises(ReporterStateError):
            _reporter(console).on_end()

    def test_begin_twice_is_rejected(self, console):
        reporter = _reporter(console)
        reporter.on_begin()
        with pytest.raises(ReporterStateError):
            reporter.on_begin()

    def test_result_after_end_is_rejected(self, console, test_meta):
        reporter = _reporter(console)
        reporter.on_begin()
        reporter.on_end()
        with pytest.raises(ReporterStateError):
            reporter.on_test_end(test_meta, TestResult(status="passed"))

    def test_counts(self, console, test_meta):
        reporter = _reporter(console)
        reporter.on_begin()
        for status in ("passed", "passed", "failed", "timedOut", "skipped"):
            reporter.on_test_end(test_meta, TestResult(status=status, errors=[TestError(message="boom")]))
        summary = reporter.on_end()

        assert (summary.total, summary.passed, summary.failed, summary.skipped) == (5, 2, 2, 1)
        assert [f.test_index for f in reporter.failures] == [3, 4]
        assert reporter.failures[1].timed_out

    def test_concurrent_results(self, console, test_meta):
        reporter = _reporter(console, silent=True)
        reporter.on_begin()

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(
                lambda i: reporter.on_test_end(
                    test_meta,
                    TestResult(status="failed" if i % 5 == 0 else "passed", errors=[TestError(message="x")]),
                ),
                range(50),
            ))
        summary = reporter.on_end()

        assert summary.total == 50
        assert summary.failed == 10
        indexes = [f.test_index for f in reporter.failures]
        assert len(set(indexes)) == len(indexes)
        assert len({f.report_dir for f in reporter.failures}) == 10

    def test_begin_announces_run(self, console):
        _reporter(console).on_begin(total_tests=3, workers=2)
        assert "Running 3 tests using 2 workers" in console.export_text()


class TestElementNotFound:
    """A locator failure produces ranked selectors and suggestions everywhere."""

    def test_selectors_ranked_and_suggested(self, console, test_meta, not_found_result):
        reporter = _reporter(console)
        reporter.on_begin()
        reporter.on_test_end(test_meta, not_found_result)
        reporter.on_end()

        failure = reporter.failures[0]
        assert failure.page_state.available_selectors[0] == "#missing2"

        consolidated = (REPORT_DIR / "error-context.md").read_text()
        assert "Did you mean:**\n```\n#missing2\n```" in consolidated
        assert "# Element Not Found" in consolidated
        assert "[details](./testauth-test-login-1/report.md)" in consolidated

        per_test = (REPORT_DIR / "testauth-test-login-1" / "report.md").read_text()
        assert per_test.startswith("# Test Failure: TestAuth › test_login")
        assert "Did you mean:**\n```\n#missing2\n```" in per_test
        assert "<details>" not in per_test

        assert "💡 Did you mean: #missing2" in console.export_text()

    def test_per_test_report_keeps_rank_order(self, console, test_meta):
        result = TestResult(
            status="failed",
            errors=[TestError(message=NOT_FOUND)],
            attachments=[Attachment.text("available-selectors", json.dumps([
                "button:has-text(\"Save\")", "a:has-text(\"Home\")", "[name=\"q\"]", "#missing2",
            ]))],
        )
        reporter = _reporter(console)
        reporter.on_begin()
        reporter.on_test_end(test_meta, result)
        reporter.on_end()

        per_test = (REPORT_DIR / "testauth-test-login-1" / "report.md").read_text()
        present = per_test.split("actually present on the page (most relevant first)")[1]
        assert present.index("#missing2") < present.index("button:has-text(\"Save\")")

    def test_artifacts_written(self, console, test_meta, not_found_result):
        reporter = _reporter(console)
        reporter.on_begin()
        reporter.on_test_end(test_meta, not_found_result)
        reporter.on_end()

        assert (REPORT_DIR / "testauth-test-login-1" / "screenshot.png").read_bytes() == b"\x89PNG fake"
        assert read_manifest(REPORT_DIR) == ["testauth-test-login-1"]

        data = load_json_report(REPORT_DIR / "failures.json")
        assert data["summary"]["failed"] == 1
        entry = data["failures"][0]
        assert entry["category"] == "element-not-found"
        assert entry["report"] == "testauth-test-login-1/report.md"
        assert entry["screenshot"] == "testauth-test-login-1/screenshot.png"
        assert entry["full_title"] == "TestAuth › test_login"
        assert entry["page_state"]["url"] == "https://example.com/login"


class TestReportFiles:
    """Tests for report layout, cleanup and resilience."""

    def test_summary_mode(self, console, test_meta, failed_result):
        reporter = _reporter(console, single_report_file=False)
        reporter.on_begin()
        reporter.on_test_end(test_meta, failed_result)
        reporter.on_end()

        assert not (REPORT_DIR / "error-context.md").exists()
        summary = (REPORT_DIR / "SUMMARY.md").read_text()
        assert summary.startswith("# Test Execution Summary")
        assert "[View Report](./testauth-test-login-1/report.md)" in summary
        assert (REPORT_DIR / "testauth-test-login-1" / "report.md").exists()
        assert "SUMMARY.md" in console.export_text()

    def test_no_failures(self, console, test_meta):
        reporter = _reporter(console)
        reporter.on_begin()
        reporter.on_test_end(test_meta, TestResult(status="passed"))
        reporter.on_end()

        assert "No failures to report!" in (REPORT_DIR / "error-context.md").read_text()
        assert "1 passed" in console.export_text()

    def test_previous_artifacts_removed_on_begin(self, console, test_meta, failed_result):
        first = _reporter(console)
        first.on_begin()
        first.on_test_end(test_meta, failed_result)
        first.on_end()
        (REPORT_DIR / "notes.md").write_text("mine")

        second = _reporter(console)
        second.on_begin()

        assert not (REPORT_DIR / "testauth-test-login-1").exists()
        assert not (REPORT_DIR / "error-context.md").exists()
        assert (REPORT_DIR / "notes.md").read_text() == "mine"

    def test_kept_reports_stay_owned(self, console, test_meta, failed_result, monkeypatch):
        first = _reporter(console)
        first.on_begin()
        first.on_test_end(test_meta, failed_result)
        first.on_end()

        monkeypatch.setenv(DO_NOT_REMOVE_ENV, "1")
        second = _reporter(console)
        second.on_begin()
        second.on_test_end(test_meta.model_copy(update={"title": "test_logout"}), failed_result)
        second.on_end()

        assert read_manifest(REPORT_DIR) == ["testauth-test-login-1", "testauth-test-logout-1"]

        monkeypatch.delenv(DO_NOT_REMOVE_ENV)
        _reporter(console).on_begin()
        assert not (REPORT_DIR / "testauth-test-login-1").exists()
        assert not (REPORT_DIR / "testauth-test-logout-1").exists()

    def test_interrupted_run_is_cleaned_up(self, console, test_meta, failed_result):
        crashed = _reporter(console)
        crashed.on_begin()
        crashed.on_test_end(test_meta, failed_result)

        assert read_manifest(REPORT_DIR) == ["testauth-test-login-1"]

        _reporter(console).on_begin()
        assert not (REPORT_DIR / "testauth-test-login-1").exists()

    def test_overlap_warning(self, console):
        _reporter(console).on_begin(collaborator_output_dirs=["agent-reports/playwright"])
        assert "Configuration Warning" in console.export_text()

    def test_inline_cap(self, console, test_meta, failed_result):
        reporter = _reporter(console, max_inline_errors=2)
        reporter.on_begin()
        for _ in range(4):
            reporter.on_test_end(test_meta, failed_result)
        reporter.on_end()

        out = console.export_text()
        assert "... and 2 more failures. See agent-reports/error-context.md for all failures." in out
        assert "4 failed" in out
        assert "📝 Detailed error report: agent-reports/error-context.md" in out
        # every failure still reaches the file
        assert (REPORT_DIR / "error-context.md").read_text().count("Per-test report:") == 4

    def test_unwritable_output_keeps_counts(self, console, test_meta, failed_result, workdir):
        (workdir / "agent-reports").write_text("a file, not a directory")
        reporter = _reporter(console)
        reporter.on_begin()
        reporter.on_test_end(test_meta, failed_result)
        reporter.on_test_end(test_meta, TestResult(status="passed"))

        summary = reporter.on_end()

        assert (summary.total, summary.passed, summary.failed) == (2, 1, 1)
        assert reporter.written == []
        assert reporter.state is ReporterState.DONE

    def test_silent(self, console, test_meta, failed_result):
        reporter = _reporter(console, silent=True)
        reporter.on_begin(total_tests=1)
        reporter.on_test_end(test_meta, failed_result)
        reporter.on_end()

        assert console.export_text() == ""
        assert (REPORT_DIR / "error-context.md").exists()

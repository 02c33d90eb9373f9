"""Pytest plugin wiring AgentReporter into the run, plus the
``capture_session`` fixture for Playwright tests.

Enable with ``--agent-report`` or ``agent_report = true`` in the ini file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from rich.console import Console

from agent_reporter.models.config import DEFAULT_CONFIG_FILE, ReporterConfig
from agent_reporter.models.test_result import Attachment, TestError, TestMeta, TestResult
from agent_reporter.reporter.context_builder import extract_failed_selector
from agent_reporter.reporter.reporter import AgentReporter
from agent_reporter.tracking.session import CaptureSession

logger = logging.getLogger(__name__)

ATTACHMENTS_ATTR = "agent_reporter_attachments"
TIMEOUT_MARKERS = ("Timeout >", "Timeout (>", "from pytest-timeout")

config_key = pytest.StashKey[ReporterConfig]()
phase_reports_key = pytest.StashKey[dict]()
attachments_key = pytest.StashKey[list]()


def pytest_addoption(parser):
    group = parser.getgroup("agent-reporter", "agent-friendly failure reports")
    group.addoption(
        "--agent-report", action="store_true", default=False,
        help="Write failure context reports for coding agents.",
    )
    group.addoption(
        "--agent-report-dir", default=None,
        help="Directory for failure reports (default: agent-reports).",
    )
    group.addoption(
        "--agent-report-config", default=None,
        help=f"Reporter config file (default: {DEFAULT_CONFIG_FILE} in the rootdir, if present).",
    )
    group.addoption(
        "--agent-report-silent", action="store_true", default=False,
        help="Write reports without printing failure details.",
    )
    parser.addini("agent_report", type="bool", default=False, help="Enable the agent reporter.")


def load_reporter_config(config: pytest.Config) -> ReporterConfig:
    path = config.getoption("agent_report_config")
    if path:
        cfg = ReporterConfig.load(path)
    elif (config.rootpath / DEFAULT_CONFIG_FILE).exists():
        cfg = ReporterConfig.load(config.rootpath / DEFAULT_CONFIG_FILE)
    else:
        cfg = ReporterConfig()

    updates: dict[str, Any] = {}
    if config.getoption("agent_report_dir"):
        updates["output_dir"] = config.getoption("agent_report_dir")
    if config.getoption("agent_report_silent"):
        updates["silent"] = True
    return cfg.model_copy(update=updates) if updates else cfg


def pytest_configure(config: pytest.Config) -> None:
    config.stash[config_key] = load_reporter_config(config)

    enabled = config.getoption("agent_report") or config.getini("agent_report")
    # xdist workers forward their reports; only the controller writes files.
    if not enabled or hasattr(config, "workerinput"):
        return

    reporter = AgentReporter(config.stash[config_key], Console(highlight=False, soft_wrap=True))
    config.pluginmanager.register(AgentReporterPlugin(reporter, config), "agent-reporter-session")


@pytest.hookimpl(wrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo):
    report = yield
    item.stash.setdefault(phase_reports_key, {})[report.when] = report
    if report.when == "teardown":
        attachments = item.stash.get(attachments_key, None)
        if attachments:
            setattr(report, ATTACHMENTS_ATTR, [a.to_wire() for a in attachments])
    return report


@pytest_asyncio.fixture
async def capture_session(request: pytest.FixtureRequest):
    """Per-test capture session. Track pages with ``capture_session.track(page)``.

    When the test fails, page state, action history, console/network errors
    and a screenshot are attached to the test report.
    """
    cfg = request.config.stash.get(config_key, None) or ReporterConfig()
    session = CaptureSession(
        history_size=cfg.action_history_size,
        capture_timeout=cfg.capture_timeout_seconds,
    )
    try:
        yield session
        reports = request.node.stash.get(phase_reports_key, {})
        failed = next((r for r in reports.values() if r.failed), None)
        if failed is not None:
            request.node.stash[attachments_key] = await session.collect_attachments(
                include_screenshot=cfg.include_screenshots,
                failed_selector=extract_failed_selector(failure_message(failed)),
            )
    finally:
        session.close()


class AgentReporterPlugin:
    """Feeds pytest's per-phase reports into an AgentReporter."""

    def __init__(self, reporter: AgentReporter, config: pytest.Config):
        self.reporter = reporter
        self.config = config
        self._pending: dict[str, list[pytest.TestReport]] = {}

    def pytest_sessionstart(self, session: pytest.Session) -> None:
        collaborator_dirs = []
        # pytest-playwright's artifact directory
        playwright_output = self.config.getoption("output", default=None)
        if playwright_output:
            collaborator_dirs.append(playwright_output)
        workers = getattr(self.config.option, "numprocesses", None) or 1
        self.reporter.on_begin(collaborator_output_dirs=collaborator_dirs, workers=workers)

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        self._pending.setdefault(report.nodeid, []).append(report)
        if report.when != "teardown":
            return
        reports = self._pending.pop(report.nodeid)
        meta, result = build_test_outcome(reports, self.config.rootpath)
        self.reporter.on_test_end(meta, result)

    @pytest.hookimpl(trylast=True)
    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        self.reporter.on_end()


def _split_domain(domain: str) -> tuple[str, str]:
    """'TestLogin.test_submit[chromium]' -> ('TestLogin', 'test_submit[chromium]')."""
    base, bracket, params = domain.partition("[")
    suite, _, title = base.rpartition(".")
    return suite, title + bracket + params


def _error_line(longrepr: Any, test_file: str) -> int | None:
    """Line of the deepest traceback entry inside the test file itself."""
    entries = getattr(getattr(longrepr, "reprtraceback", None), "reprentries", None) or []
    line = None
    for entry in entries:
        loc = getattr(entry, "reprfileloc", None)
        if loc is not None and os.path.abspath(loc.path) == test_file:
            line = loc.lineno
    return line


def failure_message(report: pytest.TestReport) -> str:
    crash = getattr(report.longrepr, "reprcrash", None)
    return crash.message if crash is not None else str(report.longrepr or "")


def error_from_report(report: pytest.TestReport, test_file: str) -> TestError:
    return TestError(
        message=failure_message(report),
        stack=report.longreprtext or None,
        line=_error_line(report.longrepr, test_file),
    )


def _status(reports: list[pytest.TestReport], error: TestError | None) -> str:
    if any(r.failed for r in reports):
        if error and any(marker in error.message for marker in TIMEOUT_MARKERS):
            return "timedOut"
        return "failed"
    if any(r.skipped for r in reports):
        return "skipped"
    return "passed"


def build_test_outcome(
    reports: list[pytest.TestReport], rootpath: Path,
) -> tuple[TestMeta, TestResult]:
    """Turn the setup/call/teardown reports of one test into TestMeta/TestResult."""
    last = reports[-1]
    rel_path, lineno, domain = last.location
    test_file = os.path.abspath(Path(rootpath) / rel_path)
    suite, title = _split_domain(domain)

    meta = TestMeta(
        title=title,
        suite_name=suite,
        file=test_file,
        line=(lineno or 0) + 1,
        node_id=last.nodeid,
    )

    failed = next((r for r in reports if r.failed), None)
    error = error_from_report(failed, test_file) if failed is not None else None

    attachments = []
    for report in reports:
        for wire in getattr(report, ATTACHMENTS_ATTR, None) or []:
            try:
                attachments.append(Attachment.from_wire(wire))
            except (KeyError, ValueError) as e:
                logger.warning("Dropping malformed attachment on %s: %s", report.nodeid, e)

    result = TestResult(
        status=_status(reports, error),
        duration=int(sum(r.duration for r in reports) * 1000),
        retry_count=getattr(last, "rerun", 0) or 0,
        stdout=[last.capstdout] if last.capstdout else [],
        stderr=[last.capstderr] if last.capstderr else [],
        errors=[error] if error else [],
        attachments=attachments,
    )
    return meta, result

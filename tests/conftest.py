"""Pytest configuration and shared fixtures."""

import io
import json
from unittest.mock import AsyncMock, Mock

import pytest
from playwright.async_api import Page
from rich.console import Console

from agent_reporter.capture.page_state import (
    AVAILABLE_SELECTORS_SCRIPT,
    HTML_CONTEXT_SCRIPT,
    VISIBLE_TEXT_SCRIPT,
)
from agent_reporter.models.config import DO_NOT_REMOVE_ENV, ReporterConfig
from agent_reporter.models.page_state import PageState
from agent_reporter.models.test_result import (
    Attachment,
    FailureContext,
    TestError,
    TestMeta,
    TestResult,
)

pytest_plugins = ["pytester", "agent_reporter.plugin"]


PAGE_SELECTORS = [
    "#login-btn",
    "button:has-text(\"Sign in\")",
    "[name=\"email\"]",
    "[placeholder=\"Password\"]",
    "a:has-text(\"Forgot password\")",
    "#login-form",
    ".modal",
]


@pytest.fixture(autouse=True)
def _allow_cleanup(monkeypatch):
    """Keep a developer's cleanup override from leaking into tests."""
    monkeypatch.delenv(DO_NOT_REMOVE_ENV, raising=False)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def reporter_config() -> ReporterConfig:
    """Reporter configuration with a relative output directory."""
    return ReporterConfig(output_dir="agent-reports")


@pytest.fixture
def console() -> Console:
    """A recording console that never wraps lines."""
    return Console(file=io.StringIO(), width=200, record=True, highlight=False)


# ============================================================================
# Test Outcome Fixtures
# ============================================================================


@pytest.fixture
def test_meta(tmp_path) -> TestMeta:
    """Metadata of a test in a real file, so code snippets can be read."""
    test_file = tmp_path / "test_login.py"
    test_file.write_text(
        "import pytest\n"
        "\n"
        "async def test_login(page):\n"
        "    await page.goto('https://example.com/login')\n"
        "    await page.locator('#missing').click()\n"
        "    assert True\n"
    )
    return TestMeta(
        title="test_login",
        suite_name="TestAuth",
        file=str(test_file),
        line=3,
        node_id="test_login.py::TestAuth::test_login",
    )


@pytest.fixture
def page_state_attachments() -> list[Attachment]:
    """Structured attachments as produced by a CaptureSession."""
    state = {
        "url": "https://example.com/login",
        "title": "Login",
        "visibleText": "Welcome | Sign in",
        "availableSelectors": ["#login-btn"],
        "actionHistory": ["2024-01-01T00:00:00.000Z - → Navigating to: https://example.com/login"],
    }
    return [
        Attachment.text("page-state", json.dumps(state), "application/json"),
        Attachment.text("page-title", "Login"),
        Attachment.text("available-selectors", json.dumps(PAGE_SELECTORS), "application/json"),
        Attachment.text("console-errors", json.dumps(["[Console Error] boom"]), "application/json"),
        Attachment(name="screenshot", content_type="image/png", body=b"\x89PNG fake"),
    ]


@pytest.fixture
def failed_result(page_state_attachments) -> TestResult:
    return TestResult(
        status="failed",
        duration=1234,
        errors=[TestError(message="Error: locator('#missing').click: element not found")],
        attachments=page_state_attachments,
    )


@pytest.fixture
def failure_context() -> FailureContext:
    """A fully populated failure context."""
    return FailureContext(
        test_title="test_login",
        suite_name="TestAuth",
        test_file="tests/test_login.py",
        line_number=10,
        node_id="tests/test_login.py::TestAuth::test_login",
        error=TestError(
            message="Error: locator('#missing').click: element not found",
            stack="tests/test_login.py:12: in test_login",
            snippet="  10 |     await page.goto(url)\n> 12 |     await page.locator('#missing').click()",
        ),
        stdout=["navigating"],
        duration=1500,
        test_index=1,
        console_errors=["[Console Error] Uncaught TypeError"],
        network_errors=["GET https://example.com/api - net::ERR_FAILED"],
        screenshot=b"\x89PNG fake",
        page_state=PageState(
            url="https://example.com/login",
            title="Login",
            visible_text="Welcome | Sign in",
            available_selectors=PAGE_SELECTORS,
            html_snippet="<form id=\"login-form\"></form>",
            action_history=["→ Navigating to: https://example.com/login", "→ Clicking: #missing"],
        ),
        report_dir="testauth-test-login-1",
    )


# ============================================================================
# Mock Browser Fixtures
# ============================================================================


async def _fake_evaluate(script, arg=None):
    if script == VISIBLE_TEXT_SCRIPT:
        return "Welcome | Sign in | Forgot password"
    if script == AVAILABLE_SELECTORS_SCRIPT:
        return PAGE_SELECTORS + ["#login-btn"]
    if script == HTML_CONTEXT_SCRIPT:
        return "<form id='login-form'>  <script>track()</script>\n<input name='email'></form>"
    return None


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright page serving a small login screen."""
    page = AsyncMock(spec=Page)
    page.url = "https://example.com/login"
    page.title = AsyncMock(return_value="Login")
    page.evaluate = AsyncMock(side_effect=_fake_evaluate)
    page.screenshot = AsyncMock(return_value=b"\x89PNG fake")
    page.goto = AsyncMock()
    page.click = AsyncMock()
    page.fill = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.on = Mock()
    page.remove_listener = Mock()
    return page

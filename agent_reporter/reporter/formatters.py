"""Render a FailureContext for the terminal or as Markdown."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field
from rich.markup import escape

from agent_reporter.capture.selector_ranker import suggest
from agent_reporter.models.config import ReporterConfig
from agent_reporter.models.test_result import FailureContext
from agent_reporter.text_utils import (
    relative_to_cwd,
    strip_ansi,
    truncate_block,
    truncate_text,
)

from .context_builder import (
    SCREENSHOT_FILE,
    augment_timeout_message,
    extract_failed_selector,
)

logger = logging.getLogger(__name__)

# Formatting limits
MAX_VISIBLE_TEXT_LENGTH = 500
MAX_SELECTORS_TO_SHOW = 50
MAX_HTML_SNIPPET_LENGTH = 2000
MAX_SIMILAR_SUGGESTIONS = 5
MAX_SELECTORS_PER_CATEGORY = 10
MAX_ID_SELECTORS = 15
CONSOLE_RECENT_ACTIONS = 3

_SNIPPET_LINE_RE = re.compile(r">\s*(\d+)\s*\|")
_BACKTICK_RUN_RE = re.compile(r"`+")

NOT_FOUND_MARKERS = ("not found", "no element", "<element(s) not found>", "waiting for locator")


def is_element_not_found(message: str) -> bool:
    return any(marker in message for marker in NOT_FOUND_MARKERS)


def reproduction_command(failure: FailureContext) -> str:
    if failure.node_id:
        return f'pytest "{failure.node_id}"'
    return f'pytest "{failure.test_file}" -k "{failure.test_title}"'


class FormatterOptions(BaseModel):
    max_error_length: int = 5000
    show_code_snippet: bool = True
    verbose_errors: bool = True
    capture_page_state: bool = True

    @classmethod
    def from_config(cls, config: ReporterConfig) -> "FormatterOptions":
        return cls(
            max_error_length=config.max_error_length,
            show_code_snippet=config.show_code_snippet,
            verbose_errors=config.verbose_errors,
            capture_page_state=config.capture_page_state,
        )


class ErrorData(BaseModel):
    """Flattened, ANSI-free view of a failure, shared by all formatters."""

    error_message: str
    code_snippet: Optional[str] = None
    error_line_number: int = 0
    stack: Optional[str] = None
    test_path: str = ""
    test_index: int = 0
    duration: int = 0
    full_test_name: str = ""
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    action_history: list[str] = Field(default_factory=list)
    available_selectors: list[str] = Field(default_factory=list)
    failed_selector: Optional[str] = None
    visible_text: Optional[str] = None
    html_snippet: Optional[str] = None
    console_errors: list[str] = Field(default_factory=list)
    network_errors: list[str] = Field(default_factory=list)
    stdout: list[str] = Field(default_factory=list)
    stderr: list[str] = Field(default_factory=list)
    screenshot_path: Optional[str] = None
    reproduction_command: str = ""


class SelectorGroups(BaseModel):
    buttons: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    inputs: list[str] = Field(default_factory=list)
    ids: list[str] = Field(default_factory=list)
    others: list[str] = Field(default_factory=list)


class ErrorFormatter(ABC):
    """Base class: shared extraction logic, per-medium presentation."""

    def __init__(self, options: FormatterOptions | None = None):
        self.options = options or FormatterOptions()

    @abstractmethod
    def format_error(self, data: ErrorData) -> str: ...

    @abstractmethod
    def format_header(self, data: ErrorData) -> str: ...

    @abstractmethod
    def format_error_message(self, message: str) -> str: ...

    @abstractmethod
    def format_code_snippet(self, snippet: str) -> str: ...

    @abstractmethod
    def format_page_state(self, data: ErrorData) -> str: ...

    @abstractmethod
    def format_selectors(self, selectors: list[str], failed_selector: str | None = None) -> str: ...

    @abstractmethod
    def format_action_history(self, actions: list[str]) -> str: ...

    @abstractmethod
    def format_visible_text(self, text: str) -> str: ...

    def extract_error_data(self, failure: FailureContext, test_index: int | None = None) -> ErrorData:
        """Project a FailureContext into the flat ErrorData used for rendering."""
        state = failure.page_state
        message = augment_timeout_message(
            failure.error.message or "Unknown error", failure.duration, state,
        )
        snippet = strip_ansi(failure.error.snippet) if failure.error.snippet else None

        line = failure.error.line or failure.line_number
        if snippet:
            match = _SNIPPET_LINE_RE.search(snippet)
            if match:
                line = int(match.group(1))

        return ErrorData(
            error_message=strip_ansi(message),
            code_snippet=snippet,
            error_line_number=line,
            stack=strip_ansi(failure.error.stack) if failure.error.stack else None,
            test_path=f"{relative_to_cwd(failure.test_file)}:{line}",
            test_index=failure.test_index or test_index or 0,
            duration=failure.duration,
            full_test_name=failure.full_title,
            page_url=strip_ansi(state.url) if state else None,
            page_title=strip_ansi(state.title) if state else None,
            action_history=list(state.action_history) if state else [],
            available_selectors=list(state.available_selectors) if state else [],
            failed_selector=extract_failed_selector(message),
            visible_text=strip_ansi(state.visible_text) if state and state.visible_text else None,
            html_snippet=strip_ansi(state.html_snippet) if state and state.html_snippet else None,
            console_errors=[strip_ansi(e) for e in failure.console_errors],
            network_errors=[strip_ansi(e) for e in failure.network_errors],
            stdout=[strip_ansi(s) for s in failure.stdout],
            stderr=[strip_ansi(s) for s in failure.stderr],
            screenshot_path=SCREENSHOT_FILE if failure.screenshot else None,
            reproduction_command=reproduction_command(failure),
        )

    @staticmethod
    def categorize_selectors(selectors: list[str]) -> SelectorGroups:
        """Sort selectors into display groups; each lands in exactly one."""
        groups = SelectorGroups()
        for s in selectors:
            if s.startswith("#"):
                groups.ids.append(s)
            elif "button" in s:
                groups.buttons.append(s)
            elif s.startswith(("a:", "a[", "a.")) or "href" in s:
                groups.links.append(s)
            elif "input" in s or "[name=" in s or "[placeholder=" in s:
                groups.inputs.append(s)
            else:
                groups.others.append(s)
        return groups

    def truncate_message(self, message: str) -> str:
        return truncate_block(message, self.options.max_error_length)


class ConsoleFormatter(ErrorFormatter):
    """Compact terminal rendering. Output is rich markup; page content is escaped."""

    def format_error(self, data: ErrorData) -> str:
        sections = [self.format_header(data), "", self.format_error_message(data.error_message)]
        if data.code_snippet and self.options.show_code_snippet:
            sections.append(self.format_code_snippet(data.code_snippet))
        if self.options.capture_page_state and (data.page_url or data.page_title):
            sections.append(self.format_page_state(data))
        sections.append(f"  [bold]Reproduction Command:[/bold]\n    {escape(data.reproduction_command)}")
        return "\n".join(sections)

    def format_header(self, data: ErrorData) -> str:
        duration = f" ({data.duration}ms)" if data.duration else ""
        return (
            f"  [red]✘[/red] [bold]{data.test_index})[/bold] "
            f"{escape(data.test_path)} › {escape(data.full_test_name)}{duration}"
        )

    def format_error_message(self, message: str) -> str:
        return "  [bold]Error:[/bold]\n" + _indent(escape(self.truncate_message(message)), 4)

    def format_code_snippet(self, snippet: str) -> str:
        return "  [bold]Error Location:[/bold]\n" + _indent(escape(snippet), 4)

    def format_page_state(self, data: ErrorData) -> str:
        lines = [
            "  [bold]🔍 Page State When Failed[/bold]",
            f"    URL: {escape(data.page_url or 'unknown')}",
            f"    Title: {escape(data.page_title or 'unknown')}",
        ]
        if data.screenshot_path:
            lines.append(f"    Screenshot: Saved to {escape(data.screenshot_path)}")
        if data.action_history:
            lines.append(self.format_action_history(data.action_history))
        if data.available_selectors and (
            data.failed_selector or is_element_not_found(data.error_message)
        ):
            lines.append(self.format_selectors(data.available_selectors, data.failed_selector))
        if data.visible_text:
            lines.append(self.format_visible_text(data.visible_text))
        return "\n".join(lines)

    def format_selectors(self, selectors: list[str], failed_selector: str | None = None) -> str:
        lines = ["", "    [bold]🎯 Available Selectors (sorted by relevance):[/bold]"]
        lines += [f"      {escape(s)}" for s in selectors[:MAX_SELECTORS_TO_SHOW]]
        if len(selectors) > MAX_SELECTORS_TO_SHOW:
            lines.append(f"      ... and {len(selectors) - MAX_SELECTORS_TO_SHOW} more")
        if failed_selector:
            similar = suggest(failed_selector, selectors, MAX_SIMILAR_SUGGESTIONS)
            if similar:
                lines.append(f"    [yellow]💡 Did you mean:[/yellow] {escape(', '.join(similar))}")
        return "\n".join(lines)

    def format_action_history(self, actions: list[str]) -> str:
        lines = ["", "    [bold]📜 Recent Actions:[/bold]"]
        lines += [f"      {escape(a)}" for a in actions[-CONSOLE_RECENT_ACTIONS:]]
        return "\n".join(lines)

    def format_visible_text(self, text: str) -> str:
        excerpt = truncate_text(text, MAX_VISIBLE_TEXT_LENGTH)
        return (
            f"\n    [bold]📄 Visible Text (first {MAX_VISIBLE_TEXT_LENGTH} chars):[/bold]\n"
            + _indent(escape(excerpt), 6)
        )


class MarkdownFormatter(ErrorFormatter):
    """Markdown rendering with two independent switches: collapsible
    ``<details>`` sections and emoji decorations."""

    def __init__(
        self,
        options: FormatterOptions | None = None,
        collapsible: bool = True,
        emoji: bool = True,
    ):
        super().__init__(options)
        self.collapsible = collapsible
        self.emoji = emoji

    def _icon(self, symbol: str) -> str:
        return f"{symbol} " if self.emoji else ""

    def _section(self, title: str, body: str) -> str:
        if self.collapsible:
            return f"<details>\n<summary>{title}</summary>\n\n{body}\n</details>\n"
        return f"#### {title}\n{body}\n"

    def format_error(self, data: ErrorData) -> str:
        sections = [self.format_header(data), "", self.format_error_message(data.error_message)]

        if data.code_snippet and self.options.show_code_snippet:
            sections.append(self.format_code_snippet(data.code_snippet))
        if data.stack and self.options.verbose_errors:
            sections.append(self.format_stack(data.stack))
        if self.options.capture_page_state and (data.page_url or data.page_title):
            sections.append(self.format_page_state(data))
        if data.console_errors:
            sections.append(self.format_console_errors(data.console_errors))
        if data.network_errors:
            sections.append(self.format_network_errors(data.network_errors))
        if data.stdout:
            sections.append(self.format_stdout(data.stdout))
        if data.stderr:
            sections.append(self.format_stderr(data.stderr))
        if data.screenshot_path:
            sections.append(self.format_screenshot(data.screenshot_path))
        sections.append(self.format_reproduction(data.reproduction_command))

        return "\n".join(s for s in sections if s is not None)

    def format_header(self, data: ErrorData) -> str:
        duration = f" ({data.duration}ms)" if data.duration else ""
        if self.emoji:
            return f"## ✘  {data.test_index} {data.test_path} › {data.full_test_name}{duration}"
        return f"## Test {data.test_index}: {data.test_path} › {data.full_test_name}{duration}"

    def format_error_message(self, message: str) -> str:
        return "### Error\n" + _fenced(self.truncate_message(message)) + "\n"

    def format_code_snippet(self, snippet: str) -> str:
        if self.collapsible:
            return self._section("Error Location", _fenced(snippet, "python"))
        return "### Code Location\n" + _fenced(snippet, "python") + "\n"

    def format_stack(self, stack: str) -> str:
        return self._section("Stack Trace", _fenced(stack))

    def format_page_state(self, data: ErrorData) -> str:
        lines = [
            f"### {self._icon('🔍')}Page State When Failed\n",
            f"**URL:** {data.page_url or 'unknown'}",
            f"**Title:** {data.page_title or 'unknown'}",
        ]
        if data.screenshot_path:
            lines.append(f"**Screenshot:** [View Screenshot](./{data.screenshot_path})")
        lines.append("")

        if data.action_history:
            lines.append(self.format_action_history(data.action_history))
        if data.available_selectors:
            lines.append(self.format_selectors(data.available_selectors, data.failed_selector))
        if data.visible_text:
            lines.append(self.format_visible_text(data.visible_text))
        if data.html_snippet:
            lines.append(self.format_html_snippet(data.html_snippet))
        return "\n".join(lines)

    def format_selectors(self, selectors: list[str], failed_selector: str | None = None) -> str:
        body = ""
        if failed_selector:
            body += f"Looking for: **{failed_selector}**\n\n"
            similar = suggest(failed_selector, selectors, MAX_SIMILAR_SUGGESTIONS)
            if similar:
                body += f"**{self._icon('💡')}Did you mean:**\n" + _fenced("\n".join(similar)) + "\n\n"

        body += "These selectors were actually present on the page"
        if self.collapsible:
            body += " (groups ordered by their most relevant selector):\n\n"
            body += _fenced(self._grouped_selectors(selectors))
        else:
            shown = selectors[:MAX_SELECTORS_TO_SHOW]
            if len(selectors) > MAX_SELECTORS_TO_SHOW:
                shown = shown + [f"... and {len(selectors) - MAX_SELECTORS_TO_SHOW} more"]
            body += " (most relevant first):\n\n" + _fenced("\n".join(shown))

        return self._section(
            f"{self._icon('🎯')}Available Selectors on Page ({len(selectors)} found)", body,
        )

    def _grouped_selectors(self, selectors: list[str]) -> str:
        groups = self.categorize_selectors(selectors)
        blocks = [
            (selectors.index(items[0]), f"# {title}:\n" + "\n".join(f"  {s}" for s in items[:cap]))
            for title, items, cap in (
                ("Buttons", groups.buttons, MAX_SELECTORS_PER_CATEGORY),
                ("Links", groups.links, MAX_SELECTORS_PER_CATEGORY),
                ("Inputs", groups.inputs, MAX_SELECTORS_PER_CATEGORY),
                ("Elements with IDs", groups.ids, MAX_ID_SELECTORS),
                ("Other Elements", groups.others, MAX_SELECTORS_PER_CATEGORY),
            )
            if items
        ]
        blocks.sort(key=lambda block: block[0])
        return "\n\n".join(text for _, text in blocks)

    def format_action_history(self, actions: list[str]) -> str:
        return self._section(
            f"{self._icon('📜')}Action History (last {len(actions)} actions)",
            _fenced("\n".join(actions)),
        )

    def format_visible_text(self, text: str) -> str:
        return self._section(f"{self._icon('📄')}Visible Text on Page", _fenced(text))

    def format_html_snippet(self, html: str) -> str:
        return self._section(
            f"{self._icon('🔧')}HTML Context",
            _fenced(truncate_block(html, MAX_HTML_SNIPPET_LENGTH), "html"),
        )

    def format_console_errors(self, errors: list[str]) -> str:
        return "### Console Errors\n" + _fenced("\n".join(errors)) + "\n"

    def format_network_errors(self, errors: list[str]) -> str:
        return "### Network Errors\n" + _fenced("\n".join(errors)) + "\n"

    def format_stdout(self, stdout: list[str]) -> str:
        return self._section("Test Output (stdout)", _fenced("\n".join(stdout)))

    def format_stderr(self, stderr: list[str]) -> str:
        return self._section("Test Errors (stderr)", _fenced("\n".join(stderr)))

    def format_screenshot(self, path: str) -> str:
        return f"### {self._icon('📸')}Screenshot\n![Screenshot](./{path})\n"

    def format_reproduction(self, command: str) -> str:
        return "### Reproduction Command\n" + _fenced(command, "bash") + "\n"


def _indent(text: str, spaces: int) -> str:
    pad = " " * spaces
    return "\n".join(pad + line for line in text.split("\n"))


def _fenced(text: str, lang: str = "") -> str:
    """Code block whose fence is longer than any backtick run inside the text."""
    longest = max((len(run) for run in _BACKTICK_RUN_RE.findall(text)), default=0)
    fence = "`" * max(3, longest + 1)
    return f"{fence}{lang}\n{text}\n{fence}"

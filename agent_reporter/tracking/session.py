"""Per-test capture session that tracks page activity and packages it on failure."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from playwright.async_api import Page

from agent_reporter.capture.page_state import CAPTURE_TIMEOUT_S, capture_page_state
from agent_reporter.models.page_state import PageSnapshot, PageState
from agent_reporter.models.test_result import Attachment

from .action_tracker import DEFAULT_HISTORY_SIZE, ActionTracker

logger = logging.getLogger(__name__)

MAX_FILL_VALUE_DISPLAY = 20
MAX_CONDENSED_TEXT_LINES = 50


class CaptureSession:
    """Owns the action history, event subscriptions and last known page state
    of a single test.

    Pages are tracked explicitly through ``track(page)``; the returned
    ``TrackedPage`` records navigations and interactions. ``close()`` removes
    every listener the session registered.
    """

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        capture_timeout: float = CAPTURE_TIMEOUT_S,
    ):
        self.tracker = ActionTracker(history_size)
        self.capture_timeout = capture_timeout
        self.last_snapshot: PageSnapshot | None = None
        self.console_errors: list[str] = []
        self.network_errors: list[str] = []
        self.page: Page | None = None
        self._subscriptions: list[tuple[Page, str, Callable[..., Any]]] = []

    def track(self, page: Page) -> "TrackedPage":
        """Subscribe to page events and return a wrapper that logs actions."""
        self.page = page
        self._subscribe(page, "load", lambda *_: self.tracker.add(f"✓ Page loaded: {page.url}"))
        self._subscribe(page, "domcontentloaded", lambda *_: self.tracker.add(f"✓ DOM ready: {page.url}"))
        self._subscribe(page, "console", self._on_console)
        self._subscribe(page, "requestfailed", self._on_request_failed)
        return TrackedPage(page, self)

    def _subscribe(self, page: Page, event: str, handler: Callable[..., Any]) -> None:
        page.on(event, handler)
        self._subscriptions.append((page, event, handler))

    def _on_console(self, msg) -> None:
        if msg.type != "error":
            return
        self.console_errors.append(f"[Console Error] {msg.text}")
        self.tracker.add(f"✗ Console error: {msg.text}")

    def _on_request_failed(self, request) -> None:
        failure = request.failure or "unknown error"
        self.network_errors.append(f"{request.method} {request.url} - {failure}")
        self.tracker.add(f"✗ Network failed: {request.method} {request.url}")

    def close(self) -> None:
        """Remove every listener registered by this session."""
        for page, event, handler in self._subscriptions:
            try:
                page.remove_listener(event, handler)
            except Exception as e:
                logger.debug("Could not remove %s listener: %s", event, e)
        self._subscriptions.clear()

    async def refresh_snapshot(self, failed_selector: str | None = None) -> PageSnapshot | None:
        """Re-capture the tracked page and remember it as the last known state."""
        if self.page is None:
            return None
        self.last_snapshot = await capture_page_state(
            self.page, failed_selector, timeout=self.capture_timeout,
        )
        return self.last_snapshot

    async def collect_attachments(
        self, include_screenshot: bool = True, failed_selector: str | None = None,
    ) -> list[Attachment]:
        """Package everything known about the page as structured attachments.

        With a failed selector the page is re-captured so the HTML around
        that selector is included.
        """
        attachments: list[Attachment] = []
        snapshot = self.last_snapshot
        needs_capture = (
            snapshot is None
            or not snapshot.available_selectors
            or (failed_selector is not None and not snapshot.html_snippet)
        )
        if self.page is not None and needs_capture:
            logger.debug("Capturing page state for failure (selector: %s)", failed_selector)
            fresh = await self.refresh_snapshot(failed_selector)
            # a capture that found no selectors never replaces one that did
            cached_usable = snapshot is not None and bool(snapshot.available_selectors)
            if fresh is not None and (fresh.available_selectors or not cached_usable):
                snapshot = fresh
            else:
                self.last_snapshot = snapshot

        history = list(self.tracker.get())
        if snapshot is not None:
            state = PageState.from_snapshot(snapshot, history)
            attachments.append(Attachment.text(
                "page-state", json.dumps(state.model_dump(), indent=2), "application/json",
            ))
            if snapshot.url:
                attachments.append(Attachment.text("page-url", snapshot.url))
            if snapshot.title:
                attachments.append(Attachment.text("page-title", snapshot.title))
            if snapshot.visible_text:
                attachments.append(Attachment.text("visible-text", _condense(snapshot.visible_text)))
            if snapshot.available_selectors:
                attachments.append(Attachment.text(
                    "available-selectors", json.dumps(list(snapshot.available_selectors)),
                    "application/json",
                ))
            if snapshot.html_snippet:
                attachments.append(Attachment.text("html-snippet", snapshot.html_snippet))

        if history:
            attachments.append(Attachment.text("action-history", "\n".join(history)))
        if self.console_errors:
            attachments.append(Attachment.text(
                "console-errors", json.dumps(self.console_errors), "application/json",
            ))
        if self.network_errors:
            attachments.append(Attachment.text(
                "network-errors", json.dumps(self.network_errors), "application/json",
            ))

        if include_screenshot and self.page is not None:
            try:
                png = await self.page.screenshot(full_page=False)
                attachments.append(Attachment(name="screenshot", content_type="image/png", body=png))
            except Exception as e:
                logger.warning("Screenshot failed: %s", e)

        return attachments


class TrackedPage:
    """Wraps a Playwright page, logging goto/click/fill into the session.

    Everything else is delegated to the wrapped page unchanged.
    """

    def __init__(self, page: Page, session: CaptureSession):
        self._page = page
        self._session = session

    @property
    def page(self) -> Page:
        return self._page

    def __getattr__(self, name: str) -> Any:
        return getattr(self._page, name)

    async def goto(self, url: str, **kwargs):
        tracker = self._session.tracker
        tracker.add(f"→ Navigating to: {url}")
        response = await self._page.goto(url, **kwargs)
        try:
            await self._page.wait_for_load_state("domcontentloaded")
            snapshot = await self._session.refresh_snapshot()
            if snapshot is not None:
                logger.debug(
                    "Captured page state after navigation: %s (%d selectors)",
                    snapshot.url, len(snapshot.available_selectors),
                )
        except Exception as e:
            logger.debug("Failed to capture page state after navigation: %s", e)
        return response

    async def click(self, selector: str, **kwargs):
        tracker = self._session.tracker
        tracker.add(f"→ Clicking: {selector}")
        try:
            result = await self._page.click(selector, **kwargs)
        except Exception:
            tracker.add(f"✗ Failed to click: {selector}")
            raise
        tracker.add(f"✓ Clicked: {selector}")
        return result

    async def fill(self, selector: str, value: str, **kwargs):
        tracker = self._session.tracker
        tracker.add(f'→ Filling {selector} with "{value[:MAX_FILL_VALUE_DISPLAY]}..."')
        try:
            result = await self._page.fill(selector, value, **kwargs)
        except Exception:
            tracker.add(f"✗ Failed to fill: {selector}")
            raise
        tracker.add(f"✓ Filled: {selector}")
        return result


def _condense(text: str) -> str:
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    return " | ".join(lines[:MAX_CONDENSED_TEXT_LINES])

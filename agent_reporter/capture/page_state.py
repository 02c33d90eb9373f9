"""Page introspection: time-boxed capture of what a live page looked like."""

from __future__ import annotations

import asyncio
import logging
import re

from playwright.async_api import Page

from agent_reporter.models.page_state import (
    MAX_HTML_SNIPPET,
    MAX_SELECTORS,
    MAX_VISIBLE_TEXT,
    PageSnapshot,
    dedupe_selectors,
)

logger = logging.getLogger(__name__)

CAPTURE_TIMEOUT_S = 5.0
STEP_TIMEOUT_S = 2.0
SELECTORS_PER_CATEGORY = 15
TITLE_UNAVAILABLE = "Unable to get title"

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")

VISIBLE_TEXT_SCRIPT = """(maxLength) => {
    if (!document.body) return '';
    const skipTags = new Set(['script', 'style', 'noscript', 'template']);
    const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT, {
        acceptNode(node) {
            const parent = node.parentElement;
            if (!parent || skipTags.has(parent.tagName.toLowerCase())) {
                return NodeFilter.FILTER_REJECT;
            }
            if (parent.checkVisibility && !parent.checkVisibility({visibilityProperty: true})) {
                return NodeFilter.FILTER_REJECT;
            }
            const style = window.getComputedStyle(parent);
            if (style.display === 'none' || style.visibility === 'hidden') {
                return NodeFilter.FILTER_REJECT;
            }
            return (node.textContent || '').trim() ? NodeFilter.FILTER_ACCEPT : NodeFilter.FILTER_REJECT;
        }
    });

    const parts = [];
    let total = 0;
    let node;
    while ((node = walker.nextNode()) && total < maxLength) {
        const text = node.textContent.trim();
        parts.push(text);
        total += text.length + 3;
    }
    return parts.join(' | ').substring(0, maxLength);
}"""

AVAILABLE_SELECTORS_SCRIPT = """({perCategory, maxTotal}) => {
    if (!document.body) return [];
    const order = ['interactive', 'forms', 'navigation', 'content', 'structural'];
    const found = {};
    for (const name of order) found[name] = [];

    const clip = (s, n) => (s || '').replace(/\\s+/g, ' ').trim().substring(0, n);
    const quote = (s) => s.replace(/\\\\/g, '\\\\\\\\').replace(/"/g, '\\\\"');
    const add = (category, selector) => {
        const bucket = found[category];
        if (selector && bucket.length < perCategory && !bucket.includes(selector)) {
            bucket.push(selector);
        }
    };
    const idSelector = (el) => {
        if (!el.id) return null;
        return /^[A-Za-z][\\w-]*$/.test(el.id) ? `#${el.id}` : `[id="${quote(el.id)}"]`;
    };
    const attrSelector = (el, attr) => {
        const value = el.getAttribute(attr);
        return value ? `[${attr}="${quote(clip(value, 60))}"]` : null;
    };
    const textSelector = (el, limit) => {
        const text = clip(el.textContent, limit);
        return text ? `${el.tagName.toLowerCase()}:has-text("${quote(text)}")` : null;
    };
    const firstClass = (el, pattern) => {
        if (typeof el.className !== 'string') return null;
        const classes = el.className.split(/\\s+/).filter((c) => c && (!pattern || pattern.test(c)));
        return classes.length ? classes[0] : null;
    };

    document.querySelectorAll(
        'button, [role="button"], input[type="submit"], input[type="button"], [data-testid], [data-test], [data-qa]'
    ).forEach((el) => {
        add('interactive', attrSelector(el, 'data-testid') || attrSelector(el, 'data-test') || attrSelector(el, 'data-qa'));
        add('interactive', idSelector(el));
        if (el.tagName.toLowerCase() === 'button') {
            add('interactive', textSelector(el, 30));
            const cls = firstClass(el);
            if (cls) add('interactive', `button.${cls}`);
        }
        add('interactive', attrSelector(el, 'aria-label'));
    });

    document.querySelectorAll('input, textarea, select, form').forEach((el) => {
        add('forms', idSelector(el));
        add('forms', attrSelector(el, 'name'));
        add('forms', attrSelector(el, 'placeholder'));
        add('forms', attrSelector(el, 'aria-label'));
    });

    document.querySelectorAll(
        'a[href], nav, [role="navigation"], [role="link"], [role="tab"], [role="menuitem"]'
    ).forEach((el) => {
        if (el.tagName.toLowerCase() === 'a') add('navigation', textSelector(el, 30));
        add('navigation', idSelector(el));
        const href = el.getAttribute('href');
        if (href && href.length <= 60 && !href.startsWith('javascript:')) {
            add('navigation', `[href="${quote(href)}"]`);
        }
        const role = el.getAttribute('role');
        if (role) add('navigation', `[role="${role}"]`);
    });

    document.querySelectorAll('h1, h2, h3, label, [role="dialog"], [role="alert"], [aria-label]').forEach((el) => {
        const tag = el.tagName.toLowerCase();
        if (/^h[1-3]$/.test(tag)) add('content', textSelector(el, 50));
        else if (tag === 'label') add('content', textSelector(el, 30));
        else add('content', attrSelector(el, 'aria-label') || attrSelector(el, 'role'));
    });

    const vocabulary = /btn|button|link|nav|modal|menu|dialog|card|form|alert|tab/i;
    document.querySelectorAll('[id], [class], [role]').forEach((el) => {
        add('structural', idSelector(el));
        const cls = firstClass(el, vocabulary);
        if (cls) add('structural', `.${cls}`);
        add('structural', attrSelector(el, 'role'));
    });

    const all = [];
    for (const name of order) {
        for (const selector of found[name]) {
            if (!all.includes(selector)) all.push(selector);
        }
    }
    return all.slice(0, maxTotal);
}"""

HTML_CONTEXT_SCRIPT = """({selector, maxLength}) => {
    if (!document.body) return '';
    const findByAttr = (attr, value) => {
        if (!value) return null;
        const prefix = value.substring(0, Math.min(5, value.length));
        try {
            return document.querySelector(`[${attr}*="${CSS.escape(prefix)}"]`);
        } catch (e) {
            return null;
        }
    };
    const idMatch = selector.match(/#([\\w-]+)/);
    const classMatch = selector.match(/\\.([\\w-]+)/);
    const similar = (idMatch && findByAttr('id', idMatch[1])) || (classMatch && findByAttr('class', classMatch[1]));

    let container;
    if (similar) {
        container = similar.parentElement || similar;
    } else {
        container = document.querySelector('main, [role="main"], article, .container, .content') || document.body;
    }
    return (container.innerHTML || container.outerHTML || '')
        .replace(/<script\\b[\\s\\S]*?<\\/script\\s*>/gi, '')
        .replace(/<style\\b[\\s\\S]*?<\\/style\\s*>/gi, '')
        .replace(/\\s+/g, ' ')
        .substring(0, maxLength);
}"""


async def capture_page_state(
    page: Page,
    failed_selector: str | None = None,
    *,
    timeout: float = CAPTURE_TIMEOUT_S,
    step_timeout: float = STEP_TIMEOUT_S,
) -> PageSnapshot:
    """Capture url, title, visible text, selectors and HTML context of a page.

    Never raises and never waits longer than ``timeout`` seconds: on timeout
    or unexpected failure a degraded snapshot is returned instead.
    """
    try:
        return await asyncio.wait_for(
            _capture(page, failed_selector, step_timeout), timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("Page state capture timed out after %.1fs", timeout)
    except Exception as e:
        logger.warning("Page state capture failed: %s", e)
    return PageSnapshot.degraded(_current_url(page))


async def _capture(page: Page, failed_selector: str | None, step_timeout: float) -> PageSnapshot:
    url = _current_url(page)
    try:
        title = await page.title()
    except Exception as e:
        logger.debug("Could not read page title: %s", e)
        title = TITLE_UNAVAILABLE

    visible_text = await get_visible_text(page, step_timeout)
    selectors = await get_available_selectors(page, step_timeout)
    html_snippet = None
    if failed_selector:
        html_snippet = await get_html_context(page, failed_selector, step_timeout) or None

    snapshot = PageSnapshot(
        url=url,
        title=title or "",
        visible_text=visible_text,
        available_selectors=selectors,
        html_snippet=html_snippet,
    )
    logger.debug(
        "Captured page state for %s (%d selectors, %d chars of text)",
        url, len(snapshot.available_selectors), len(snapshot.visible_text),
    )
    return snapshot


def _current_url(page: Page) -> str:
    try:
        return page.url or ""
    except Exception:
        return ""


async def get_visible_text(page: Page, step_timeout: float = STEP_TIMEOUT_S) -> str:
    """Visible text fragments joined with ' | ', at most MAX_VISIBLE_TEXT chars."""
    try:
        text = await asyncio.wait_for(
            page.evaluate(VISIBLE_TEXT_SCRIPT, MAX_VISIBLE_TEXT), timeout=step_timeout,
        )
    except Exception as e:
        logger.debug("Visible text extraction failed: %s", e)
        return ""
    if not isinstance(text, str):
        return ""
    return text[:MAX_VISIBLE_TEXT]


async def get_available_selectors(page: Page, step_timeout: float = STEP_TIMEOUT_S) -> list[str]:
    """Prioritized, de-duplicated selectors present on the page (at most 50)."""
    try:
        selectors = await asyncio.wait_for(
            page.evaluate(
                AVAILABLE_SELECTORS_SCRIPT,
                {"perCategory": SELECTORS_PER_CATEGORY, "maxTotal": MAX_SELECTORS},
            ),
            timeout=step_timeout,
        )
    except Exception as e:
        logger.debug("Selector extraction failed: %s", e)
        return []
    if not isinstance(selectors, (list, tuple)):
        return []
    return dedupe_selectors(selectors)


async def get_html_context(
    page: Page, failed_selector: str, step_timeout: float = STEP_TIMEOUT_S,
) -> str:
    """HTML around where the failed selector was expected, cleaned and cut."""
    try:
        html = await asyncio.wait_for(
            page.evaluate(
                HTML_CONTEXT_SCRIPT,
                {"selector": failed_selector, "maxLength": MAX_HTML_SNIPPET},
            ),
            timeout=step_timeout,
        )
    except Exception as e:
        logger.debug("HTML context extraction failed: %s", e)
        return ""
    if not isinstance(html, str):
        return ""
    return clean_html(html)


def clean_html(html: str) -> str:
    """Strip script/style blocks, collapse whitespace, cut to MAX_HTML_SNIPPET."""
    html = _SCRIPT_RE.sub("", html)
    html = _STYLE_RE.sub("", html)
    return _WHITESPACE_RE.sub(" ", html).strip()[:MAX_HTML_SNIPPET]

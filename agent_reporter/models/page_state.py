"""Page snapshot data structures produced by page introspection."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_VISIBLE_TEXT = 2000
MAX_SELECTORS = 50
MAX_HTML_SNIPPET = 3000

CAPTURE_ERROR_TITLE = "Error capturing page state"


def dedupe_selectors(selectors, limit: int = MAX_SELECTORS) -> list[str]:
    """Drop empty and repeated selectors, keep first-seen order, cap at limit."""
    seen: set[str] = set()
    result: list[str] = []
    for sel in selectors or ():
        if not isinstance(sel, str) or not sel or sel in seen:
            continue
        seen.add(sel)
        result.append(sel)
        if len(result) >= limit:
            break
    return result


class PageSnapshot(BaseModel):
    """Point-in-time capture of a live page. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    url: str = ""
    title: str = ""
    visible_text: str = ""
    available_selectors: tuple[str, ...] = ()
    html_snippet: Optional[str] = None

    @field_validator("visible_text")
    @classmethod
    def _cap_text(cls, v: str) -> str:
        return v[:MAX_VISIBLE_TEXT]

    @field_validator("available_selectors", mode="before")
    @classmethod
    def _unique_selectors(cls, v) -> tuple[str, ...]:
        return tuple(dedupe_selectors(v))

    @field_validator("html_snippet")
    @classmethod
    def _cap_html(cls, v: Optional[str]) -> Optional[str]:
        return v[:MAX_HTML_SNIPPET] if v else v

    @classmethod
    def degraded(cls, url: str = "") -> "PageSnapshot":
        """Placeholder used when a capture fails or runs out of time."""
        return cls(url=url, title=CAPTURE_ERROR_TITLE)

    @property
    def is_degraded(self) -> bool:
        return self.title == CAPTURE_ERROR_TITLE and not self.available_selectors


class PageState(BaseModel):
    """Snapshot plus the action history, as attached to a failure.

    Accepts camelCase keys as well, so page-state payloads written by other
    tooling parse the same way.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, validate_assignment=True,
    )

    url: str = ""
    title: str = ""
    visible_text: str = ""
    available_selectors: list[str] = Field(default_factory=list)
    html_snippet: Optional[str] = None
    action_history: list[str] = Field(default_factory=list)

    @field_validator("available_selectors", mode="before")
    @classmethod
    def _unique_selectors(cls, v) -> list[str]:
        return dedupe_selectors(v)

    @field_validator("visible_text")
    @classmethod
    def _cap_text(cls, v: str) -> str:
        return v[:MAX_VISIBLE_TEXT]

    @field_validator("html_snippet")
    @classmethod
    def _cap_html(cls, v: Optional[str]) -> Optional[str]:
        return v[:MAX_HTML_SNIPPET] if v else v

    @classmethod
    def from_snapshot(
        cls, snapshot: PageSnapshot, action_history: list[str] | None = None,
    ) -> "PageState":
        return cls(
            url=snapshot.url,
            title=snapshot.title,
            visible_text=snapshot.visible_text,
            available_selectors=list(snapshot.available_selectors),
            html_snippet=snapshot.html_snippet,
            action_history=list(action_history or []),
        )

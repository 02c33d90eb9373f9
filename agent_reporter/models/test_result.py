"""Test outcome data structures consumed and produced by the reporter."""

from __future__ import annotations

import base64
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from .page_state import PageState

TestStatus = Literal["passed", "failed", "timedOut", "skipped"]


class TestMeta(BaseModel):
    """Where a test lives, as reported by the host framework."""
    __test__ = False

    title: str
    suite_name: str = ""
    file: str = ""
    line: int = 0
    column: int = 0
    node_id: str = ""


class TestError(BaseModel):
    __test__ = False

    message: str = ""
    stack: Optional[str] = None
    snippet: Optional[str] = None
    line: Optional[int] = None  # line the error was raised from, when known


class Attachment(BaseModel):
    """A named payload attached to a test result (inline body or file path)."""

    name: str
    content_type: str = "text/plain"
    body: Optional[bytes] = None
    path: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        """JSON-safe form, so attachments can ride inside serialized reports."""
        return {
            "name": self.name,
            "content_type": self.content_type,
            "body": base64.b64encode(self.body).decode("ascii") if self.body is not None else None,
            "path": self.path,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Attachment":
        body = data.get("body")
        return cls(
            name=data["name"],
            content_type=data.get("content_type", "text/plain"),
            body=base64.b64decode(body) if body is not None else None,
            path=data.get("path"),
        )

    @classmethod
    def text(cls, name: str, value: str, content_type: str = "text/plain") -> "Attachment":
        return cls(name=name, content_type=content_type, body=value.encode("utf-8"))


class TestResult(BaseModel):
    """Outcome of one test as delivered to the reporter."""
    __test__ = False

    status: TestStatus
    duration: int = 0  # milliseconds
    retry_count: int = 0
    stdout: list[str] = Field(default_factory=list)
    stderr: list[str] = Field(default_factory=list)
    errors: list[TestError] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)


class FailureContext(BaseModel):
    """Everything known about one failing test, used to render reports."""

    test_title: str
    suite_name: str = ""
    test_file: str = ""
    line_number: int = 0
    node_id: str = ""
    error: TestError
    stdout: list[str] = Field(default_factory=list)
    stderr: list[str] = Field(default_factory=list)
    duration: int = 0  # milliseconds
    retry_count: int = 0
    test_index: int = 0
    timed_out: bool = False
    console_errors: list[str] = Field(default_factory=list)
    network_errors: list[str] = Field(default_factory=list)
    screenshot: Optional[bytes] = Field(default=None, exclude=True)
    page_state: Optional[PageState] = None
    report_dir: str = ""  # per-test directory name inside the output dir

    @property
    def full_title(self) -> str:
        if self.suite_name:
            return f"{self.suite_name} › {self.test_title}"
        return self.test_title


class RunSummary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0

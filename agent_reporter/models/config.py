"""Configuration models for the failure reporter."""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, field_validator

# Setting this environment variable disables every destructive cleanup step.
DO_NOT_REMOVE_ENV = "AGENT_REPORTER_DO_NOT_REMOVE"

DEFAULT_CONFIG_FILE = "agent-reporter.json"


class ReporterConfig(BaseModel):
    # Output
    output_dir: str = "agent-reports"
    single_report_file: bool = True

    # What to include in failure contexts
    include_screenshots: bool = True
    include_console_errors: bool = True
    include_network_errors: bool = True
    include_video: bool = False
    capture_page_state: bool = True
    show_code_snippet: bool = True

    # Terminal output
    silent: bool = False
    verbose_errors: bool = True
    max_inline_errors: int = 5
    max_error_length: int = 5000

    # Capture limits
    action_history_size: int = 20
    capture_timeout_seconds: float = 5.0

    # Markdown presentation
    collapsible_sections: bool = True
    include_emoji: bool = True

    @field_validator(
        "max_inline_errors", "max_error_length", "action_history_size",
        "capture_timeout_seconds",
    )
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("output_dir")
    @classmethod
    def must_not_be_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("output_dir must not be empty")
        return v

    @classmethod
    def load(cls, path: str | Path) -> "ReporterConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)


def cleanup_disabled() -> bool:
    """True when the environment forbids removing previous report artifacts."""
    value = os.environ.get(DO_NOT_REMOVE_ENV, "").strip().lower()
    return value not in ("", "0", "false", "no")

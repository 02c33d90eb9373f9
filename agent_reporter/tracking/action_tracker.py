"""Bounded history of the browser actions taken during one test."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone

from pydantic import BaseModel

DEFAULT_HISTORY_SIZE = 20


class ActionEntry(BaseModel):
    timestamp: datetime
    text: str

    def __str__(self) -> str:
        ts = self.timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return f"{ts} - {self.text}"


class ActionTracker:
    """Keeps the most recent actions, evicting the oldest once full."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_SIZE):
        if capacity <= 0:
            raise ValueError("capacity must be greater than zero")
        self.capacity = capacity
        self._entries: deque[ActionEntry] = deque(maxlen=capacity)

    def add(self, text: str) -> None:
        self._entries.append(ActionEntry(timestamp=datetime.now(timezone.utc), text=text))

    def get(self) -> tuple[str, ...]:
        """Rendered entries, oldest first."""
        return tuple(str(e) for e in self._entries)

    def entries(self) -> tuple[ActionEntry, ...]:
        return tuple(self._entries)

    def last(self) -> str | None:
        return str(self._entries[-1]) if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

"""Bounded conversation history sent as context to the AI relay."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Literal

LOGGER = logging.getLogger(__name__)

Sender = Literal["user", "ai"]

_ROLES: dict[str, str] = {"user": "user", "ai": "assistant"}


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    """One message of the conversation (never mutated)."""

    sender: Sender
    text: str
    timestamp: float
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_model(self) -> dict[str, str]:
        return {"role": _ROLES[self.sender], "content": self.text}


class ConversationHistory:
    """FIFO log capped at ``max_length`` entries."""

    def __init__(self, max_length: int = 50, *, clock: Callable[[], float] = time.monotonic) -> None:
        if max_length < 1:
            raise ValueError("max_length must be >= 1")
        self._entries: deque[HistoryEntry] = deque(maxlen=max_length)
        self._clock = clock

    @property
    def max_length(self) -> int:
        return self._entries.maxlen or 0

    def append(self, sender: Sender, text: str | None) -> HistoryEntry | None:
        """Append a trimmed message; blank text is ignored."""
        if sender not in _ROLES:
            raise ValueError(f"Unknown sender: {sender!r}")
        cleaned = (text or "").strip()
        if not cleaned:
            return None
        entry = HistoryEntry(sender=sender, text=cleaned, timestamp=self._clock())
        self._entries.append(entry)
        LOGGER.debug("History += %s: %.50s", sender, cleaned)
        return entry

    def to_model_format(self) -> list[dict[str, str]]:
        """Ordered ``{role, content}`` messages for the AI endpoint."""
        return [entry.to_model() for entry in self._entries]

    def clear(self) -> None:
        self._entries.clear()
        LOGGER.info("Historique de conversation vidé")

    def resize(self, max_length: int) -> None:
        """Change the cap, keeping the most recent entries."""
        if max_length < 1:
            raise ValueError("max_length must be >= 1")
        self._entries = deque(self._entries, maxlen=max_length)

    def entries(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    def last(self) -> HistoryEntry | None:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(tuple(self._entries))

    def stats(self) -> dict[str, Any]:
        entries = list(self._entries)
        total = len(entries)
        return {
            "total_messages": total,
            "user_messages": sum(1 for e in entries if e.sender == "user"),
            "ai_messages": sum(1 for e in entries if e.sender == "ai"),
            "average_length": (sum(len(e.text) for e in entries) / total) if total else 0.0,
            "oldest": entries[0].created_at.isoformat() if entries else None,
            "newest": entries[-1].created_at.isoformat() if entries else None,
        }

    def export(self) -> dict[str, Any]:
        return {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "total_messages": len(self._entries),
            "messages": [
                {"sender": e.sender, "text": e.text, "date": e.created_at.isoformat()}
                for e in self._entries
            ],
        }

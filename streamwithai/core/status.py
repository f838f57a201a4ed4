"""Named status entries and the primary status shown to the user."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Final, Optional

from .events import EventBus, Topic, status_topic

LOGGER = logging.getLogger(__name__)


class StatusName(str, Enum):
    """Tracked states."""

    SCREEN_SHARE = "screenShare"
    RECOGNITION = "recognition"
    VOICE = "voice"
    AI = "ai"
    UPLOAD = "upload"

    def __str__(self) -> str:
        return self.value


PRIORITY: Final[tuple[StatusName, ...]] = (
    StatusName.RECOGNITION,
    StatusName.VOICE,
    StatusName.AI,
    StatusName.UPLOAD,
    StatusName.SCREEN_SHARE,
)

DEFAULT_TEXTS: Final[dict[StatusName, tuple[str, str]]] = {
    # name: (inactive, active)
    StatusName.SCREEN_SHARE: ("En attente de partage d'écran", "Partage d'écran actif"),
    StatusName.RECOGNITION: ("Reconnaissance vocale: inactive", "Reconnaissance vocale: écoute en cours"),
    StatusName.VOICE: ("Synthèse vocale: inactive", "Synthèse vocale: active"),
    StatusName.AI: ("IA: inactive", "IA: traitement en cours"),
    StatusName.UPLOAD: ("Upload: inactive", "Upload: en cours"),
}


@dataclass(slots=True)
class StatusEntry:
    """Current value of one status."""

    name: StatusName
    active: bool
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name.value, "active": self.active, "text": self.text}


@dataclass(slots=True, frozen=True)
class StatusUpdate:
    """Request published on ``status:set`` by the controllers."""

    name: str
    active: bool
    text: Optional[str] = None


def default_text(name: StatusName, active: bool) -> str:
    inactive, active_text = DEFAULT_TEXTS[name]
    return active_text if active else inactive


class StatusRegistry:
    """Keep one entry per status name and derive the primary one."""

    def __init__(self, bus: EventBus) -> None:
        self.bus = bus
        self._entries: dict[StatusName, StatusEntry] = {
            name: StatusEntry(name=name, active=False, text=default_text(name, False))
            for name in StatusName
        }
        self._display: StatusEntry = self.get_primary()
        bus.subscribe(Topic.STATUS_SET, self._handle_update, context=self)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def set_state(self, name: str, active: bool, text: Optional[str] = None) -> bool:
        """Update an entry. Return True when it actually changed."""
        try:
            key = StatusName(name)
        except ValueError:
            LOGGER.warning("Unknown status: %s", name)
            return False

        entry = self._entries[key]
        previous = replace(entry)
        entry.active = bool(active)
        if text is not None:
            entry.text = text
        elif entry.active != previous.active:
            entry.text = default_text(key, entry.active)

        changed = previous.active != entry.active or previous.text != entry.text
        if changed:
            self.bus.publish(
                status_topic(key.value),
                {"active": entry.active, "text": entry.text, "previous": previous.to_dict()},
            )
        self._refresh_display()
        return changed

    def get_primary(self) -> StatusEntry:
        """First active entry by priority, else the (inactive) screen share entry."""
        for name in PRIORITY:
            entry = self._entries[name]
            if entry.active:
                return replace(entry)
        return replace(self._entries[StatusName.SCREEN_SHARE])

    def get(self, name: str) -> StatusEntry | None:
        try:
            return replace(self._entries[StatusName(name)])
        except ValueError:
            return None

    def is_active(self, name: str) -> bool:
        entry = self.get(name)
        return entry.active if entry else False

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {name.value: entry.to_dict() for name, entry in self._entries.items()}

    def stats(self) -> dict[str, Any]:
        active = [name.value for name, entry in self._entries.items() if entry.active]
        return {
            "total_states": len(self._entries),
            "active_states": len(active),
            "active_state_names": active,
            "primary": self._display.to_dict(),
        }

    def reset(self) -> None:
        """Set every entry back to inactive with its default text."""
        for name in StatusName:
            self.set_state(name.value, False, default_text(name, False))

    def detach(self) -> None:
        self.bus.unsubscribe_context(self)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _handle_update(self, update: StatusUpdate) -> None:
        self.set_state(update.name, update.active, update.text)

    def _refresh_display(self) -> None:
        primary = self.get_primary()
        if primary != self._display:
            self._display = primary
            self.bus.publish(Topic.STATUS_DISPLAY, primary)

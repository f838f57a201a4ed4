"""Payloads exchanged on the bus and with the relays."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional

from ..core.errors import InvalidResponseShape, RemoteError
from ..core.status import StatusUpdate

__all__ = [
    "AIFailure",
    "AIRequest",
    "AIResponse",
    "CaptureReady",
    "CaptureRequest",
    "CapturedImage",
    "ErrorEvent",
    "SpeechOptions",
    "SpeechItem",
    "StatusUpdate",
    "TranscriptEvent",
]


@dataclass(slots=True)
class TranscriptEvent:
    """Speech recognition result."""

    text: str
    final: bool = True
    confidence: Optional[float] = None


@dataclass(slots=True, frozen=True)
class CaptureRequest:
    message: str


@dataclass(slots=True, frozen=True)
class CapturedImage:
    """One encoded frame of the shared display."""

    data: bytes
    width: int
    height: int
    mime_type: str = "image/jpeg"
    captured_at: float = field(default_factory=time.time)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(slots=True, frozen=True)
class CaptureReady:
    message: str
    image: CapturedImage


@dataclass(slots=True, frozen=True)
class AIRequest:
    message: str
    image_url: Optional[str] = None


@dataclass(slots=True)
class AIResponse:
    """Successful answer from the AI relay."""

    message: str
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "AIResponse":
        """Validate a relay body: ``status == "success"`` and a string ``message``."""
        if not isinstance(payload, dict):
            raise InvalidResponseShape("Réponse IA invalide", details={"payload": repr(payload)[:200]})
        status = payload.get("status")
        if status != "success":
            message = payload.get("message") or payload.get("error") or "Erreur inconnue"
            if isinstance(message, dict):
                message = message.get("message", "Erreur inconnue")
            raise RemoteError(str(message), details={"status": status})
        message = payload.get("message")
        if not isinstance(message, str):
            raise InvalidResponseShape("Champ 'message' manquant dans la réponse IA")
        return cls(message=message, payload=payload)


@dataclass(slots=True, frozen=True)
class AIFailure:
    """Terminal failure of an AI request, after retries."""

    error: str
    code: str
    attempts: int


@dataclass(slots=True, frozen=True)
class ErrorEvent:
    source: str
    code: str
    message: str


@dataclass(slots=True, frozen=True)
class SpeechOptions:
    """Voice parameters for one utterance."""

    language: str = "fr-FR"
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0

    def merged(self, overrides: Optional[dict[str, Any]]) -> "SpeechOptions":
        """Return a copy with the non-None values of ``overrides`` applied."""
        if not overrides:
            return self
        values = {
            "language": self.language,
            "rate": self.rate,
            "pitch": self.pitch,
            "volume": self.volume,
        }
        for key, value in overrides.items():
            if key in values and value is not None:
                values[key] = value
        return SpeechOptions(**values)


@dataclass(slots=True)
class SpeechItem:
    text: str
    options: SpeechOptions
    enqueued_at: float = field(default_factory=time.monotonic)

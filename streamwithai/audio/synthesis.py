"""Voice output controller: FIFO speech queue."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Optional, Protocol

from ..config.settings import Settings
from ..core.errors import Unsupported
from ..core.events import EventBus, Topic, status_topic
from ..core.status import StatusName
from ..services.schemas import AIResponse, ErrorEvent, SpeechItem, SpeechOptions, StatusUpdate

LOGGER = logging.getLogger(__name__)

STATUS_SPEAKING = "Synthèse vocale: lecture en cours"
STATUS_IDLE = "Synthèse vocale: inactive"
STATUS_STOPPED = "Synthèse vocale: arrêtée"


class Speaker(Protocol):
    """Renders one utterance; ``say`` returns when playback is over."""

    async def say(self, text: str, options: SpeechOptions) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def cancel(self) -> None: ...


class VoiceOutputController:
    """Speak queued texts one at a time, in order."""

    def __init__(self, bus: EventBus, speaker: Optional[Speaker], settings: Settings) -> None:
        self.bus = bus
        self.speaker = speaker
        self.defaults = SpeechOptions(
            language=settings.synthesis_language,
            rate=settings.synthesis_rate,
            pitch=settings.synthesis_pitch,
            volume=settings.synthesis_volume,
        )
        self._queue: deque[SpeechItem] = deque()
        self._current: Optional[SpeechItem] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._speaking = False
        self._paused = False
        self.spoken = 0
        self.failed = 0

        bus.subscribe(Topic.AI_RESPONSE, self._on_ai_response, context=self)
        bus.subscribe(Topic.SYNTHESIS_SPEAK, self._on_speak, context=self)
        bus.subscribe(Topic.SYNTHESIS_STOP, lambda _payload: self.stop(), context=self)
        bus.subscribe(status_topic(StatusName.RECOGNITION.value), self._on_recognition_status, context=self)

    @property
    def speaking(self) -> bool:
        return self._speaking

    @property
    def paused(self) -> bool:
        return self._paused

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def enqueue(self, text: str, options: Optional[dict[str, Any]] = None) -> SpeechItem | None:
        """Queue ``text``; start speaking when idle."""
        text = (text or "").strip()
        if not text:
            return None
        if self.speaker is None:
            LOGGER.warning("Synthèse vocale non supportée, texte ignoré")
            self.bus.publish(
                Topic.SYNTHESIS_ERROR,
                ErrorEvent("speechSynthesis", "unsupported", "Synthèse vocale non supportée"),
            )
            return None
        item = SpeechItem(text=text, options=self.defaults.merged(options))
        self._queue.append(item)
        LOGGER.debug("Texte ajouté à la file (%s en attente)", len(self._queue))
        if not self._speaking:
            self.play_next()
        return item

    def play_next(self) -> None:
        """Speak the front item, or go idle when the queue is empty."""
        if not self._queue:
            self._speaking = False
            self._paused = False
            self._current = None
            self._task = None
            self._set_status(False, STATUS_IDLE)
            return

        item = self._queue.popleft()
        self._current = item
        if not self._speaking:
            self._speaking = True
            self._set_status(True, STATUS_SPEAKING)
        self._task = asyncio.get_running_loop().create_task(self._speak(item))

    def stop(self) -> None:
        """Cancel the current item and drop the queue; no-op when idle."""
        if not self._speaking and not self._queue:
            return
        self._queue.clear()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if self.speaker is not None:
            try:
                self.speaker.cancel()
            except Exception:
                LOGGER.exception("Erreur à l'arrêt de la synthèse vocale")
        self._speaking = False
        self._paused = False
        self._current = None
        self._set_status(False, STATUS_STOPPED)
        self.bus.publish(Topic.SYNTHESIS_STOPPED)
        LOGGER.info("Synthèse vocale arrêtée")

    def pause(self) -> None:
        if not self._speaking or self._paused or self.speaker is None:
            return
        self._paused = True
        self.speaker.pause()
        LOGGER.debug("Synthèse vocale en pause")

    def resume(self) -> None:
        if not self._paused or self.speaker is None:
            return
        self._paused = False
        self.speaker.resume()
        LOGGER.debug("Reprise de la synthèse vocale")

    def snapshot(self) -> dict[str, Any]:
        return {
            "speaking": self._speaking,
            "paused": self._paused,
            "current": self._current.text if self._current else None,
            "queue_length": len(self._queue),
        }

    def queue_stats(self) -> dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "speaking": self._speaking,
            "spoken": self.spoken,
            "failed": self.failed,
            "defaults": {
                "language": self.defaults.language,
                "rate": self.defaults.rate,
                "pitch": self.defaults.pitch,
                "volume": self.defaults.volume,
            },
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _speak(self, item: SpeechItem) -> None:
        self.bus.publish(Topic.SYNTHESIS_STARTED, item)
        try:
            if self.speaker is None:
                raise Unsupported("Synthèse vocale non supportée")
            await self.speaker.say(item.text, item.options)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failed += 1
            LOGGER.error("Erreur de synthèse vocale: %s", exc)
            self.bus.publish(Topic.SYNTHESIS_ERROR, {"item": item, "error": str(exc)})
        else:
            self.spoken += 1
            self.bus.publish(Topic.SYNTHESIS_ENDED, item)
        if self._current is item:
            self.play_next()

    def _set_status(self, active: bool, text: str) -> None:
        self.bus.publish(Topic.STATUS_SET, StatusUpdate(StatusName.VOICE.value, active, text))

    def _on_ai_response(self, response: AIResponse) -> None:
        self.enqueue(response.message)

    def _on_speak(self, payload: Any) -> None:
        if isinstance(payload, dict):
            self.enqueue(payload.get("text", ""), payload.get("options"))
        else:
            self.enqueue(str(payload or ""))

    def _on_recognition_status(self, payload: dict[str, Any]) -> None:
        if payload.get("active"):
            self.pause()
        else:
            self.resume()

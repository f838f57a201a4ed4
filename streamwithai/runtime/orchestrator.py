"""Wire the bus, the registry, the history and every controller together."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from ..audio.recognition import RecognitionEngine, VoiceInputController
from ..audio.synthesis import Speaker, VoiceOutputController
from ..config.settings import Settings
from ..core.errors import AssistantError
from ..core.events import EventBus, Topic, status_topic
from ..core.history import ConversationHistory
from ..core.status import StatusName, StatusRegistry, default_text
from ..screen.controller import CaptureController
from ..screen.source import DisplaySource, UnavailableDisplay
from ..services.ai import AIRequestController, RelayClient
from ..services.api import AIRelayClient
from ..services.schemas import AIRequest, CaptureReady, CaptureRequest, ErrorEvent, StatusUpdate
from ..services.uploader import ImageRelayClient

LOGGER = logging.getLogger(__name__)

_ERROR_TOPICS = (
    Topic.ERROR,
    Topic.SCREEN_SHARE_ERROR,
    Topic.RECOGNITION_ERROR,
    Topic.SYNTHESIS_ERROR,
    Topic.AI_ERROR,
)


class Orchestrator:
    """Application shell: one instance of everything, explicitly connected."""

    def __init__(
        self,
        settings: Settings,
        *,
        bus: Optional[EventBus] = None,
        display: Optional[DisplaySource] = None,
        recognizer: Optional[RecognitionEngine] = None,
        speaker: Optional[Speaker] = None,
        relay: Optional[RelayClient] = None,
        uploader: Optional[ImageRelayClient] = None,
    ) -> None:
        self.settings = settings
        self.bus = bus or EventBus(debug=settings.debug_events)
        self.status = StatusRegistry(self.bus)
        self.history = ConversationHistory(settings.max_history_length)
        self.relay = relay or AIRelayClient(settings)
        self.uploader = uploader

        self.capture = CaptureController(self.bus, display or UnavailableDisplay(), settings)
        self.voice_input = VoiceInputController(self.bus, recognizer, settings)
        self.voice_output = VoiceOutputController(self.bus, speaker, settings)
        self.ai = AIRequestController(self.bus, self.history, self.relay, settings)

        self._auto_listen: Optional[asyncio.TimerHandle] = None
        self._started = False

        self.bus.subscribe(Topic.CAPTURE_READY, self._on_capture_ready, context=self)
        for name in StatusName:
            self.bus.subscribe(status_topic(name.value), self._make_status_logger(name), context=self)
        for topic in _ERROR_TOPICS:
            self.bus.subscribe(topic, self._make_error_logger(topic), context=self)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Orchestrator":
        """Build the orchestrator with the real capture, audio and HTTP backends."""
        from ..screen.source import MssDisplaySource

        recognizer: Optional[RecognitionEngine]
        try:
            from ..audio.recognizer import WhisperRecognizer
        except (ImportError, OSError) as exc:
            LOGGER.warning("Reconnaissance vocale indisponible: %s", exc)
            recognizer = None
        else:
            recognizer = WhisperRecognizer(settings)

        speaker: Optional[Speaker]
        try:
            from ..audio.speaker import build_speaker
        except (ImportError, OSError) as exc:
            LOGGER.warning("Synthèse vocale indisponible: %s", exc)
            speaker = None
        else:
            speaker = build_speaker(settings)

        uploader = ImageRelayClient(settings) if settings.upload_enabled else None
        return cls(
            settings,
            display=MssDisplaySource(settings.capture_monitor),
            recognizer=recognizer,
            speaker=speaker,
            relay=AIRelayClient(settings),
            uploader=uploader,
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        loop = asyncio.get_running_loop()
        self.bus.bind_loop(loop)
        LOGGER.info("Application initialisée")
        self.bus.publish(Topic.APP_INITIALIZED, {"settings": self.settings.model_dump(exclude={"tts_voices"})})
        if self.settings.auto_listen:
            self._auto_listen = loop.call_later(self.settings.auto_listen_delay, self._auto_start_listening)

    async def shutdown(self) -> None:
        if self._auto_listen is not None:
            self._auto_listen.cancel()
            self._auto_listen = None
        self.voice_input.stop()
        self.voice_output.stop()
        self.capture.stop()
        for client in (self.relay, self.uploader):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()
        self.bus.unsubscribe_context(self)
        self._started = False
        LOGGER.info("Application arrêtée")

    # ------------------------------------------------------------------ #
    # User controls
    # ------------------------------------------------------------------ #
    async def start_screen_share(self) -> bool:
        return await self.capture.start()

    def stop_screen_share(self) -> None:
        self.capture.stop()

    def start_listening(self) -> bool:
        return self.voice_input.start()

    def stop_listening(self) -> None:
        self.voice_input.stop()

    def stop_voice(self) -> None:
        self.voice_output.stop()

    def send_message(self, text: str) -> bool:
        """Typed message: logged as a user turn, then sent like a transcript."""
        text = (text or "").strip()
        if not text:
            return False
        self.bus.publish(Topic.USER_MESSAGE, text)
        self.bus.publish(Topic.CAPTURE_REQUEST, CaptureRequest(text))
        return True

    def clear_history(self) -> None:
        self.history.clear()

    def stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "status": self.status.stats(),
            "history": self.history.stats(),
            "capture": self.capture.snapshot(),
            "voice_input": self.voice_input.snapshot(),
            "voice_output": self.voice_output.queue_stats(),
            "ai": self.ai.snapshot(),
            "events": {event: self.bus.listener_count(event) for event in self.bus.events()},
        }
        if self.uploader is not None:
            stats["upload_cache"] = self.uploader.cache_stats()
        return stats

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _auto_start_listening(self) -> None:
        self._auto_listen = None
        LOGGER.info("Démarrage automatique de l'écoute")
        self.voice_input.start()

    async def _on_capture_ready(self, ready: CaptureReady) -> None:
        if self.uploader is None:
            self.bus.publish(Topic.AI_REQUEST, AIRequest(ready.message))
            return

        self._set_upload_status(True, default_text(StatusName.UPLOAD, True))
        try:
            url = await self.uploader.upload(ready.image)
        except Exception as exc:
            code = exc.code if isinstance(exc, AssistantError) else "upload_failed"
            LOGGER.warning("Upload échoué, envoi sans image: %s", exc)
            self._set_upload_status(False, "Upload: échec")
            self.bus.publish(Topic.ERROR, ErrorEvent("upload", code, f"Erreur d'upload: {exc}"))
            self.bus.publish(Topic.AI_REQUEST, AIRequest(ready.message))
            return
        self._set_upload_status(False, default_text(StatusName.UPLOAD, False))
        self.bus.publish(Topic.AI_REQUEST, AIRequest(ready.message, image_url=url))

    def _set_upload_status(self, active: bool, text: str) -> None:
        self.bus.publish(Topic.STATUS_SET, StatusUpdate(StatusName.UPLOAD.value, active, text))

    @staticmethod
    def _make_status_logger(name: StatusName):  # noqa: ANN205
        def _log(payload: dict[str, Any]) -> None:
            LOGGER.debug("Statut %s: %s (%s)", name.value, payload.get("text"), "actif" if payload.get("active") else "inactif")

        return _log

    @staticmethod
    def _make_error_logger(topic: Topic):  # noqa: ANN205
        def _log(payload: Any) -> None:
            message = getattr(payload, "message", None) or getattr(payload, "error", None) or payload
            if isinstance(payload, dict):
                message = payload.get("error") or payload
            LOGGER.warning("[%s] %s", topic.value, message)

        return _log

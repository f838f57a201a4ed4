"""Voice input controller: continuous listening with auto-restart."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from ..config.settings import Settings
from ..core.errors import ResourceBusy, Unsupported
from ..core.events import EventBus, Topic, status_topic
from ..core.status import StatusName
from ..services.schemas import CaptureRequest, ErrorEvent, StatusUpdate, TranscriptEvent

LOGGER = logging.getLogger(__name__)

STATUS_LISTENING = "Reconnaissance vocale: écoute en cours"
STATUS_WAITING = "Reconnaissance vocale: en attente"
STATUS_STOPPED = "Reconnaissance vocale: inactive"
STATUS_UNSUPPORTED = "Reconnaissance vocale: non supportée"

# code -> (status text, fatal)
_ERRORS: dict[str, tuple[str, bool]] = {
    "no-speech": ("Aucune parole détectée", False),
    "audio-capture": ("Impossible de capturer l'audio - vérifiez votre microphone", True),
    "not-allowed": ("Microphone non autorisé - vérifiez les permissions", True),
    "network": ("Erreur réseau", False),
}


class RecognitionEngine(Protocol):
    """One listening session per ``start``; callbacks arrive on the event loop."""

    def bind(
        self,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_result: Callable[[TranscriptEvent], None],
        on_error: Callable[[str, str], None],
    ) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class RecognitionState(str, Enum):
    INACTIVE = "inactive"
    STARTING = "starting"
    LISTENING = "listening"


def describe_error(code: str) -> tuple[str, bool]:
    """Status text and fatality of a recognition error code."""
    return _ERRORS.get(code, (f"Erreur de reconnaissance vocale: {code}", False))


class VoiceInputController:
    """Keep the recognition engine listening while the user wants it to.

    The engine runs one session at a time. When a session ends the controller
    restarts it after a short settle delay, unless listening was stopped, a
    fatal error occurred, or voice output currently holds the microphone.
    """

    def __init__(
        self,
        bus: EventBus,
        engine: Optional[RecognitionEngine],
        settings: Settings,
        *,
        settle_delay: float = 0.8,
        busy_cooldown: float = 2.0,
    ) -> None:
        self.bus = bus
        self.engine = engine
        self.retry_delay = settings.retry_delay
        self.auto_restart_enabled = settings.auto_restart
        self.pause_while_speaking = settings.pause_input_while_speaking
        self.settle_delay = settle_delay
        self.busy_cooldown = busy_cooldown

        self._state = RecognitionState.INACTIVE
        self._active = False
        self._auto_restart = False
        self._held = False
        self._fatal = False
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._busy_handle: Optional[asyncio.TimerHandle] = None
        self.transcripts = 0
        self.errors = 0

        if engine is not None:
            engine.bind(self._on_engine_start, self._on_engine_end, self._on_result, self._on_error)
        bus.subscribe(Topic.RECOGNITION_START, lambda _payload: self.start(), context=self)
        bus.subscribe(Topic.RECOGNITION_STOP, lambda _payload: self.stop(), context=self)
        bus.subscribe(status_topic(StatusName.VOICE.value), self._on_voice_status, context=self)

    @property
    def state(self) -> RecognitionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._active

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def start(self) -> bool:
        """Begin continuous listening. Return False when nothing was started."""
        if self.engine is None:
            self._report_unsupported("Aucun moteur de reconnaissance vocale disponible")
            return False
        if self._active and not self._fatal and not self._held:
            LOGGER.debug("Reconnaissance vocale déjà active")
            return False

        self._active = True
        self._auto_restart = self.auto_restart_enabled
        self._fatal = False
        self._held = False
        LOGGER.info("Démarrage de la reconnaissance vocale")
        self._safe_start()
        return True

    def stop(self) -> None:
        """Stop listening; no-op when already stopped."""
        if not self._active and self._state is RecognitionState.INACTIVE and self._restart_handle is None:
            return
        self._active = False
        self._auto_restart = False
        self._held = False
        self._cancel_restart()
        self._cancel_busy()
        if self._state is not RecognitionState.INACTIVE and self.engine is not None:
            try:
                self.engine.stop()
            except Exception:
                LOGGER.exception("Erreur à l'arrêt du moteur de reconnaissance")
        LOGGER.info("Reconnaissance vocale arrêtée")

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "active": self._active,
            "auto_restart": self._auto_restart,
            "held": self._held,
            "fatal": self._fatal,
            "restart_pending": self._restart_handle is not None,
            "transcripts": self.transcripts,
            "errors": self.errors,
        }

    # ------------------------------------------------------------------ #
    # Start / restart
    # ------------------------------------------------------------------ #
    def _safe_start(self) -> None:
        self._restart_handle = None
        if self._state is RecognitionState.STARTING:
            LOGGER.debug("Démarrage déjà en cours, requête ignorée")
            return
        if self._state is RecognitionState.LISTENING:
            return
        if not self._active or self._held or self.engine is None:
            return

        self._state = RecognitionState.STARTING
        try:
            self.engine.start()
        except ResourceBusy:
            LOGGER.info("Moteur de reconnaissance déjà démarré, attente de %.1fs", self.busy_cooldown)
            self._cancel_busy()
            self._busy_handle = asyncio.get_running_loop().call_later(self.busy_cooldown, self._clear_busy)
        except Unsupported as exc:
            self._state = RecognitionState.INACTIVE
            self._active = False
            self._report_unsupported(exc.message)
        except Exception as exc:
            self._state = RecognitionState.INACTIVE
            self.errors += 1
            LOGGER.error("Erreur au démarrage de la reconnaissance: %s", exc)
            self.bus.publish(
                Topic.RECOGNITION_ERROR,
                ErrorEvent("recognition", "start-failed", f"Erreur au démarrage de la reconnaissance: {exc}"),
            )
            if self._active:
                self._schedule_restart(self.retry_delay)

    def _clear_busy(self) -> None:
        self._busy_handle = None
        if self._state is RecognitionState.STARTING:
            self._state = RecognitionState.INACTIVE

    def _schedule_restart(self, delay: float) -> None:
        self._cancel_restart()
        self._restart_handle = asyncio.get_running_loop().call_later(delay, self._safe_start)

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _cancel_busy(self) -> None:
        if self._busy_handle is not None:
            self._busy_handle.cancel()
            self._busy_handle = None

    def _report_unsupported(self, message: str) -> None:
        LOGGER.warning("Reconnaissance vocale non supportée: %s", message)
        self._set_status(False, STATUS_UNSUPPORTED)
        self.bus.publish(Topic.RECOGNITION_ERROR, ErrorEvent("recognition", Unsupported.code, message))

    # ------------------------------------------------------------------ #
    # Engine callbacks
    # ------------------------------------------------------------------ #
    def _on_engine_start(self) -> None:
        self._cancel_busy()
        self._state = RecognitionState.LISTENING
        if not self._active or self._held:
            # stop() or a hold arrived while the engine was starting.
            if self.engine is not None:
                self.engine.stop()
            return
        self.bus.publish(Topic.SYNTHESIS_STOP)
        self._set_status(True, STATUS_LISTENING)
        LOGGER.info("Écoute en cours")

    def _on_engine_end(self) -> None:
        self._cancel_busy()
        self._state = RecognitionState.INACTIVE
        if not self._fatal:
            self._set_status(False, STATUS_WAITING if self._active else STATUS_STOPPED)
        if self._active and self._auto_restart and not self._held and not self._fatal:
            self._schedule_restart(self.settle_delay)

    def _on_result(self, event: TranscriptEvent) -> None:
        text = (event.text or "").strip()
        if not text:
            return
        self.transcripts += 1
        LOGGER.info("Vous: %s", text)
        self.bus.publish(Topic.SPEECH, event)
        self.bus.publish(Topic.CAPTURE_REQUEST, CaptureRequest(text))

    def _on_error(self, code: str, message: str = "") -> None:
        text, fatal = describe_error(code)
        self.errors += 1
        if code == "no-speech":
            LOGGER.info(text)
        else:
            LOGGER.error("%s%s", text, f" ({message})" if message else "")
        self._set_status(False, text)
        self.bus.publish(Topic.RECOGNITION_ERROR, ErrorEvent("recognition", code, text))

        if fatal:
            self._fatal = True
            self._cancel_restart()
            if code == "not-allowed":
                self._active = False
            return
        if self._active and not self._held:
            self._schedule_restart(self.retry_delay)

    # ------------------------------------------------------------------ #
    # Voice output coordination
    # ------------------------------------------------------------------ #
    def _on_voice_status(self, payload: dict[str, Any]) -> None:
        if not self.pause_while_speaking:
            return
        if payload.get("active"):
            if not self._active or self._held:
                return
            self._held = True
            self._cancel_restart()
            if self._state is not RecognitionState.INACTIVE and self.engine is not None:
                LOGGER.debug("Micro en pause pendant la synthèse vocale")
                self.engine.stop()
            return
        if self._held:
            self._held = False
            if self._active and not self._fatal:
                self._schedule_restart(self.settle_delay)

    def _set_status(self, active: bool, text: str) -> None:
        self.bus.publish(Topic.STATUS_SET, StatusUpdate(StatusName.RECOGNITION.value, active, text))

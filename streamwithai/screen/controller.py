"""Screen share session and debounced frame capture."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Any, Callable, Optional

from ..config.settings import Settings
from ..core.errors import AssistantError, DeviceUnavailable, PermissionDenied, Unsupported
from ..core.events import EventBus, Topic
from ..core.status import StatusName, default_text
from ..services.schemas import (
    AIRequest,
    CaptureReady,
    CaptureRequest,
    CapturedImage,
    ErrorEvent,
    StatusUpdate,
)
from .frames import encode_frame
from .source import DisplaySource

LOGGER = logging.getLogger(__name__)


class CaptureState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    CAPTURING = "capturing"


class CaptureController:
    """Own the display source and turn capture requests into frames.

    Every share session gets a token; callbacks and frames that belong to an
    older session are ignored.
    """

    def __init__(
        self,
        bus: EventBus,
        source: DisplaySource,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bus = bus
        self.source = source
        self.debounce = settings.capture_debounce
        self.max_width = settings.capture_max_width
        self.quality = settings.capture_quality
        self._clock = clock
        self._state = CaptureState.IDLE
        self._session = 0
        self._last_capture = -math.inf
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.frames = 0
        self.dropped = 0

        bus.subscribe(Topic.SCREEN_SHARE_START, lambda _payload: self.start(), context=self)
        bus.subscribe(Topic.SCREEN_SHARE_STOP, lambda _payload: self.stop(), context=self)
        bus.subscribe(Topic.CAPTURE_REQUEST, self._on_capture_request, context=self)

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_capturing(self) -> bool:
        return self._state is CaptureState.CAPTURING

    # ------------------------------------------------------------------ #
    # Session
    # ------------------------------------------------------------------ #
    async def start(self) -> bool:
        """Acquire the display. Return True when sharing is active."""
        if self._state is not CaptureState.IDLE:
            LOGGER.debug("Partage d'écran déjà %s", self._state.value)
            return self._state is CaptureState.CAPTURING

        self._loop = asyncio.get_running_loop()
        self._state = CaptureState.STARTING
        self._session += 1
        token = self._session
        LOGGER.info("Démarrage du partage d'écran")

        try:
            await self._loop.run_in_executor(None, self.source.open)
        except PermissionDenied as exc:
            self._fail_start("Partage d'écran refusé", exc)
            return False
        except DeviceUnavailable as exc:
            self._fail_start("Aucun écran disponible", exc)
            return False
        except Unsupported as exc:
            self._fail_start("Partage d'écran non supporté", exc)
            return False
        except Exception as exc:
            self._fail_start("Erreur de partage d'écran", exc)
            return False

        if token != self._session or self._state is not CaptureState.STARTING:
            # stop() won the race while the source was opening. A newer
            # session may already own the source.
            if self._state is CaptureState.IDLE:
                self.source.close()
            return False

        self.source.set_end_hook(lambda: self._on_source_ended(token))
        self._state = CaptureState.CAPTURING
        self._last_capture = -math.inf
        self._set_status(True, default_text(StatusName.SCREEN_SHARE, True))
        self.bus.publish(Topic.SCREEN_SHARE_STARTED, {"session": token})
        LOGGER.info("Partage d'écran actif")
        return True

    def stop(self) -> None:
        """End the current session; no-op when idle."""
        if self._state is CaptureState.IDLE:
            return
        if self._state is CaptureState.STARTING:
            self._session += 1
            self._state = CaptureState.IDLE
            LOGGER.info("Partage d'écran annulé pendant le démarrage")
            return
        self._release(self._session, "user")

    # ------------------------------------------------------------------ #
    # Capture
    # ------------------------------------------------------------------ #
    async def request_capture(self, message: str) -> CapturedImage | None:
        """Attach the current frame to ``message``, or forward it without image."""
        message = (message or "").strip()
        if not message:
            return None

        if self._state is not CaptureState.CAPTURING:
            self._forward_without_image(message)
            return None

        now = self._clock()
        if now - self._last_capture < self.debounce:
            self.dropped += 1
            LOGGER.debug("Capture ignorée (debounce %.0f ms)", self.debounce * 1000)
            return None
        self._last_capture = now

        token = self._session
        loop = asyncio.get_running_loop()
        try:
            image = await loop.run_in_executor(None, self._grab_encoded)
        except Exception as exc:
            code = exc.code if isinstance(exc, AssistantError) else "capture_failed"
            LOGGER.error("Erreur lors de la capture: %s", exc)
            self.bus.publish(Topic.ERROR, ErrorEvent("screenShare", code, f"Erreur lors de la capture: {exc}"))
            self._forward_without_image(message)
            return None

        if token != self._session or self._state is not CaptureState.CAPTURING:
            LOGGER.info("Capture terminée après la fin du partage, image ignorée")
            self._forward_without_image(message)
            return None

        self.frames += 1
        LOGGER.info("Capture effectuée (%sx%s, %s octets)", image.width, image.height, image.size)
        self.bus.publish(Topic.CAPTURE_READY, CaptureReady(message=message, image=image))
        return image

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "session": self._session,
            "frames": self.frames,
            "dropped": self.dropped,
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _grab_encoded(self) -> CapturedImage:
        return encode_frame(self.source.grab(), self.max_width, self.quality)

    def _forward_without_image(self, message: str) -> None:
        self.bus.publish(Topic.AI_REQUEST, AIRequest(message=message))

    def _fail_start(self, text: str, exc: BaseException) -> None:
        self._state = CaptureState.IDLE
        code = exc.code if isinstance(exc, AssistantError) else "screen_share_failed"
        LOGGER.error("%s: %s", text, exc)
        self._set_status(False, text)
        self.bus.publish(Topic.SCREEN_SHARE_ERROR, ErrorEvent("screenShare", code, f"{text}: {exc}"))

    def _on_source_ended(self, token: int) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._release, token, "ended")

    def _release(self, token: int, reason: str) -> None:
        if token != self._session or self._state is not CaptureState.CAPTURING:
            return
        self._session += 1
        self._state = CaptureState.IDLE
        self.source.set_end_hook(None)
        try:
            self.source.close()
        except Exception:
            LOGGER.exception("Erreur à la fermeture de la source d'affichage")
        self._set_status(False, default_text(StatusName.SCREEN_SHARE, False))
        self.bus.publish(Topic.SCREEN_SHARE_STOPPED, {"reason": reason})
        LOGGER.info("Partage d'écran arrêté (%s)", reason)

    def _set_status(self, active: bool, text: str) -> None:
        self.bus.publish(Topic.STATUS_SET, StatusUpdate(StatusName.SCREEN_SHARE.value, active, text))

    def _on_capture_request(self, payload: CaptureRequest | str) -> Any:
        message = payload.message if isinstance(payload, CaptureRequest) else str(payload or "")
        return self.request_capture(message)

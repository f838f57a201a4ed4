"""Display sources: where the shared frames come from."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Callable, Optional, Protocol

import mss
import mss.exception
from PIL import Image

from ..core.errors import DeviceUnavailable, PermissionDenied, Unsupported

LOGGER = logging.getLogger(__name__)

EndHook = Callable[[], None]


class DisplaySource(Protocol):
    """A shareable display.

    ``open`` and ``grab`` block and run in an executor. The end hook is called,
    possibly from another thread, when the display goes away on its own.
    """

    def open(self) -> None: ...

    def grab(self) -> Image.Image: ...

    def close(self) -> None: ...

    def set_end_hook(self, hook: Optional[EndHook]) -> None: ...


class MssDisplaySource:
    """Grab one monitor with ``mss``."""

    def __init__(self, monitor: int = 1) -> None:
        self.monitor = monitor
        self._hook: Optional[EndHook] = None
        self._lock = Lock()
        self._open = False

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def open(self) -> None:
        """Check that the monitor can be captured."""
        with self._lock:
            if self._open:
                return
            try:
                with mss.mss() as sct:
                    monitors = sct.monitors
                    if self.monitor >= len(monitors):
                        raise DeviceUnavailable(
                            f"Écran {self.monitor} introuvable ({len(monitors) - 1} disponible(s))"
                        )
                    sct.grab(monitors[self.monitor])
            except mss.exception.ScreenShotError as exc:
                message = str(exc)
                if "permission" in message.lower() or "denied" in message.lower():
                    raise PermissionDenied("Capture d'écran refusée par le système") from exc
                raise DeviceUnavailable(f"Capture d'écran impossible: {message}") from exc
            self._open = True
            LOGGER.debug("Display source opened (monitor %s).", self.monitor)

    def grab(self) -> Image.Image:
        """Return the current frame as an RGB image."""
        if not self._open:
            raise DeviceUnavailable("La source d'affichage n'est pas ouverte")
        # mss handles are bound to the thread that created them, and grabs run
        # on executor threads.
        try:
            with mss.mss() as sct:
                monitors = sct.monitors
                if self.monitor >= len(monitors):
                    self._ended()
                    raise DeviceUnavailable(f"Écran {self.monitor} déconnecté")
                shot = sct.grab(monitors[self.monitor])
        except mss.exception.ScreenShotError as exc:
            raise DeviceUnavailable(f"Capture d'écran impossible: {exc}") from exc
        return Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")

    def close(self) -> None:
        with self._lock:
            self._open = False
            LOGGER.debug("Display source closed.")

    def set_end_hook(self, hook: Optional[EndHook]) -> None:
        self._hook = hook

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _ended(self) -> None:
        hook = self._hook
        self._open = False
        if hook is not None:
            hook()


class UnavailableDisplay:
    """Stand-in used when no capture backend could be loaded."""

    def __init__(self, reason: str = "Capture d'écran non supportée") -> None:
        self.reason = reason

    def open(self) -> None:
        raise Unsupported(self.reason)

    def grab(self) -> Image.Image:
        raise Unsupported(self.reason)

    def close(self) -> None:
        return None

    def set_end_hook(self, hook: Optional[EndHook]) -> None:
        return None

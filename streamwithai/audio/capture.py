"""Microphone input stream."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Callable

import sounddevice as sd

from ..core.errors import DeviceUnavailable, PermissionDenied

LOGGER = logging.getLogger(__name__)

_PERMISSION_HINTS = ("permission", "not authorized", "access denied")


@dataclass(slots=True)
class MicrophoneConfig:
    sample_rate: int = 16_000
    channels: int = 1
    frame_duration_ms: int = 30
    device_name: str | None = None

    @property
    def blocksize(self) -> int:
        return self.sample_rate * self.frame_duration_ms // 1000


def find_input_device(name: str | None) -> int | None:
    """Index of the first input device whose name contains ``name``."""
    if not name:
        return None
    wanted = name.lower()
    for index, device in enumerate(sd.query_devices()):
        if int(device.get("max_input_channels", 0)) > 0 and wanted in str(device["name"]).lower():
            return index
    raise DeviceUnavailable(f"Micro introuvable: {name}")


class MicrophoneStream:
    """Deliver fixed-size int16 frames to ``on_frame`` from the audio thread."""

    def __init__(self, config: MicrophoneConfig, on_frame: Callable[[bytes], None]) -> None:
        self.config = config
        self._on_frame = on_frame
        self._stream: sd.RawInputStream | None = None
        self._lock = Lock()

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        """Open the device; raise ``PermissionDenied`` or ``DeviceUnavailable``."""
        with self._lock:
            if self._stream is not None:
                return
            device = find_input_device(self.config.device_name)
            try:
                stream = sd.RawInputStream(
                    samplerate=self.config.sample_rate,
                    channels=self.config.channels,
                    dtype="int16",
                    blocksize=self.config.blocksize,
                    device=device,
                    callback=self._callback,
                )
                stream.start()
            except sd.PortAudioError as exc:
                text = str(exc)
                if any(hint in text.lower() for hint in _PERMISSION_HINTS):
                    raise PermissionDenied(f"Microphone non autorisé: {text}") from exc
                raise DeviceUnavailable(f"Microphone indisponible: {text}") from exc
            self._stream = stream
            LOGGER.debug("Micro ouvert (%s Hz, blocs de %s ms)", self.config.sample_rate, self.config.frame_duration_ms)

    def stop(self) -> None:
        """Close the device; safe to call twice."""
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        LOGGER.debug("Micro fermé")

    def _callback(self, indata, frames: int, time, status) -> None:  # noqa: ANN001
        if status:  # pragma: no cover
            LOGGER.warning("Entrée audio: %s", status)
        self._on_frame(bytes(indata))

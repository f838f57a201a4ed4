"""Output stream for synthesized speech."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import sounddevice as sd

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class OutputFormat:
    sample_rate: int = 22_050
    channels: int = 1
    device_name: str | None = None


class PcmPlayer:
    """int16 PCM written to the device from a single byte buffer.

    The audio callback takes what the device asks for and pads with silence;
    ``pending`` reaches zero once everything queued has been handed over.
    """

    def __init__(self, fmt: OutputFormat | None = None) -> None:
        self.format = fmt or OutputFormat()
        self._data = bytearray()
        self._lock = threading.Lock()
        self._stream: sd.RawOutputStream | None = None
        self._held = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._data)

    @property
    def held(self) -> bool:
        return self._held

    def set_format(self, sample_rate: int, channels: int) -> None:
        """Switch format; the stream is reopened by the next ``write``."""
        if (self.format.sample_rate, self.format.channels) == (sample_rate, channels):
            return
        with self._lock:
            self._data.clear()
        self._close()
        self.format.sample_rate = sample_rate
        self.format.channels = channels

    def write(self, pcm: bytes) -> None:
        if not pcm:
            return
        with self._lock:
            self._data.extend(pcm)
        self._open()

    def flush(self) -> None:
        """Drop queued audio and close the device."""
        with self._lock:
            self._data.clear()
        self._held = False
        self._close()

    def hold(self) -> None:
        self._held = True

    def release(self) -> None:
        self._held = False

    def _open(self) -> None:
        if self._stream is None:
            self._stream = sd.RawOutputStream(
                samplerate=self.format.sample_rate,
                channels=self.format.channels,
                dtype="int16",
                device=self.format.device_name,
                callback=self._fill,
            )
        if not self._stream.active:
            self._stream.start()

    def _close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()

    def _fill(self, outdata, frames: int, time, status) -> None:  # noqa: ANN001
        if status:  # pragma: no cover
            LOGGER.warning("Sortie audio: %s", status)
        size = len(outdata)
        with self._lock:
            if self._held:
                chunk = b""
            else:
                chunk = bytes(self._data[:size])
                del self._data[:size]
        outdata[: len(chunk)] = chunk
        if len(chunk) < size:
            outdata[len(chunk) :] = b"\x00" * (size - len(chunk))

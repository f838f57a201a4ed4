"""Voice activity detection on 16-bit mono PCM frames."""

from __future__ import annotations

from dataclasses import dataclass

import webrtcvad

_VALID_SAMPLE_RATES = (8000, 16_000, 32_000, 48_000)
_VALID_FRAME_DURATIONS_MS = (10, 20, 30)


def frame_size(sample_rate: int, duration_ms: int) -> int:
    """Number of bytes in one frame of ``duration_ms`` at ``sample_rate``."""
    return sample_rate * duration_ms // 1000 * 2


@dataclass(slots=True)
class VADConfig:
    """WebRTC VAD configuration."""

    aggressiveness: int = 2  # 0 (sensitive) to 3 (strict)
    sample_rate: int = 16_000
    frame_duration_ms: int = 30

    def __post_init__(self) -> None:
        if self.sample_rate not in _VALID_SAMPLE_RATES:
            raise ValueError(f"Unsupported VAD sample rate: {self.sample_rate}")
        if self.frame_duration_ms not in _VALID_FRAME_DURATIONS_MS:
            raise ValueError(f"Unsupported VAD frame duration: {self.frame_duration_ms} ms")
        self.aggressiveness = max(0, min(3, self.aggressiveness))


class VoiceActivityDetector:
    """Callable speech predicate backed by ``webrtcvad``."""

    def __init__(self, config: VADConfig | None = None) -> None:
        self.config = config or VADConfig()
        self._vad = webrtcvad.Vad(self.config.aggressiveness)
        self._frame_bytes = frame_size(self.config.sample_rate, self.config.frame_duration_ms)

    def __call__(self, frame: bytes) -> bool:
        return self.is_speech(frame)

    def is_speech(self, frame: bytes) -> bool:
        """Return True when the frame contains speech."""
        return self._vad.is_speech(self._fit(frame), self.config.sample_rate)

    def _fit(self, frame: bytes) -> bytes:
        """Pad or trim ``frame`` to the exact size webrtcvad expects."""
        if len(frame) == self._frame_bytes:
            return frame
        if len(frame) > self._frame_bytes:
            return frame[: self._frame_bytes]
        return frame + bytes(self._frame_bytes - len(frame))

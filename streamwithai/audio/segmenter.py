"""Split a microphone frame stream into utterances."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class SegmentKind(str, Enum):
    UTTERANCE = "utterance"
    NO_SPEECH = "no-speech"


@dataclass(slots=True, frozen=True)
class Segment:
    kind: SegmentKind
    audio: bytes = b""
    duration: float = 0.0


class UtteranceSegmenter:
    """Frame-counting state machine: wait for speech, collect it, stop on silence.

    ``feed`` returns a ``Segment`` once per session: an utterance when speech was
    followed by ``silence_duration`` of silence (or lasted ``max_utterance``),
    or ``NO_SPEECH`` when nothing was said within ``no_speech_timeout``.
    """

    def __init__(
        self,
        is_speech: Callable[[bytes], bool],
        *,
        frame_duration_ms: int = 30,
        silence_duration: float = 0.8,
        no_speech_timeout: float = 8.0,
        max_utterance: float = 15.0,
        padding_ms: int = 300,
        trigger_ratio: float = 0.6,
    ) -> None:
        self._is_speech = is_speech
        self.frame_seconds = frame_duration_ms / 1000
        self._silence_frames = max(1, round(silence_duration / self.frame_seconds))
        self._timeout_frames = max(1, round(no_speech_timeout / self.frame_seconds))
        self._max_frames = max(1, round(max_utterance / self.frame_seconds))
        self._window = max(1, padding_ms // frame_duration_ms)
        self._trigger_ratio = trigger_ratio
        self.reset()

    def reset(self) -> None:
        self._ring: deque[tuple[bytes, bool]] = deque(maxlen=self._window)
        self._voiced: list[bytes] = []
        self._triggered = False
        self._waited = 0
        self._silent = 0
        self._done = False

    @property
    def triggered(self) -> bool:
        return self._triggered

    def feed(self, frame: bytes) -> Optional[Segment]:
        if self._done:
            return None
        speech = self._is_speech(frame)

        if not self._triggered:
            self._waited += 1
            self._ring.append((frame, speech))
            voiced = sum(1 for _, flag in self._ring if flag)
            if len(self._ring) == self._ring.maxlen and voiced >= self._trigger_ratio * self._ring.maxlen:
                self._triggered = True
                self._voiced.extend(chunk for chunk, _ in self._ring)
                self._ring.clear()
            elif self._waited >= self._timeout_frames:
                self._done = True
                return Segment(SegmentKind.NO_SPEECH)
            return None

        self._voiced.append(frame)
        self._silent = 0 if speech else self._silent + 1
        if self._silent >= self._silence_frames or len(self._voiced) >= self._max_frames:
            return self._finish()
        return None

    def flush(self) -> Optional[Segment]:
        """Close the session early, keeping what was said so far."""
        if self._done or not self._triggered:
            return None
        return self._finish()

    def _finish(self) -> Segment:
        self._done = True
        audio = b"".join(self._voiced)
        return Segment(
            SegmentKind.UTTERANCE,
            audio=audio,
            duration=len(self._voiced) * self.frame_seconds,
        )

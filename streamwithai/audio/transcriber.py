"""ASR utilities powered by faster-whisper."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from faster_whisper import WhisperModel

from ..services.schemas import TranscriptEvent


def whisper_language(language: str) -> str:
    """``fr-FR`` -> ``fr``."""
    return language.split("-")[0].lower()


@dataclass(slots=True)
class WhisperConfig:
    """Configuration for the faster-whisper engine."""

    model: str = "small"
    device: str = "cpu"
    compute_type: str = "int8"
    language: str = "fr-FR"
    beam_size: int = 5


class FasterWhisperEngine:
    """Transcribe 16 kHz int16 utterances."""

    def __init__(self, config: WhisperConfig) -> None:
        self.config = config
        self.model = WhisperModel(
            config.model,
            device=config.device,
            compute_type=config.compute_type,
        )

    def transcribe(self, pcm: bytes) -> TranscriptEvent:
        """Return the final transcript of one utterance."""
        audio = np.frombuffer(pcm, dtype=np.int16).astype(np.float32) / 32768.0
        segments, _info = self.model.transcribe(
            audio,
            language=whisper_language(self.config.language),
            beam_size=self.config.beam_size,
            vad_filter=False,
        )
        segments = list(segments)
        text = " ".join(segment.text.strip() for segment in segments).strip()
        confidence = None
        if segments:
            avg = sum(segment.avg_logprob for segment in segments) / len(segments)
            confidence = round(math.exp(avg), 3)
        return TranscriptEvent(text=text, final=True, confidence=confidence)

"""Piper + sounddevice implementation of the speaker used by voice output."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

import numpy as np

from ..config.settings import Settings
from ..core.errors import Unsupported
from ..services.schemas import SpeechOptions
from .playback import OutputFormat, PcmPlayer
from .tts import AudioChunk, VoiceFiles, VoiceModel

LOGGER = logging.getLogger(__name__)

_TAIL_SECONDS = 0.15
_POLL_SECONDS = 0.05


def apply_volume(pcm: bytes, volume: float) -> bytes:
    """Scale int16 samples by ``volume`` (0..1), clipping to the int16 range."""
    if volume >= 0.999:
        return pcm
    samples = np.frombuffer(pcm, dtype=np.int16).astype(np.float32) * max(0.0, volume)
    return np.clip(samples, -32768, 32767).astype(np.int16).tobytes()


def length_scale(rate: float) -> float:
    """Piper speaks faster with a smaller length scale."""
    return 1.0 / max(0.25, min(4.0, rate))


class PiperSpeaker:
    """Synthesize in an executor and wait for the device to drain."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.player = PcmPlayer(OutputFormat(device_name=settings.output_device))
        self._voices: dict[str, VoiceModel] = {}
        self._voices_lock = threading.Lock()
        self._cancelled = threading.Event()

    async def say(self, text: str, options: SpeechOptions) -> None:
        self._cancelled.clear()
        loop = asyncio.get_running_loop()
        voice = await loop.run_in_executor(None, self._voice_for, options.language)
        if options.pitch != 1.0:
            LOGGER.debug("Piper ne gère pas la hauteur de voix, pitch=%s ignoré", options.pitch)

        scale = length_scale(options.rate)
        chunks = await loop.run_in_executor(None, self._render, voice, text, scale, options.volume)
        try:
            for chunk in chunks:
                if self._cancelled.is_set():
                    return
                self.player.set_format(chunk.sample_rate, chunk.channels)
                self.player.write(chunk.pcm)
            while self.player.pending > 0 and not self._cancelled.is_set():
                await asyncio.sleep(_POLL_SECONDS)
            if not self._cancelled.is_set():
                await asyncio.sleep(_TAIL_SECONDS)
        except asyncio.CancelledError:
            self.player.flush()
            raise

    def pause(self) -> None:
        self.player.hold()

    def resume(self) -> None:
        self.player.release()

    def cancel(self) -> None:
        self._cancelled.set()
        self.player.flush()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _voice_for(self, language: str) -> VoiceModel:
        voice_name = self.settings.voice_for(language)
        if voice_name is None:
            raise Unsupported(f"Aucune voix configurée pour {language}")
        with self._voices_lock:
            voice = self._voices.get(voice_name)
            if voice is None:
                LOGGER.info("Chargement de la voix Piper '%s'", voice_name)
                voice = VoiceModel(VoiceFiles.locate(self.settings.tts_models_dir, voice_name))
                self._voices[voice_name] = voice
            return voice

    def _render(
        self,
        voice: VoiceModel,
        text: str,
        scale: float,
        volume: float,
    ) -> list[AudioChunk]:
        chunks: list[AudioChunk] = []
        for chunk in voice.render(text, length_scale=scale):
            if self._cancelled.is_set():
                break
            chunks.append(chunk._replace(pcm=apply_volume(chunk.pcm, volume)))
        return chunks


def build_speaker(settings: Settings) -> Optional[PiperSpeaker]:
    """Return a speaker, or None when no voice is configured for the default language."""
    if settings.voice_for(settings.synthesis_language) is None:
        LOGGER.warning("Aucune voix Piper pour %s, synthèse désactivée", settings.synthesis_language)
        return None
    return PiperSpeaker(settings)

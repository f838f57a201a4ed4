"""Piper voices: model lookup, loading and streamed rendering."""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, NamedTuple

from piper import PiperVoice, SynthesisConfig

# Tilde forms some French voices cannot phonemize.
_TILDES = ("\u0303", "\u02dc", "~")


class AudioChunk(NamedTuple):
    pcm: bytes
    sample_rate: int
    channels: int


@dataclass(slots=True)
class VoiceFiles:
    """A ``.onnx`` model and its ``.onnx.json`` sidecar."""

    model_path: Path
    config_path: Path
    speaker_id: int | None = None
    noise_scale: float = 0.667

    @classmethod
    def locate(cls, models_dir: str | Path, voice: str) -> "VoiceFiles":
        """Find ``<voice>.onnx`` directly under ``models_dir`` or in a subfolder."""
        base = Path(models_dir)
        model = base / f"{voice}.onnx"
        if not model.exists():
            model = next(iter(sorted(base.rglob(f"{voice}.onnx"))), model)
        return cls(model_path=model, config_path=model.with_name(f"{model.name}.json"))


def clean_text(text: str) -> str:
    """Remove spacing tildes and recompose accents."""
    for char in _TILDES[1:]:
        text = text.replace(char, "")
    return unicodedata.normalize("NFC", text)


def _patch_phonemes(voice: PiperVoice) -> None:
    """Map missing tilde phonemes onto the voice's pause id."""
    id_map = dict(voice.config.phoneme_id_map)
    pause = id_map.get(" ") or id_map.get("_") or [0]
    pause_ids = [pause] if isinstance(pause, int) else list(pause)
    for char in _TILDES:
        id_map.setdefault(char, pause_ids)
    voice.config.phoneme_id_map = id_map


class VoiceModel:
    """A loaded Piper voice."""

    def __init__(self, files: VoiceFiles) -> None:
        for path in (files.model_path, files.config_path):
            if not path.exists():
                raise FileNotFoundError(f"Fichier de voix Piper introuvable: {path}")
        self.files = files
        self._voice = PiperVoice.load(str(files.model_path), str(files.config_path))
        _patch_phonemes(self._voice)

    @property
    def sample_rate(self) -> int:
        return int(self._voice.config.sample_rate)

    def render(self, text: str, *, length_scale: float = 1.0) -> Iterator[AudioChunk]:
        """Yield int16 PCM chunks, sentence by sentence."""
        text = clean_text(text)
        if not text.strip():
            return
        config = SynthesisConfig(
            speaker_id=self.files.speaker_id,
            length_scale=length_scale,
            noise_scale=self.files.noise_scale,
        )
        for chunk in self._voice.synthesize(text, syn_config=config):
            yield AudioChunk(chunk.audio_int16_bytes, chunk.sample_rate, chunk.sample_channels or 1)

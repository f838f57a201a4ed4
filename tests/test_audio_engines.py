import math
from types import SimpleNamespace

import pytest

pytest.importorskip("webrtcvad")
pytest.importorskip("faster_whisper")

from streamwithai.audio import transcriber as transcriber_module  # noqa: E402
from streamwithai.audio.transcriber import FasterWhisperEngine, WhisperConfig, whisper_language  # noqa: E402
from streamwithai.audio.vad import VADConfig, VoiceActivityDetector, frame_size  # noqa: E402


def test_frame_size_and_config_validation():
    assert frame_size(16000, 30) == 960
    assert frame_size(8000, 10) == 160
    with pytest.raises(ValueError):
        VADConfig(sample_rate=44100)
    with pytest.raises(ValueError):
        VADConfig(frame_duration_ms=25)
    assert VADConfig(aggressiveness=9).aggressiveness == 3


def test_silence_is_not_speech_whatever_the_frame_length():
    vad = VoiceActivityDetector()
    assert vad(bytes(960)) is False
    assert vad(bytes(100)) is False
    assert vad(bytes(5000)) is False


def test_whisper_engine_joins_segments(monkeypatch):
    calls = []

    class DummyModel:
        def __init__(self, name, device, compute_type):
            self.name = name

        def transcribe(self, audio, **options):
            calls.append((len(audio), options))
            segments = [
                SimpleNamespace(text=" Bonjour ", avg_logprob=-0.1),
                SimpleNamespace(text="le monde", avg_logprob=-0.3),
            ]
            return iter(segments), None

    monkeypatch.setattr(transcriber_module, "WhisperModel", DummyModel)
    engine = FasterWhisperEngine(WhisperConfig(language="fr-FR"))
    event = engine.transcribe(bytes(3200))

    assert event.text == "Bonjour le monde"
    assert event.final is True
    assert event.confidence == round(math.exp(-0.2), 3)
    assert calls[0][0] == 1600
    assert calls[0][1]["language"] == "fr"
    assert whisper_language("en-US") == "en"

import pytest

from streamwithai.audio.segmenter import SegmentKind, UtteranceSegmenter

SPEECH = b"S"
SILENCE = b"."


def segmenter(**overrides) -> UtteranceSegmenter:
    options = {"silence_duration": 0.3, "no_speech_timeout": 0.6, "max_utterance": 3.0}
    options.update(overrides)
    return UtteranceSegmenter(lambda frame: frame == SPEECH, frame_duration_ms=30, **options)


def feed_all(seg: UtteranceSegmenter, frames: list[bytes]):
    results = [seg.feed(frame) for frame in frames]
    return [(index, result) for index, result in enumerate(results) if result is not None]


def test_utterance_ends_after_trailing_silence() -> None:
    seg = segmenter()
    frames = [SPEECH] * 15 + [SILENCE] * 12
    emitted = feed_all(seg, frames)

    assert len(emitted) == 1
    index, segment = emitted[0]
    assert index == 24
    assert segment.kind is SegmentKind.UTTERANCE
    assert segment.audio == SPEECH * 15 + SILENCE * 10
    assert segment.duration == pytest.approx(0.75)


def test_no_speech_after_timeout() -> None:
    seg = segmenter()
    emitted = feed_all(seg, [SILENCE] * 30)
    assert [(index, segment.kind) for index, segment in emitted] == [(19, SegmentKind.NO_SPEECH)]
    assert seg.triggered is False


def test_isolated_noise_does_not_trigger() -> None:
    seg = segmenter(no_speech_timeout=5.0)
    frames = ([SPEECH] * 2 + [SILENCE] * 3) * 10
    assert feed_all(seg, frames) == []
    assert seg.triggered is False


def test_long_utterance_is_cut() -> None:
    seg = segmenter(max_utterance=0.6)
    emitted = feed_all(seg, [SPEECH] * 40)
    assert len(emitted) == 1
    assert emitted[0][0] == 19
    assert len(emitted[0][1].audio) == 20


def test_flush_and_reset() -> None:
    seg = segmenter()
    assert seg.flush() is None
    feed_all(seg, [SPEECH] * 12)
    segment = seg.flush()
    assert segment is not None and segment.audio == SPEECH * 12
    assert seg.feed(SPEECH) is None

    seg.reset()
    assert seg.triggered is False
    assert feed_all(seg, [SPEECH] * 10) == []
    assert seg.triggered is True

import asyncio

import pytest

from fakes import FakeSpeaker, until
from streamwithai.audio.synthesis import STATUS_IDLE, STATUS_STOPPED, VoiceOutputController
from streamwithai.core.events import EventBus, Topic
from streamwithai.core.status import StatusRegistry
from streamwithai.services.schemas import AIResponse

TOPICS = (Topic.SYNTHESIS_STARTED, Topic.SYNTHESIS_ENDED, Topic.SYNTHESIS_ERROR, Topic.SYNTHESIS_STOPPED)


@pytest.mark.asyncio
async def test_items_are_spoken_in_fifo_order(bus: EventBus, settings, recorder_factory) -> None:
    registry = StatusRegistry(bus)
    recorder = recorder_factory(*TOPICS)
    speaker = FakeSpeaker()
    controller = VoiceOutputController(bus, speaker, settings)

    for text in ("un", "deux", "trois"):
        controller.enqueue(text)
    assert registry.is_active("voice")
    await until(lambda: controller.spoken == 3)

    sequence = [(topic, payload.text) for topic, payload in recorder.events]
    assert sequence == [
        (str(Topic.SYNTHESIS_STARTED), "un"),
        (str(Topic.SYNTHESIS_ENDED), "un"),
        (str(Topic.SYNTHESIS_STARTED), "deux"),
        (str(Topic.SYNTHESIS_ENDED), "deux"),
        (str(Topic.SYNTHESIS_STARTED), "trois"),
        (str(Topic.SYNTHESIS_ENDED), "trois"),
    ]
    assert [text for text, _ in speaker.said] == ["un", "deux", "trois"]
    assert controller.speaking is False
    assert registry.get("voice").text == STATUS_IDLE


@pytest.mark.asyncio
async def test_failed_item_is_skipped(bus: EventBus, settings, recorder_factory) -> None:
    recorder = recorder_factory(*TOPICS)
    controller = VoiceOutputController(bus, FakeSpeaker(fail_on=("deux",)), settings)

    for text in ("un", "deux", "trois"):
        controller.enqueue(text)
    await until(lambda: not controller.speaking)

    errors = recorder.payloads(Topic.SYNTHESIS_ERROR)
    assert len(errors) == 1
    assert errors[0]["item"].text == "deux"
    assert [item.text for item in recorder.payloads(Topic.SYNTHESIS_ENDED)] == ["un", "trois"]
    assert controller.queue_stats()["failed"] == 1


@pytest.mark.asyncio
async def test_stop_cancels_and_empties_queue_once(bus: EventBus, settings, recorder_factory) -> None:
    registry = StatusRegistry(bus)
    recorder = recorder_factory(*TOPICS)
    speaker = FakeSpeaker(hold=True)
    controller = VoiceOutputController(bus, speaker, settings)

    controller.enqueue("long discours")
    controller.enqueue("suite")
    await until(lambda: len(speaker.said) == 1)

    controller.stop()
    controller.stop()
    await asyncio.sleep(0.01)

    assert recorder.count(Topic.SYNTHESIS_STOPPED) == 1
    assert recorder.count(Topic.SYNTHESIS_ENDED) == 0
    assert speaker.cancelled == 1
    assert controller.snapshot()["queue_length"] == 0
    assert registry.get("voice").text == STATUS_STOPPED
    assert [text for text, _ in speaker.said] == ["long discours"]


@pytest.mark.asyncio
async def test_stop_when_idle_is_a_no_op(bus: EventBus, settings, recorder_factory) -> None:
    recorder = recorder_factory(*TOPICS, Topic.STATUS_SET)
    speaker = FakeSpeaker()
    VoiceOutputController(bus, speaker, settings).stop()
    assert recorder.events == []
    assert speaker.cancelled == 0


@pytest.mark.asyncio
async def test_blank_text_and_option_overrides(bus: EventBus, settings) -> None:
    speaker = FakeSpeaker()
    controller = VoiceOutputController(bus, speaker, settings)

    assert controller.enqueue("   ") is None
    item = controller.enqueue("vite", {"rate": 1.5, "pitch": None, "unknown": 3})
    assert item is not None
    assert item.options.rate == 1.5
    assert item.options.pitch == 1.0
    assert item.options.language == "fr-FR"
    await until(lambda: controller.spoken == 1)


@pytest.mark.asyncio
async def test_ai_responses_and_speak_topic_are_queued(bus: EventBus, settings) -> None:
    speaker = FakeSpeaker()
    controller = VoiceOutputController(bus, speaker, settings)

    bus.publish(Topic.AI_RESPONSE, AIResponse.from_payload({"status": "success", "message": "Bonjour"}))
    bus.publish(Topic.SYNTHESIS_SPEAK, {"text": "Hello", "options": {"language": "en-US"}})
    await until(lambda: controller.spoken == 2)

    assert speaker.said[0][0] == "Bonjour"
    assert speaker.said[1][1].language == "en-US"


@pytest.mark.asyncio
async def test_recognition_status_pauses_and_resumes(bus: EventBus, settings) -> None:
    registry = StatusRegistry(bus)
    speaker = FakeSpeaker(hold=True)
    controller = VoiceOutputController(bus, speaker, settings)
    controller.enqueue("attends")
    await until(lambda: len(speaker.said) == 1)

    registry.set_state("recognition", True)
    assert controller.paused is True
    assert speaker.paused == 1

    registry.set_state("recognition", False)
    assert controller.paused is False
    assert speaker.resumed == 1

    speaker.release.set()
    await until(lambda: controller.spoken == 1)


@pytest.mark.asyncio
async def test_missing_speaker_reports_unsupported(bus: EventBus, settings, recorder_factory) -> None:
    recorder = recorder_factory(Topic.SYNTHESIS_ERROR)
    controller = VoiceOutputController(bus, None, settings)
    assert controller.enqueue("rien") is None
    assert recorder.payloads(Topic.SYNTHESIS_ERROR)[0].code == "unsupported"


@pytest.mark.asyncio
async def test_speaker_lost_mid_queue_fails_remaining_items(bus: EventBus, settings, recorder_factory) -> None:
    recorder = recorder_factory(*TOPICS)
    speaker = FakeSpeaker(hold=True)
    controller = VoiceOutputController(bus, speaker, settings)
    controller.enqueue("un")
    controller.enqueue("deux")
    await until(lambda: len(speaker.said) == 1)

    controller.speaker = None
    speaker.release.set()
    await until(lambda: not controller.speaking)

    errors = recorder.payloads(Topic.SYNTHESIS_ERROR)
    assert [error["item"].text for error in errors] == ["deux"]
    assert "non supportée" in errors[0]["error"]
    assert controller.queue_stats()["failed"] == 1

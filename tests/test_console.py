import json
import logging

import pytest

from fakes import FakeDisplay, FakeRecognizer, FakeRelay, FakeSpeaker, until
from streamwithai.core.events import EventBus
from streamwithai.core.logger import ConsoleBuffer
from streamwithai.runtime.orchestrator import Orchestrator
from streamwithai.ui.console import HELP, ConsoleUI


def make_ui(bus: EventBus, settings, lines=(), buffer=None):
    orchestrator = Orchestrator(
        settings,
        bus=bus,
        display=FakeDisplay(),
        recognizer=FakeRecognizer(),
        speaker=FakeSpeaker(),
        relay=FakeRelay(),
    )
    output: list[str] = []
    pending = list(lines)

    def read_line() -> str:
        if not pending:
            raise EOFError
        return pending.pop(0)

    ui = ConsoleUI(orchestrator, buffer=buffer, echo=output.append, read_line=read_line)
    return ui, orchestrator, output


@pytest.mark.asyncio
async def test_commands_drive_the_orchestrator(bus: EventBus, settings) -> None:
    ui, orchestrator, output = make_ui(bus, settings)

    assert await ui.handle_command("share") is True
    assert orchestrator.capture.is_capturing
    assert await ui.handle_command("unshare") is True
    assert not orchestrator.capture.is_capturing

    await ui.handle_command("listen")
    assert orchestrator.voice_input.active
    await ui.handle_command("mute")
    assert not orchestrator.voice_input.active

    await ui.handle_command("say")
    assert "Usage: say <texte>" in output
    await ui.handle_command("bogus")
    assert "Commande inconnue: bogus" in output
    assert await ui.handle_command("QUIT") is False


@pytest.mark.asyncio
async def test_say_prints_the_conversation(bus: EventBus, settings) -> None:
    ui, orchestrator, output = make_ui(bus, settings)
    await ui.handle_command("say Bonjour")
    await until(lambda: any("IA: Réponse à Bonjour" in line for line in output))

    await ui.handle_command("clear")
    assert len(orchestrator.history) == 0
    assert "Historique vidé" in output


@pytest.mark.asyncio
async def test_stats_are_printed_as_json(bus: EventBus, settings) -> None:
    ui, _, output = make_ui(bus, settings)
    await ui.handle_command("stats")
    stats = json.loads(output[-1])
    assert "voice_output" in stats


@pytest.mark.asyncio
async def test_logs_command_reads_the_buffer(bus: EventBus, settings) -> None:
    ui, _, output = make_ui(bus, settings)
    await ui.handle_command("logs")
    assert output == ["Console indisponible"]

    buffer = ConsoleBuffer(10)
    logger = logging.getLogger("streamwithai.audio.test")
    logger.addHandler(buffer)
    try:
        logger.warning("micro saturé")
    finally:
        logger.removeHandler(buffer)

    ui, _, output = make_ui(EventBus(), settings, buffer=buffer)
    await ui.handle_command("logs")
    assert any("ATTENTION: micro saturé" in line for line in output)


@pytest.mark.asyncio
async def test_run_stops_at_end_of_input(bus: EventBus, settings) -> None:
    ui, orchestrator, output = make_ui(bus, settings, lines=["help", "share"])
    await ui.run()
    assert output.count(HELP) == 2
    assert orchestrator.capture.is_capturing
    assert bus.listener_count("status:display") == 0

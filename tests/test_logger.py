from __future__ import annotations

import json
import logging

from streamwithai.core.logger import ConsoleBuffer, JsonFormatter


def _record(name: str, level: int, message: str) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, message, None, None)


def test_console_buffer_categories():
    buffer = ConsoleBuffer(max_messages=10)
    buffer.emit(_record("streamwithai.audio.recognition", logging.INFO, "Écoute en cours"))
    buffer.emit(_record("streamwithai.services.ai", logging.INFO, "Réponse IA reçue"))
    buffer.emit(_record("streamwithai.screen.controller", logging.WARNING, "Capture lente"))
    buffer.emit(_record("streamwithai.core.events", logging.ERROR, "boom"))
    buffer.emit(_record("streamwithai", logging.INFO, "racine"))

    types = [message["type"] for message in buffer.messages()]
    assert types == ["VOIX", "IA", "ATTENTION", "ERREUR", "INFO"]
    stats = buffer.stats()
    assert stats["total"] == 5
    assert stats["max"] == 10
    assert stats["VOIX"] == 1


def test_console_buffer_is_bounded():
    buffer = ConsoleBuffer(max_messages=3)
    for index in range(5):
        buffer.emit(_record("streamwithai.core.status", logging.INFO, f"m{index}"))
    assert [message["text"] for message in buffer.messages()] == ["m2", "m3", "m4"]
    assert [message["text"] for message in buffer.messages(1)] == ["m4"]
    buffer.clear()
    assert buffer.messages() == []


def test_json_formatter():
    line = JsonFormatter().format(_record("streamwithai.relay.server", logging.WARNING, "Réseau lent"))
    data = json.loads(line)
    assert data["level"] == "WARNING"
    assert data["category"] == "streamwithai.relay.server"
    assert data["message"] == "Réseau lent"

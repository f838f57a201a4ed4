"""Logging setup: JSON files, console output and an in-memory console buffer."""

from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Final

from ..config.settings import Settings

ROOT_LOGGER: Final[str] = "streamwithai"
CONSOLE_FORMAT: Final[str] = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Console categories, as shown by the on-screen console.
_CATEGORIES: Final[dict[str, str]] = {
    "core": "SYSTEM",
    "runtime": "SYSTEM",
    "screen": "SYSTEM",
    "audio": "VOIX",
    "services": "IA",
    "relay": "SYSTEM",
}


class JsonFormatter(logging.Formatter):
    """Formateur qui serialise les entrees en JSON."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "category": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


class SizeAndTimeRotatingFileHandler(TimedRotatingFileHandler):
    """Rotation basee sur la taille et le temps."""

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int = 0,
        backup_count: int = 0,
        when: str = "midnight",
        encoding: str | None = "utf-8",
        delay: bool = True,
    ) -> None:
        self.maxBytes = max_bytes
        super().__init__(
            str(filename),
            when=when,
            backupCount=backup_count,
            encoding=encoding,
            delay=delay,
        )

    def shouldRollover(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if self.maxBytes > 0:
            if self.stream is None:  # pragma: no cover - delay=True
                self.stream = self._open()
            msg = f"{self.format(record)}\n"
            if (self.stream.tell() + len(msg.encode("utf-8"))) >= self.maxBytes:
                return True
        return super().shouldRollover(record)


class ConsoleBuffer(logging.Handler):
    """Keep the last records in memory for the on-screen console."""

    def __init__(self, max_messages: int = 100) -> None:
        super().__init__(level=logging.INFO)
        self._messages: deque[dict[str, str]] = deque(maxlen=max_messages)

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self._messages.append(
                {
                    "time": datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S"),
                    "type": self._category(record),
                    "text": record.getMessage(),
                }
            )
        except Exception:  # pragma: no cover - logging must never raise
            self.handleError(record)

    def messages(self, limit: int | None = None) -> list[dict[str, str]]:
        items = list(self._messages)
        return items[-limit:] if limit else items

    def clear(self) -> None:
        self._messages.clear()

    def stats(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for message in self._messages:
            counts[message["type"]] = counts.get(message["type"], 0) + 1
        return {"total": len(self._messages), "max": self._messages.maxlen or 0, **counts}

    @staticmethod
    def _category(record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            return "ERREUR"
        if record.levelno >= logging.WARNING:
            return "ATTENTION"
        parts = record.name.split(".")
        if len(parts) > 1:
            return _CATEGORIES.get(parts[1], "INFO")
        return "INFO"


_CONSOLE_BUFFER: ConsoleBuffer | None = None


def configure_logging(settings: Settings, *, stream_output: bool = True) -> ConsoleBuffer:
    """Install handlers on the package logger once and return the console buffer."""
    global _CONSOLE_BUFFER
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(settings.log_level.upper())
    if _CONSOLE_BUFFER is not None:
        return _CONSOLE_BUFFER

    buffer = ConsoleBuffer(settings.console_max_messages)
    logger.addHandler(buffer)

    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = SizeAndTimeRotatingFileHandler(
            log_dir / f"{ROOT_LOGGER}.jsonl",
            max_bytes=settings.log_rotate_mb * 1024 * 1024,
            backup_count=settings.log_retention_days,
        )
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    elif stream_output:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(handler)

    _CONSOLE_BUFFER = buffer
    return buffer


def console_buffer() -> ConsoleBuffer | None:
    """Return the installed console buffer, if any."""
    return _CONSOLE_BUFFER

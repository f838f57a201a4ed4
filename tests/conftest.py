from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

sys.path.append(str(Path(__file__).resolve().parent))

from fakes import Recorder  # noqa: E402
from streamwithai.config.settings import Settings  # noqa: E402
from streamwithai.core.events import EventBus  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings(
        retry_attempts=3,
        retry_delay=0.0,
        ai_timeout=1.0,
        auto_listen=False,
        upload_enabled=False,
        log_dir=None,
    )


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder_factory(bus: EventBus) -> Callable[..., Recorder]:
    def _factory(*topics: str) -> Recorder:
        return Recorder(bus, *topics)

    return _factory

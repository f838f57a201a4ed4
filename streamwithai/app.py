"""Interactive assistant session."""

from __future__ import annotations

import asyncio
import logging

from .config.settings import Settings, get_settings
from .core.logger import configure_logging
from .runtime.orchestrator import Orchestrator
from .ui.console import ConsoleUI

LOGGER = logging.getLogger(__name__)


async def _session(settings: Settings) -> None:
    buffer = configure_logging(settings, stream_output=False)
    orchestrator = Orchestrator.from_settings(settings)
    ui = ConsoleUI(orchestrator, buffer=buffer)
    await orchestrator.start()
    try:
        await ui.run()
    finally:
        await orchestrator.shutdown()


def run(settings: Settings | None = None) -> None:
    """Run the assistant in the terminal until the user quits."""
    settings = settings or get_settings()
    try:
        asyncio.run(_session(settings))
    except KeyboardInterrupt:
        LOGGER.info("Interrompu par l'utilisateur")

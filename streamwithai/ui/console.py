"""Terminal front-end: prints what happens and reads user commands."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import typer

from ..core.events import Topic
from ..core.logger import ConsoleBuffer
from ..core.status import StatusEntry
from ..runtime.orchestrator import Orchestrator
from ..services.schemas import AIFailure, AIResponse, TranscriptEvent

LOGGER = logging.getLogger(__name__)

HELP = """Commandes:
  share        démarrer le partage d'écran
  unshare      arrêter le partage d'écran
  listen       démarrer l'écoute
  mute         arrêter l'écoute
  quiet        couper la synthèse vocale
  say <texte>  envoyer un message écrit
  clear        vider l'historique
  stats        afficher les statistiques
  logs         afficher la console
  quit         quitter"""

_COLORS = {
    "ERREUR": typer.colors.RED,
    "ATTENTION": typer.colors.YELLOW,
    "VOIX": typer.colors.CYAN,
    "IA": typer.colors.GREEN,
}


class ConsoleUI:
    """Bind an orchestrator to a terminal."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        *,
        buffer: Optional[ConsoleBuffer] = None,
        echo: Callable[[str], None] = typer.echo,
        read_line: Callable[[], str] = input,
    ) -> None:
        self.orchestrator = orchestrator
        self.buffer = buffer
        self._echo = echo
        self._read_line = read_line
        bus = orchestrator.bus
        bus.subscribe(Topic.STATUS_DISPLAY, self._on_display, context=self)
        bus.subscribe(Topic.SPEECH, self._on_speech, context=self)
        bus.subscribe(Topic.AI_RESPONSE, self._on_response, context=self)
        bus.subscribe(Topic.AI_ERROR, self._on_ai_error, context=self)

    async def run(self) -> None:
        """Read commands until ``quit`` or end of input."""
        loop = asyncio.get_running_loop()
        self._echo(HELP)
        while True:
            try:
                line = await loop.run_in_executor(None, self._read_line)
            except EOFError:
                break
            if not await self.handle_command(line):
                break
        self.orchestrator.bus.unsubscribe_context(self)
        LOGGER.info("Session console terminée")

    async def handle_command(self, line: str) -> bool:
        """Execute one command line. Return False to leave the session."""
        command, _, argument = (line or "").strip().partition(" ")
        command = command.lower()
        if not command:
            return True
        if command in {"quit", "exit"}:
            return False
        if command == "share":
            await self.orchestrator.start_screen_share()
        elif command == "unshare":
            self.orchestrator.stop_screen_share()
        elif command == "listen":
            self.orchestrator.start_listening()
        elif command == "mute":
            self.orchestrator.stop_listening()
        elif command == "quiet":
            self.orchestrator.stop_voice()
        elif command == "say":
            if not self.orchestrator.send_message(argument):
                self._echo("Usage: say <texte>")
        elif command == "clear":
            self.orchestrator.clear_history()
            self._echo("Historique vidé")
        elif command == "stats":
            self._echo(format_stats(self.orchestrator.stats()))
        elif command == "logs":
            self._print_logs()
        elif command == "help":
            self._echo(HELP)
        else:
            self._echo(f"Commande inconnue: {command}")
        return True

    # ------------------------------------------------------------------ #
    # Bus handlers
    # ------------------------------------------------------------------ #
    def _on_display(self, entry: StatusEntry) -> None:
        marker = "●" if entry.active else "○"
        self._echo(typer.style(f"{marker} {entry.text}", dim=not entry.active))

    def _on_speech(self, event: TranscriptEvent) -> None:
        self._echo(typer.style(f"Vous: {event.text}", fg=typer.colors.CYAN))

    def _on_response(self, response: AIResponse) -> None:
        self._echo(typer.style(f"IA: {response.message}", fg=typer.colors.GREEN))

    def _on_ai_error(self, failure: AIFailure) -> None:
        self._echo(typer.style(f"Erreur IA: {failure.error}", fg=typer.colors.RED))

    def _print_logs(self) -> None:
        if self.buffer is None:
            self._echo("Console indisponible")
            return
        for message in self.buffer.messages(50):
            color = _COLORS.get(message["type"])
            line = f"[{message['time']}] {message['type']}: {message['text']}"
            self._echo(typer.style(line, fg=color) if color else line)


def format_stats(stats: dict[str, Any]) -> str:
    return json.dumps(stats, ensure_ascii=False, indent=2, default=str)

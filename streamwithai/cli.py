from __future__ import annotations

import json
from typing import Optional

import typer
import uvicorn

from .config.settings import Settings, get_settings
from .core.logger import configure_logging

cli = typer.Typer(name="streamwithai", help="CLI StreamWithAI")
config_cli = typer.Typer(help="Configuration")

cli.add_typer(config_cli, name="config")


@cli.command()
def run() -> None:
    """Démarrer l'assistant dans le terminal."""
    from .app import run as run_session

    run_session(get_settings())


@cli.command()
def relay(
    host: Optional[str] = typer.Option(None, "--host", help="Adresse d'écoute"),
    port: Optional[int] = typer.Option(None, "--port", help="Port d'écoute"),
) -> None:
    """Démarrer le relais HTTP (proxy IA et upload)."""
    from .relay.server import create_app

    settings = get_settings()
    configure_logging(settings)
    if not settings.ai_api_url:
        typer.echo("Attention: STREAMWITHAI_AI_API_URL n'est pas défini, /api/proxy répondra 500.")
    uvicorn.run(create_app(settings), host=host or settings.relay_host, port=port or settings.relay_port)


@config_cli.command("print")
def config_print() -> None:
    s: Settings = get_settings()
    typer.echo(json.dumps(s.model_dump(), ensure_ascii=False, default=str))


if __name__ == "__main__":  # pragma: no cover
    cli()

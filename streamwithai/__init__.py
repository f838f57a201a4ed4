"""StreamWithAI assistant package."""

from __future__ import annotations

from typing import Any

__all__ = ["run"]

__version__ = "2.0.0"


def run(*args: Any, **kwargs: Any) -> Any:
    """Entrypoint launching the assistant session (lazy import)."""
    from .app import run as _run

    return _run(*args, **kwargs)

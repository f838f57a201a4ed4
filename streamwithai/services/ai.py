"""AI request controller: context building, retry and response fan-out."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

from ..config.settings import Settings
from ..core.errors import AssistantError, RequestTimeout, TransportFailure
from ..core.events import EventBus, Topic
from ..core.history import ConversationHistory
from ..core.status import StatusName
from .schemas import AIFailure, AIRequest, AIResponse, StatusUpdate, TranscriptEvent

LOGGER = logging.getLogger(__name__)

STATUS_BUSY = "IA: traitement en cours"
STATUS_IDLE = "IA: inactive"
STATUS_ERROR = "IA: erreur"


class RelayClient(Protocol):
    async def query(
        self,
        message: str,
        *,
        image_url: Optional[str] = None,
        system: Optional[str] = None,
        history: Optional[list[dict[str, str]]] = None,
    ) -> dict[str, Any]: ...


class AIRequestController:
    """Send user messages to the AI relay and publish the outcome once."""

    def __init__(
        self,
        bus: EventBus,
        history: ConversationHistory,
        client: RelayClient,
        settings: Settings,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.bus = bus
        self.history = history
        self.client = client
        self.attempts = settings.retry_attempts
        self.retry_delay = settings.retry_delay
        self.timeout = settings.ai_timeout
        self.system_prompt = settings.ai_system_prompt
        self._sleep = sleep
        self._pending = 0
        self.requests = 0
        self.failures = 0

        bus.subscribe(Topic.AI_REQUEST, self._on_request, context=self)
        bus.subscribe(Topic.SPEECH, self._on_speech, context=self)
        bus.subscribe(Topic.USER_MESSAGE, self._on_user_message, context=self)
        bus.subscribe(Topic.AI_RESPONSE, self._on_response, context=self)

    async def handle(self, message: str, image_url: Optional[str] = None) -> AIResponse | None:
        """Query the relay with retry; publish one response or one failure."""
        message = (message or "").strip()
        if not message:
            LOGGER.debug("Requête IA vide ignorée")
            return None

        self.requests += 1
        self._pending += 1
        self._set_status(True, STATUS_BUSY)
        history = self._context_for(message)
        LOGGER.info("Envoi à l'IA: %.80s%s", message, " (avec image)" if image_url else "")

        last_error: AssistantError | None = None
        attempt = 0
        try:
            for attempt in range(1, self.attempts + 1):
                try:
                    response = await self._query_once(message, image_url, history)
                except AssistantError as exc:
                    last_error = exc
                    LOGGER.warning("Tentative IA %s/%s échouée: %s", attempt, self.attempts, exc.message)
                    if attempt < self.attempts:
                        await self._sleep(self.retry_delay)
                    continue
                LOGGER.info("Réponse IA reçue: %.80s", response.message)
                self._set_status(False, STATUS_IDLE)
                self.bus.publish(Topic.AI_RESPONSE, response)
                return response
        finally:
            self._pending -= 1

        if last_error is None:
            raise ValueError(f"retry_attempts must be at least 1, got {self.attempts}")
        self.failures += 1
        LOGGER.error("Requête IA abandonnée après %s tentatives: %s", attempt, last_error.message)
        self._set_status(False, STATUS_ERROR)
        self.bus.publish(
            Topic.AI_ERROR,
            AIFailure(error=last_error.message, code=last_error.code, attempts=attempt),
        )
        return None

    def snapshot(self) -> dict[str, Any]:
        return {
            "pending": self._pending,
            "requests": self.requests,
            "failures": self.failures,
            "history_length": len(self.history),
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _query_once(
        self,
        message: str,
        image_url: Optional[str],
        history: list[dict[str, str]],
    ) -> AIResponse:
        try:
            payload = await asyncio.wait_for(
                self.client.query(
                    message,
                    image_url=image_url,
                    system=self.system_prompt,
                    history=history,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RequestTimeout(f"Pas de réponse de l'IA après {self.timeout:g}s") from exc
        except AssistantError:
            raise
        except Exception as exc:
            raise TransportFailure(str(exc) or type(exc).__name__) from exc
        return AIResponse.from_payload(payload)

    def _context_for(self, message: str) -> list[dict[str, str]]:
        history = self.history.to_model_format()
        # The user turn being sent was already logged from the speech event.
        if history and history[-1] == {"role": "user", "content": message}:
            history = history[:-1]
        return history

    def _set_status(self, active: bool, text: str) -> None:
        self.bus.publish(Topic.STATUS_SET, StatusUpdate(StatusName.AI.value, active, text))

    def _on_request(self, request: AIRequest) -> Awaitable[AIResponse | None]:
        return self.handle(request.message, request.image_url)

    def _on_speech(self, event: TranscriptEvent) -> None:
        if event.final:
            self.history.append("user", event.text)

    def _on_user_message(self, text: str) -> None:
        self.history.append("user", text)

    def _on_response(self, response: AIResponse) -> None:
        self.history.append("ai", response.message)

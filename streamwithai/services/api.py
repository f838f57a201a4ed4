"""HTTP client for the AI relay endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from ..config.settings import Settings
from ..core.errors import InvalidResponseShape, RequestTimeout, TransportFailure

LOGGER = logging.getLogger(__name__)


class AIRelayClient:
    """Async client for the ``/api/proxy`` relay."""

    def __init__(self, settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self.url = settings.ai_relay_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.ai_timeout, connect=10.0),
        )

    @staticmethod
    def build_params(
        message: str,
        *,
        image_url: Optional[str] = None,
        system: Optional[str] = None,
        history: Optional[list[dict[str, str]]] = None,
    ) -> dict[str, str]:
        """Query string sent to the relay; empty values are left out."""
        params: dict[str, str] = {"message": message}
        if image_url:
            params["image_url"] = image_url
        if system:
            params["system"] = system
        if history:
            params["history"] = json.dumps(history, ensure_ascii=False)
        return params

    async def query(
        self,
        message: str,
        *,
        image_url: Optional[str] = None,
        system: Optional[str] = None,
        history: Optional[list[dict[str, str]]] = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON body."""
        params = self.build_params(message, image_url=image_url, system=system, history=history)
        try:
            response = await self._client.get(self.url, params=params)
        except httpx.TimeoutException as exc:
            raise RequestTimeout("Timeout de la requête IA") from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"Erreur réseau vers le relais IA: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            if response.is_error:
                raise TransportFailure(
                    f"Erreur HTTP {response.status_code}",
                    details={"status_code": response.status_code},
                ) from exc
            snippet = response.text[:200]
            raise InvalidResponseShape(f"Réponse non-JSON du relais: {snippet}") from exc

        # The relay answers 500 with a JSON body carrying the upstream error;
        # hand it back so the caller reports the remote message.
        if response.is_error and not isinstance(data, dict):
            raise TransportFailure(
                f"Erreur HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )
        LOGGER.debug("AI relay answered %s", response.status_code)
        return data

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

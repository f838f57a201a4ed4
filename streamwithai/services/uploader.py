"""Upload of captured frames to a temporary public image host."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from ..config.settings import Settings
from ..core.errors import AssistantError, InvalidResponseShape, RequestTimeout, TransportFailure
from .schemas import CapturedImage

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
    url: str
    cached_at: float


def cache_key(data: bytes) -> str:
    """Key of an image in the upload cache: size plus a content digest prefix."""
    return f"{len(data)}_{hashlib.sha1(data).hexdigest()[:16]}"


def direct_url(page_url: str) -> str:
    """Turn ``scheme://host/<id>/<name>`` into ``scheme://host/dl/<id>/<name>``."""
    parts = page_url.split("/")
    if len(parts) < 5 or not parts[0].endswith(":") or not parts[2]:
        raise InvalidResponseShape(f"URL d'image inattendue: {page_url}")
    return f"{parts[0]}//{parts[2]}/dl/{parts[3]}/{parts[4]}"


def parse_upload_response(payload: Any) -> str:
    """Extract the direct download URL from the image host answer."""
    if not isinstance(payload, dict) or payload.get("status") != "success":
        raise InvalidResponseShape("Format de réponse d'upload invalide")
    data = payload.get("data")
    url = data.get("url") if isinstance(data, dict) else None
    if not isinstance(url, str) or not url:
        raise InvalidResponseShape("URL manquante dans la réponse d'upload")
    return direct_url(url)


class ImageRelayClient:
    """Upload images with retry and a small time-bounded cache."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = settings.upload_service_url
        self.attempts = settings.retry_attempts
        self.retry_delay = settings.retry_delay
        self.cache_size = settings.upload_cache_size
        self.cache_ttl = settings.upload_cache_ttl
        self._clock = clock
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.upload_timeout)

    async def upload(self, image: CapturedImage) -> str:
        """Return the direct URL of ``image``, from the cache when possible."""
        key = cache_key(image.data)
        cached = self._lookup(key)
        if cached is not None:
            self._hits += 1
            LOGGER.debug("Image servie depuis le cache: %s", key)
            return cached
        self._misses += 1

        last_error: AssistantError | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                url = await self._send(image)
            except AssistantError as exc:
                last_error = exc
                LOGGER.warning("Upload tentative %s/%s échouée: %s", attempt, self.attempts, exc.message)
                if attempt < self.attempts:
                    await asyncio.sleep(self.retry_delay)
                continue
            self._store(key, url)
            LOGGER.info("Image uploadée: %s", url)
            return url

        if last_error is None:
            raise ValueError(f"retry_attempts must be at least 1, got {self.attempts}")
        raise last_error

    def cache_stats(self) -> dict[str, Any]:
        now = self._clock()
        ages = [now - entry.cached_at for entry in self._cache.values()]
        return {
            "size": len(self._cache),
            "max_size": self.cache_size,
            "ttl": self.cache_ttl,
            "hits": self._hits,
            "misses": self._misses,
            "oldest_age": max(ages) if ages else None,
        }

    def clear_cache(self, max_age: float | None = None) -> int:
        """Drop every entry, or only those older than ``max_age`` seconds."""
        if max_age is None:
            removed = len(self._cache)
            self._cache.clear()
            return removed
        now = self._clock()
        stale = [key for key, entry in self._cache.items() if now - entry.cached_at > max_age]
        for key in stale:
            del self._cache[key]
        return len(stale)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _send(self, image: CapturedImage) -> str:
        files = {"file": ("screenshot.jpg", image.data, image.mime_type)}
        try:
            response = await self._client.post(self.url, files=files)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise RequestTimeout("Timeout de l'upload") from exc
        except httpx.HTTPStatusError as exc:
            raise TransportFailure(
                f"HTTP error! status: {exc.response.status_code}",
                details={"status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"Erreur réseau pendant l'upload: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponseShape("Réponse d'upload non-JSON") from exc
        return parse_upload_response(payload)

    def _lookup(self, key: str) -> str | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() - entry.cached_at > self.cache_ttl:
            del self._cache[key]
            return None
        return entry.url

    def _store(self, key: str, url: str) -> None:
        self._cache.pop(key, None)
        self._cache[key] = CacheEntry(url=url, cached_at=self._clock())
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

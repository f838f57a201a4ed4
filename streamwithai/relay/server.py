"""HTTP relay between the assistant and the AI / image hosting services."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from fastapi import APIRouter, FastAPI, File, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config.settings import Settings, get_settings
from ..core.errors import InvalidResponseShape, error_payload
from ..services.uploader import parse_upload_response

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, code: str, message: str, **details: Any) -> JSONResponse:
    payload = error_payload(code, message, details=details or None)
    payload["message"] = message
    payload["timestamp"] = datetime.now(timezone.utc).isoformat()
    return JSONResponse(payload, status_code=status_code)


def normalize_history(raw: Optional[str]) -> list[dict[str, str]]:
    """Decode the ``history`` parameter into ``{role, content}`` messages.

    Entries in the ``{sender, text}`` form are converted; anything that is not
    a list of objects is ignored.
    """
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        LOGGER.warning("Historique illisible ignoré")
        return []
    if not isinstance(data, list):
        return []
    messages: list[dict[str, str]] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        if "role" in item and "content" in item:
            messages.append({"role": str(item["role"]), "content": str(item["content"])})
        elif "sender" in item and "text" in item:
            role = "user" if item["sender"] == "user" else "assistant"
            messages.append({"role": role, "content": str(item["text"])})
    return messages


def _origin_allowed(settings: Settings, request: Request) -> bool:
    if "*" in settings.cors_origins:
        return True
    origin = request.headers.get("origin")
    return origin is None or origin in settings.cors_origins


def _too_large(settings: Settings, request: Request) -> bool:
    length = request.headers.get("content-length")
    if length and length.isdigit() and int(length) > settings.max_request_bytes:
        return True
    return len(str(request.url)) > settings.max_request_bytes


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": __version__}


@router.get("/api/proxy")
async def proxy(
    request: Request,
    message: Optional[str] = Query(None),
    image_url: Optional[str] = Query(None),
    history: Optional[str] = Query(None),
    system: Optional[str] = Query(None),
) -> JSONResponse:
    """Forward one message to the AI API and return its JSON answer."""
    settings: Settings = request.app.state.settings
    client: httpx.AsyncClient = request.app.state.client

    if _too_large(settings, request):
        return _error(413, "payload_too_large", "Request too large")
    if not _origin_allowed(settings, request):
        return _error(403, "forbidden", "Origin not allowed")
    if not message or not message.strip():
        return _error(400, "missing_parameters", "Missing required parameters: message")
    if not settings.ai_api_url:
        return _error(500, "not_configured", "AI API URL not configured")

    params: dict[str, str] = {
        "message": message.strip(),
        "image": (image_url or "").strip(),
        "system": system or settings.ai_system_prompt,
    }
    messages = normalize_history(history)
    if messages:
        params["history"] = json.dumps(messages, ensure_ascii=False)

    LOGGER.info("Processing request: message='%.80s', image='%s'", params["message"], params["image"])
    try:
        response = await client.get(
            settings.ai_api_url,
            params=params,
            headers={"Accept": "application/json"},
            timeout=settings.relay_timeout,
        )
    except httpx.HTTPError as exc:
        LOGGER.error("AI API request failed: %s", exc)
        return _error(500, "upstream_unreachable", f"AI API request failed: {exc}")

    try:
        data = response.json()
    except ValueError:
        LOGGER.error("Invalid JSON response from AI API (HTTP %s)", response.status_code)
        return _error(
            500,
            InvalidResponseShape.code,
            "Invalid JSON response",
            raw=response.text[:500],
            http=response.status_code,
        )

    if isinstance(data, dict) and data.get("status") == "error":
        return JSONResponse(data, status_code=500)
    return JSONResponse(data)


@router.post("/api/upload")
async def upload(request: Request, file: UploadFile = File(...)) -> JSONResponse:
    """Forward a screenshot to the image host and return its direct URL."""
    settings: Settings = request.app.state.settings
    client: httpx.AsyncClient = request.app.state.client

    if _too_large(settings, request):
        return _error(413, "payload_too_large", "Request too large")
    if not _origin_allowed(settings, request):
        return _error(403, "forbidden", "Origin not allowed")

    content = await file.read()
    if not content:
        return _error(400, "missing_parameters", "Missing required parameters: file")

    try:
        response = await client.post(
            settings.upload_service_url,
            files={"file": ("screenshot.jpg", content, file.content_type or "image/jpeg")},
            timeout=settings.upload_timeout,
        )
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        LOGGER.error("Upload service request failed: %s", exc)
        return _error(500, "upstream_unreachable", f"Upload failed: {exc}")

    try:
        url = parse_upload_response(payload)
    except InvalidResponseShape as exc:
        return _error(500, exc.code, "Upload service error", response=payload)
    return JSONResponse({"status": "success", "url": url, "original_url": payload["data"]["url"]})


def create_app(settings: Settings | None = None, *, client: httpx.AsyncClient | None = None) -> FastAPI:
    """Build the relay application."""
    settings = settings or get_settings()
    owns_client = client is None

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        if owns_client:
            await app.state.client.aclose()

    app = FastAPI(title="StreamWithAI relay", version=__version__, lifespan=_lifespan)
    app.state.settings = settings
    app.state.client = client or httpx.AsyncClient(follow_redirects=True)

    _allow_credentials = settings.cors_origins != ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.include_router(router)
    return app

"""Publish/subscribe hub used by every component of the assistant."""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class Topic(str, Enum):
    """Event names exchanged on the bus."""

    APP_INITIALIZED = "app:initialized"
    ERROR = "error"

    SCREEN_SHARE_START = "screenShare:start"
    SCREEN_SHARE_STOP = "screenShare:stop"
    SCREEN_SHARE_STARTED = "screenShare:started"
    SCREEN_SHARE_STOPPED = "screenShare:stopped"
    SCREEN_SHARE_ERROR = "screenShare:error"
    CAPTURE_REQUEST = "capture:request"
    CAPTURE_READY = "app:capture"

    RECOGNITION_START = "speechRecognition:start"
    RECOGNITION_STOP = "speechRecognition:stop"
    RECOGNITION_ERROR = "speechRecognition:error"
    SPEECH = "app:speech"
    USER_MESSAGE = "app:userMessage"

    SYNTHESIS_SPEAK = "speechSynthesis:speak"
    SYNTHESIS_STOP = "speechSynthesis:stop"
    SYNTHESIS_STARTED = "speechSynthesis:started"
    SYNTHESIS_ENDED = "speechSynthesis:ended"
    SYNTHESIS_ERROR = "speechSynthesis:error"
    SYNTHESIS_STOPPED = "speechSynthesis:stopped"

    AI_REQUEST = "app:aiRequest"
    AI_RESPONSE = "app:aiResponse"
    AI_ERROR = "ai:error"

    STATUS_SET = "status:set"
    STATUS_DISPLAY = "status:display"

    def __str__(self) -> str:
        return self.value


def status_topic(name: str) -> str:
    """Name of the event published when status entry ``name`` changes."""
    return f"status:{name}"


@dataclass(slots=True)
class Subscription:
    """A handler registered for one event name."""

    event: str
    callback: Handler
    context: Any = None
    id: int = field(default=0)


class EventBus:
    """Synchronous fan-out bus with optional deferred delivery.

    ``publish`` calls the subscribers of an event in subscription order on the
    caller's stack. The subscriber list is copied before the fan-out, so a
    handler (un)subscribing does not affect the delivery in progress. A handler
    that raises is logged and skipped. Coroutine handlers are scheduled as tasks
    on the running loop.
    """

    def __init__(self, *, debug: bool = False, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._events: dict[str, list[Subscription]] = {}
        self._ids = itertools.count(1)
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()
        self.debug = debug

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the loop used for deferred and cross-thread publishes."""
        self._loop = loop

    def subscribe(self, event: str, handler: Handler, context: Any = None) -> int:
        """Register ``handler`` for ``event`` and return its unsubscribe token."""
        key = str(event)
        subscription = Subscription(event=key, callback=handler, context=context, id=next(self._ids))
        self._events.setdefault(key, []).append(subscription)
        if self.debug:
            LOGGER.debug("Subscribed to %s (id=%s)", key, subscription.id)
        return subscription.id

    def unsubscribe(self, event: str, identifier: int | Handler) -> bool:
        """Remove a subscription by token or by handler. Return True if one was removed."""
        key = str(event)
        subscriptions = self._events.get(key)
        if not subscriptions:
            return False
        if callable(identifier):
            remaining = [sub for sub in subscriptions if sub.callback != identifier]
        else:
            remaining = [sub for sub in subscriptions if sub.id != identifier]
        removed = len(remaining) != len(subscriptions)
        self._events[key] = remaining
        if self.debug and removed:
            LOGGER.debug("Unsubscribed from %s", key)
        return removed

    def publish(self, event: str, payload: Any = None, *, deferred: bool = False) -> None:
        """Deliver ``payload`` to every subscriber of ``event``."""
        key = str(event)
        subscriptions = list(self._events.get(key, ()))
        if not subscriptions:
            return
        if self.debug:
            LOGGER.debug("Publishing %s: %r", key, payload)
        if deferred:
            self._resolve_loop().call_soon(self._dispatch, key, subscriptions, payload)
            return
        self._dispatch(key, subscriptions, payload)

    def publish_threadsafe(self, event: str, payload: Any = None) -> None:
        """Schedule a deferred publish from a thread that does not own the loop."""
        if self._loop is None:
            raise RuntimeError("EventBus has no bound loop for thread-safe publish.")
        self._loop.call_soon_threadsafe(self.publish, event, payload)

    def unsubscribe_context(self, context: Any) -> int:
        """Remove every subscription registered with ``context``."""
        removed = 0
        for key, subscriptions in self._events.items():
            remaining = [sub for sub in subscriptions if sub.context is not context]
            removed += len(subscriptions) - len(remaining)
            self._events[key] = remaining
        return removed

    def clear(self, event: str | None = None) -> None:
        """Drop the subscriptions of ``event``, or of every event."""
        if event is None:
            self._events.clear()
        else:
            self._events.pop(str(event), None)
        if self.debug:
            LOGGER.debug("Cleared events: %s", event or "all")

    def listener_count(self, event: str) -> int:
        return len(self._events.get(str(event), ()))

    def events(self) -> list[str]:
        return [name for name, subs in self._events.items() if subs]

    async def drain(self) -> None:
        """Wait for the coroutine handlers scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            if self._loop is None:
                raise RuntimeError("Deferred publish requires a running event loop.") from None
            return self._loop

    def _dispatch(self, event: str, subscriptions: list[Subscription], payload: Any) -> None:
        for subscription in subscriptions:
            try:
                result = subscription.callback(payload)
            except Exception:
                LOGGER.exception("Error in event handler for %s", event)
                continue
            if inspect.isawaitable(result):
                try:
                    self._schedule(event, result)
                except RuntimeError:
                    LOGGER.error("No running loop for async handler of %s", event)
                    if inspect.iscoroutine(result):
                        result.close()

    def _schedule(self, event: str, awaitable: Any) -> None:
        loop = self._resolve_loop()
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)

        def _done(fut: asyncio.Future[Any]) -> None:
            self._tasks.discard(task)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                LOGGER.error("Error in async event handler for %s", event, exc_info=exc)

        task.add_done_callback(_done)

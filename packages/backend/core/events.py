"""Lightweight async event bus for service coordination.

Services emit events at key moments (download finished, model activated,
model deleted). Other services subscribe to them in the composition root.

Usage:
    from core.events import EventBus, MODEL_ACTIVATED

    bus = EventBus()

    async def my_handler(**kwargs):
        print(kwargs)

    bus.on(MODEL_ACTIVATED, my_handler)
    await bus.emit(MODEL_ACTIVATED, model_id="qwen3-0.6b")
"""

import logging
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Coroutine[Any, Any, None]]

DOWNLOAD_PROGRESS = "download.progress"
DOWNLOAD_FAILED = "download.failed"
MODEL_DOWNLOADED = "model.downloaded"
MODEL_ACTIVATED = "model.activated"
MODEL_DELETED = "model.deleted"


class EventBus:
    """In-process publish/subscribe bus."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event_name: str, handler: EventHandler) -> None:
        """Subscribe to an event."""
        self._handlers.setdefault(event_name, []).append(handler)

    def off(self, event_name: str, handler: EventHandler) -> None:
        """Unsubscribe a handler. Unknown handlers are ignored."""
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event_name: str, **kwargs) -> None:
        """Emit an event to all subscribers. Failures are logged, not raised."""
        for handler in list(self._handlers.get(event_name, [])):
            try:
                await handler(**kwargs)
            except Exception:
                logger.exception("Event handler failed for '%s'", event_name)

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()

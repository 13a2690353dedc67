"""In-process event fan-out with a static registration table."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "events"})

EventHandler = Callable[[dict[str, Any]], None]

ASSET_HIDE = "AssetHide"
ASSET_TRASH = "AssetTrash"
ASSET_METADATA_EXTRACTED = "AssetMetadataExtracted"
ASSET_DUPLICATES_UPDATED = "AssetDuplicatesUpdated"

KNOWN_EVENTS: tuple[str, ...] = (
    ASSET_HIDE,
    ASSET_TRASH,
    ASSET_METADATA_EXTRACTED,
    ASSET_DUPLICATES_UPDATED,
)


def _notify_clients(event: str) -> EventHandler:
    def handler(payload: dict[str, Any]) -> None:
        LOGGER.info("client_notification", extra={"event": event, **payload})

    return handler


def default_event_table() -> dict[str, list[EventHandler]]:
    return {event: [_notify_clients(event)] for event in KNOWN_EVENTS}


class EventRepository:
    """Deliver events to handlers registered up front.

    Emission is fire-and-forget: a failing handler is logged and the
    remaining handlers still run.
    """

    def __init__(self, handlers: Mapping[str, Sequence[EventHandler]] | None = None) -> None:
        table = default_event_table() if handlers is None else handlers
        self._handlers: dict[str, tuple[EventHandler, ...]] = {
            event: tuple(items) for event, items in table.items()
        }

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        for handler in self._handlers.get(event, ()):
            try:
                handler(payload)
            except Exception:
                LOGGER.error("event_handler_error", extra={"event": event}, exc_info=True)


__all__ = [
    "ASSET_HIDE",
    "ASSET_TRASH",
    "ASSET_METADATA_EXTRACTED",
    "ASSET_DUPLICATES_UPDATED",
    "EventHandler",
    "EventRepository",
    "default_event_table",
]

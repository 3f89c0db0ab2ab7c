# Overview: Fire-and-forget event publishing for order lifecycle notifications.

from __future__ import annotations

from typing import Any, Protocol

from flask import current_app


ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
PACKAGING_COMPLETED = "packaging.completed"
HANDOVER_CLOSED = "handover.closed"


class EventSink(Protocol):
    def publish(self, event_type: str, payload: dict[str, Any]) -> None: ...


class NullEventSink:
    """Default sink: drops every event."""

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        return None


class LoggingEventSink:
    """Writes events to the application logger."""

    def __init__(self, logger) -> None:
        self.logger = logger

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        self.logger.info("event %s %s", event_type, payload)


class RecordingEventSink:
    """Keeps published events in memory; used by tests and local debugging."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append((event_type, dict(payload)))


def build_event_sink(app) -> EventSink:
    name = (app.config.get("EVENT_SINK") or "null").strip().lower()
    if name == "log":
        return LoggingEventSink(app.logger)
    if name == "memory":
        return RecordingEventSink()
    return NullEventSink()


def init_app(app, sink: EventSink | None = None) -> None:
    app.extensions["event_sink"] = sink if sink is not None else build_event_sink(app)


def get_event_sink() -> EventSink:
    return current_app.extensions.get("event_sink") or NullEventSink()


def publish(event_type: str, payload: dict[str, Any]) -> None:
    """
    Publish after commit. Delivery is best effort: a failing sink is
    logged and never fails the request that produced the event.
    """
    try:
        get_event_sink().publish(event_type, payload)
    except Exception:
        current_app.logger.exception("Failed to publish event %s", event_type)

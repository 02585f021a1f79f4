# campus_helpdesk/backend/app/workers/registry.py
"""Outbox event handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping, Optional

from ..services.outbox import (
    COMMENT_ADDED,
    STATUS_CHANGED,
    TICKET_CREATED,
    TICKET_ESCALATED,
    TICKET_REMINDER,
)
from . import handlers

EventHandler = Callable[[object, object, object], Awaitable[None]]

EVENT_HANDLERS: Mapping[str, EventHandler] = {
    TICKET_CREATED: handlers.handle_ticket_created,
    COMMENT_ADDED: handlers.handle_comment_added,
    STATUS_CHANGED: handlers.handle_status_changed,
    TICKET_ESCALATED: handlers.handle_ticket_escalated,
    TICKET_REMINDER: handlers.handle_ticket_reminder,
}


def resolve_event_handler(
    event_type: str, registry: Mapping[str, EventHandler] = EVENT_HANDLERS
) -> Optional[EventHandler]:
    return registry.get(event_type)

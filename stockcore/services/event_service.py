# Overview: Append-only event stream written inside the caller's transaction.

from __future__ import annotations

from ..extensions import db
from ..errors import ValidationError
from ..events import EventPayload, KNOWN_EVENT_TYPES
from ..models import Event
from .tenant_service import assert_tenant_ownership, get_current_actor_id

MAX_EVENT_PAGE = 500


def _record_event(tenant_id: int, event_type: str, payload, actor_id: int | None = None) -> Event:
    """
    Append one event row. Flushes, never commits.

    The owning operation commits the event together with the mutation it
    describes, so an aborted operation leaves no event behind.
    """
    if isinstance(payload, EventPayload):
        if event_type != payload.event_type:
            raise ValidationError(
                "Payload type does not match event type",
                details={"event_type": event_type, "payload_type": payload.event_type},
            )
        body = payload.to_payload()
    else:
        if event_type in KNOWN_EVENT_TYPES:
            raise ValidationError(
                "Known event types require a typed payload",
                details={"event_type": event_type},
            )
        body = dict(payload or {})

    event = Event(
        tenant_id=tenant_id,
        event_type=event_type,
        payload=body,
        actor_id=actor_id if actor_id is not None else get_current_actor_id(),
    )
    db.session.add(event)
    db.session.flush()
    return event


def emit_event(tenant_id: int, event_type: str, payload, actor_id: int | None = None) -> Event:
    """
    Append an immutable event for `tenant_id`.

    Accepts a typed EventPayload for known event kinds or a plain dict for
    custom event types. Does not commit.
    """
    assert_tenant_ownership(tenant_id)
    if not event_type:
        raise ValidationError("event_type is required")
    return _record_event(tenant_id, event_type, payload, actor_id=actor_id)


def emit(tenant_id: int, payload: EventPayload, actor_id: int | None = None) -> Event:
    """Shorthand for emitting a typed payload under its own event type."""
    return emit_event(tenant_id, payload.event_type, payload, actor_id=actor_id)


def list_events(tenant_id: int, event_type: str | None = None, limit: int = 100) -> list[Event]:
    assert_tenant_ownership(tenant_id)
    limit = max(1, min(int(limit), MAX_EVENT_PAGE))
    query = db.session.query(Event).filter(Event.tenant_id == tenant_id)
    if event_type:
        query = query.filter(Event.event_type == event_type)
    return query.order_by(Event.id.desc()).limit(limit).all()

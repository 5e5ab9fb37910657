# stockcore/routes/events.py
"""
Event stream read API.

Read-only view of the append-only events table for the actor's tenant,
newest first.
"""
from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_actor
from ..errors import LedgerError
from ..services import event_service
from ..validation import query_int, request_tenant_id


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


@events_bp.get("")
@require_actor
def list_events_route():
    try:
        events = event_service.list_events(
            request_tenant_id(),
            event_type=request.args.get("event_type"),
            limit=query_int("limit", default=100),
        )
        return jsonify({"events": [e.to_dict() for e in events]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list events")
        return jsonify({"error": "Internal server error"}), 500

# stockcore/routes/inventory.py
"""
Stock ledger and reservation routes.

SECURITY: All routes require an authenticated actor (require_actor). The
tenant acted on defaults to the actor's tenant; an explicit tenant_id that
does not match is rejected by the service layer with 403.

Quantities are decimal strings in responses.
"""
from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_actor
from ..errors import LedgerError
from ..services import inventory_service, reservation_service
from ..validation import coerce_int, query_int, request_tenant_id, require_fields


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjust")
@require_actor
def adjust_stock_route():
    """Apply a signed stock adjustment to one (variant, location, unit) cell."""
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, "variant_id", "location_id", "unit_id", "quantity_delta", "movement_type")

        movement = inventory_service.adjust_stock(
            request_tenant_id(data),
            coerce_int(data["variant_id"], "variant_id"),
            coerce_int(data["location_id"], "location_id"),
            coerce_int(data["unit_id"], "unit_id"),
            data["quantity_delta"],
            data["movement_type"],
            reason=data.get("reason"),
            reference_id=coerce_int(data.get("reference_id"), "reference_id"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/balance")
@require_actor
def stock_balance_route():
    try:
        variant_id = query_int("variant_id", required=True)
        location_id = query_int("location_id", required=True)
        available = inventory_service.get_stock_balance(request_tenant_id(), variant_id, location_id)
        return jsonify({
            "variant_id": variant_id,
            "location_id": location_id,
            "available": str(available),
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load stock balance")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/summary")
@require_actor
def stock_summary_route():
    try:
        summary = inventory_service.get_stock_summary(
            request_tenant_id(),
            query_int("variant_id", required=True),
            query_int("location_id", required=True),
        )
        for key in ("on_hand", "reserved", "available"):
            summary[key] = str(summary[key])
        return jsonify(summary), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load stock summary")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements")
@require_actor
def list_movements_route():
    try:
        movements = inventory_service.list_stock_movements(
            request_tenant_id(),
            query_int("variant_id", required=True),
            location_id=query_int("location_id"),
            limit=query_int("limit", default=200),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RESERVATIONS
# =============================================================================

@inventory_bp.post("/reservations")
@require_actor
def reserve_stock_route():
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, "variant_id", "location_id", "unit_id", "quantity")

        reservation = reservation_service.reserve_stock(
            request_tenant_id(data),
            coerce_int(data["variant_id"], "variant_id"),
            coerce_int(data["location_id"], "location_id"),
            coerce_int(data["unit_id"], "unit_id"),
            data["quantity"],
            order_ref=data.get("order_ref"),
            ttl=coerce_int(data.get("ttl_seconds"), "ttl_seconds"),
        )
        return jsonify({"reservation": reservation.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reserve stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.delete("/reservations/<int:reservation_id>")
@require_actor
def release_stock_route(reservation_id: int):
    try:
        reservation_service.release_stock(request_tenant_id(), reservation_id)
        return jsonify({"released": reservation_id}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to release reservation")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/reservations/expire")
@require_actor
def expire_reservations_route():
    """Sweep expired holds for the actor's tenant."""
    try:
        data = request.get_json(silent=True) or {}
        removed = reservation_service.expire_reservations(request_tenant_id(data))
        return jsonify({"removed": removed}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to expire reservations")
        return jsonify({"error": "Internal server error"}), 500

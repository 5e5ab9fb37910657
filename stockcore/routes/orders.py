# stockcore/routes/orders.py
"""
Order routes: creation, state transitions and payments.

LIFECYCLE: pending -> completed, pending -> cancelled, completed -> refunded.
Illegal transitions return 409.
"""
from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_actor
from ..errors import LedgerError, ValidationError
from ..services import order_service, payment_service
from ..validation import coerce_int, query_int, request_tenant_id, require_fields


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _money_dict(values: dict) -> dict:
    return {k: str(v) if not isinstance(v, int) else v for k, v in values.items()}


@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Create an order.

    Body: location_id, lines[{variant_id, unit_id, quantity, unit_price,
    tax_rate?, discount_amount?}], customer_id?, metadata?, reservation_ids?
    """
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, "location_id", "lines")
        if not isinstance(data["lines"], list):
            raise ValidationError("lines must be a list")

        reservation_ids = data.get("reservation_ids") or []
        if not isinstance(reservation_ids, list):
            raise ValidationError("reservation_ids must be a list")

        order = order_service.create_order(
            request_tenant_id(data),
            coerce_int(data["location_id"], "location_id"),
            [order_service.OrderLineInput.from_dict(line) for line in data["lines"]],
            customer_id=coerce_int(data.get("customer_id"), "customer_id"),
            metadata=data.get("metadata"),
            reservation_ids=[coerce_int(rid, "reservation_ids") for rid in reservation_ids],
        )
        return jsonify({"order": order.to_dict(include_lines=True)}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_actor
def list_orders_route():
    try:
        orders = order_service.list_orders(
            request_tenant_id(),
            status=request.args.get("status"),
            limit=query_int("limit", default=100),
        )
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(request_tenant_id(), order_id)
        return jsonify({"order": order.to_dict(include_lines=True)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(request_tenant_id(data), order_id, reason=data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/complete")
@require_actor
def complete_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.complete_order(request_tenant_id(data), order_id)
        return jsonify({"order": order.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to complete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/refund")
@require_actor
def refund_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        tenant_id = request_tenant_id(data)
        txn = order_service.refund_order(tenant_id, order_id, reason=data.get("reason"))
        order = order_service.get_order(tenant_id, order_id)
        return jsonify({"transaction": txn.to_dict(), "order": order.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to refund order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENTS
# =============================================================================

@orders_bp.post("/<int:order_id>/payments")
@require_actor
def log_payment_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, "amount", "method")
        txn = payment_service.log_payment(request_tenant_id(data), order_id, data["amount"], data["method"])
        return jsonify({"transaction": txn.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to log payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/payments")
@require_actor
def list_payments_route(order_id: int):
    try:
        tenant_id = request_tenant_id()
        transactions = payment_service.list_transactions(tenant_id, order_id)
        balance = payment_service.get_order_balance(tenant_id, order_id)
        return jsonify({
            "transactions": [t.to_dict() for t in transactions],
            "balance": _money_dict(balance),
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500

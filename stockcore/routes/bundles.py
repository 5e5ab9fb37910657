# stockcore/routes/bundles.py
from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_actor
from ..errors import LedgerError
from ..services import bundle_service, catalog_service
from ..validation import coerce_int, request_tenant_id, require_fields


bundles_bp = Blueprint("bundles", __name__, url_prefix="/api/bundles")


@bundles_bp.post("/sell")
@require_actor
def sell_bundle_route():
    """Deduct child stock for a bundle sale. Body: parent_variant_id, location_id, quantity, order_id?"""
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, "parent_variant_id", "location_id", "quantity")

        movements = bundle_service.sell_bundle(
            request_tenant_id(data),
            coerce_int(data["parent_variant_id"], "parent_variant_id"),
            coerce_int(data["location_id"], "location_id"),
            data["quantity"],
            order_id=coerce_int(data.get("order_id"), "order_id"),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to sell bundle")
        return jsonify({"error": "Internal server error"}), 500


@bundles_bp.get("/<int:parent_variant_id>/components")
@require_actor
def bundle_components_route(parent_variant_id: int):
    try:
        edges = catalog_service.get_bundle_components(request_tenant_id(), parent_variant_id)
        return jsonify({"components": [e.to_dict() for e in edges]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load bundle components")
        return jsonify({"error": "Internal server error"}), 500

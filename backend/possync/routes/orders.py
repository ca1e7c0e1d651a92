# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/possync/routes/orders.py
"""Order API routes (create, read, complete, cancel)"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_service
from ..services.entity_store import EntityNotFound, VersionConflict
from ..services.order_service import OrderError, OrderTransactionError
from ..decorators import require_tenant_context
from ..services.tenant_service import get_current_actor_id


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _conflict_response(e: VersionConflict):
    return jsonify({
        "error": str(e),
        "serverVersion": e.server_version,
        "clientVersion": e.client_version,
    }), 409


def _expected_version(data: dict):
    version = data.get("version")
    if version is None:
        return None
    if isinstance(version, bool):
        raise OrderError("version must be an integer")
    try:
        return int(version)
    except (TypeError, ValueError):
        raise OrderError("version must be an integer")


@orders_bp.get("")
@require_tenant_context
def list_orders_route():
    try:
        orders = order_service.list_orders(g.org_id, status=request.args.get("status") or None)
    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.get("/<order_id>")
@require_tenant_context
def get_order_route(order_id: str):
    try:
        order = order_service.get_order(g.org_id, order_id)
    except EntityNotFound as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.post("")
@require_tenant_context
def create_order_route():
    """
    Create a priced, pending order.

    Body:
        {
            "table_id": "...",            (optional)
            "customer_name": "...",       (optional)
            "customer_phone": "...",      (optional)
            "items": [{"menu_item_id": "...", "quantity": 2,
                       "price": "10.00", "name": "...", "modifiers": []}],
            "discount_percentage": 10,
            "service_charge_percentage": 5,
            "tax_percentage": 8
        }

    All-or-nothing: on any error nothing is stored.
    """
    data = request.get_json(silent=True) or {}
    lines = data.get("items")
    if lines is None:
        lines = data.get("lines") or []
    if not isinstance(lines, list):
        return jsonify({"error": "items must be a list"}), 400

    try:
        order = order_service.create_order(
            g.org_id,
            get_current_actor_id(),
            lines,
            table_id=data.get("table_id") or data.get("tableId"),
            customer_name=data.get("customer_name") or data.get("customerName"),
            customer_phone=data.get("customer_phone") or data.get("customerPhone"),
            discount_percentage=data.get("discount_percentage", data.get("discountPercentage", 0)),
            service_charge_percentage=data.get(
                "service_charge_percentage", data.get("serviceChargePercentage", 0)
            ),
            tax_percentage=data.get("tax_percentage", data.get("taxPercentage", 0)),
        )
        return jsonify({"order": order.to_dict()}), 201

    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except EntityNotFound as e:
        return jsonify({"error": str(e)}), 404
    except OrderTransactionError as e:
        current_app.logger.exception("Order creation rolled back")
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<order_id>/complete")
@require_tenant_context
def complete_order_route(order_id: str):
    """
    Complete (pay) a pending order.

    Body: {"amount_paid": "25.52", "payment_method": "cash", "version": 1}
    All fields optional; amount_paid defaults to the order total.
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.complete_order(
            g.org_id,
            get_current_actor_id(),
            order_id,
            amount_paid=data.get("amount_paid", data.get("amountPaid")),
            payment_method=data.get("payment_method") or data.get("paymentMethod"),
            expected_version=_expected_version(data),
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except EntityNotFound as e:
        return jsonify({"error": str(e)}), 404
    except VersionConflict as e:
        return _conflict_response(e)
    except OrderTransactionError as e:
        current_app.logger.exception("Order completion rolled back")
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to complete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<order_id>/cancel")
@require_tenant_context
def cancel_order_route(order_id: str):
    """Cancel a pending order. Body: {"version": 1} (optional)."""
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.cancel_order(
            g.org_id,
            get_current_actor_id(),
            order_id,
            expected_version=_expected_version(data),
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except EntityNotFound as e:
        return jsonify({"error": str(e)}), 404
    except VersionConflict as e:
        return _conflict_response(e)
    except OrderTransactionError as e:
        current_app.logger.exception("Order cancellation rolled back")
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500

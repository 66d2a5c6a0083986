# Overview: Flask API routes for online orders; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import actor_id, error_response, optional_actor, require_actor
from ..errors import PharmacyError
from ..models import OrderStatus
from ..services import order_service
from ..services.order_service import CreateOrderRequest, OrderSearchFilters
from ..validation import coerce_bool, coerce_datetime, coerce_int, page_params


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _cipher():
    return current_app.extensions["field_cipher"]


@orders_bp.post("")
@optional_actor
def create_order_route():
    """
    Check out a cart.

    Body: customer_id or session_id (plus guest_name and guest_email or
    guest_phone for session carts), order_type, delivery fields,
    delivery_fee_cents, discount_cents, payment_method, customer_notes.
    """
    try:
        data = request.get_json() or {}
        for key in ("delivery_fee_cents", "discount_cents"):
            if key in data:
                data[key] = coerce_int(key, data[key], default=0)
        req = CreateOrderRequest.from_payload(data)
        order = order_service.create_order(req, _cipher(), actor_id=actor_id())
        return jsonify({"order": order.to_dict(include_items=True)}), 201

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_actor
def search_orders_route():
    try:
        args = request.args
        limit, offset = page_params(args)
        filters = OrderSearchFilters(
            status=args.get("status") or None,
            order_type=args.get("order_type") or None,
            date_from=coerce_datetime("date_from", args.get("date_from")),
            date_to=coerce_datetime("date_to", args.get("date_to")),
            customer_id=args.get("customer_id") or None,
            pharmacist_id=args.get("pharmacist_id") or None,
            prescription_required=coerce_bool("prescription_required", args.get("prescription_required")),
            limit=limit,
            offset=offset,
        )
        orders, total = order_service.search_orders(filters)
        return jsonify({
            "orders": [order.to_dict() for order in orders],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to search orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<order_id>")
@require_actor
def get_order_route(order_id: str):
    """Order with items and history. ?include_protected=1 decrypts protected fields."""
    try:
        order = order_service.get_order(order_id)
        include_protected = coerce_bool("include_protected", request.args.get("include_protected"))
        return jsonify({
            "order": order.to_dict(
                _cipher() if include_protected else None,
                include_items=True,
                include_history=True,
            )
        }), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<order_id>/transitions")
@require_actor
def order_transitions_route(order_id: str):
    try:
        order = order_service.get_order(order_id)
        return jsonify({
            "status": order.status,
            "allowed": list(order_service.allowed_transitions(order.status, order.order_type)),
        }), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order transitions")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<order_id>/status")
@require_actor
def update_status_route(order_id: str):
    """
    Change order status.

    Body: status, reason, notes, override. override is limited to admin and
    manager roles.
    """
    try:
        data = request.get_json() or {}
        new_status = data.get("status")
        if not new_status:
            return jsonify({"error": "status required"}), 400
        if new_status not in OrderStatus.ALL:
            return jsonify({"error": f"Unknown status {new_status}"}), 400

        override = bool(coerce_bool("override", data.get("override")))
        if override and not g.actor.can_override:
            return jsonify({"error": "Status override not permitted"}), 403

        order = order_service.update_order_status(
            order_id,
            new_status,
            reason=data.get("reason"),
            actor_id=g.actor.id,
            override=override,
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_history=True)}), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<order_id>/assign")
@require_actor
def assign_staff_route(order_id: str):
    try:
        data = request.get_json() or {}
        order = order_service.assign_staff(
            order_id,
            pharmacist_id=data.get("pharmacist_id"),
            delivery_person_id=data.get("delivery_person_id"),
            actor_id=g.actor.id,
        )
        return jsonify({"order": order.to_dict()}), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign order staff")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/customer/<customer_id>")
@require_actor
def customer_orders_route(customer_id: str):
    try:
        limit, offset = page_params(request.args)
        orders, total = order_service.get_customer_orders(customer_id, limit=limit, offset=offset)
        return jsonify({"orders": [o.to_dict() for o in orders], "total": total}), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load customer orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/track/<order_number>")
def track_order_route(order_number: str):
    """Public tracking endpoint. No protected fields are returned."""
    try:
        return jsonify(order_service.track_order(order_number)), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to track order")
        return jsonify({"error": "Internal server error"}), 500

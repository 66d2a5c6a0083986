# Overview: Flask API routes for shopping carts; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import error_response
from ..errors import PharmacyError
from ..services import cart_service
from ..services.cart_service import CartOwner, PrescriptionInfo
from ..validation import coerce_int


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _owner(data: dict | None = None) -> CartOwner:
    """Owner from the JSON body, then query string, then the X-Session-Id header."""
    data = data or {}
    customer_id = data.get("customer_id") or request.args.get("customer_id")
    session_id = data.get("session_id") or request.args.get("session_id")
    if not customer_id and not session_id:
        session_id = request.headers.get("X-Session-Id")
    return CartOwner(customer_id=customer_id or None, session_id=session_id or None)


def _cart_payload(owner: CartOwner) -> dict:
    lines = cart_service.get_cart(owner)
    return {
        "items": [line.to_dict() for line in lines],
        "summary": cart_service.summarize_cart(lines).to_dict(),
    }


@cart_bp.get("")
def get_cart_route():
    try:
        return jsonify(_cart_payload(_owner())), 200
    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/items")
def add_item_route():
    """
    Add a product to the cart.

    Body: customer_id or session_id, product_id, quantity, and optional
    dosage / instructions / duration.
    """
    try:
        data = request.get_json() or {}
        product_id = data.get("product_id")
        if not product_id:
            return jsonify({"error": "product_id required"}), 400
        quantity = coerce_int("quantity", data.get("quantity"))
        if quantity is None:
            return jsonify({"error": "quantity required"}), 400

        line = cart_service.add_to_cart(
            _owner(data),
            product_id,
            quantity,
            PrescriptionInfo.from_payload(data),
        )
        return jsonify({"item": line.to_dict()}), 201

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.patch("/items/<cart_item_id>")
def update_item_route(cart_item_id: str):
    try:
        data = request.get_json() or {}
        owner = _owner(data)
        line = cart_service.update_cart_item(
            cart_item_id,
            quantity=coerce_int("quantity", data.get("quantity")),
            prescription=PrescriptionInfo.from_payload(data),
            owner=owner.validate(),
        )
        return jsonify({"item": line.to_dict()}), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<cart_item_id>")
def remove_item_route(cart_item_id: str):
    try:
        owner = _owner(request.get_json(silent=True))
        cart_service.remove_from_cart(cart_item_id, owner=owner.validate())
        return jsonify({"removed": cart_item_id}), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("")
def clear_cart_route():
    try:
        removed = cart_service.clear_cart(_owner(request.get_json(silent=True)))
        return jsonify({"removed": removed}), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500

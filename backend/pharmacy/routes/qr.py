# Overview: Flask API routes for QR code issuance and scanning.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import actor_id, error_response, optional_actor, require_actor
from ..errors import PharmacyError
from ..services import qr_service
from ..services.qr_service import ScanContext, ScanHistoryFilters
from ..validation import coerce_bool, coerce_datetime, page_params


qr_bp = Blueprint("qr", __name__, url_prefix="/api/qr")

GENERATORS = {
    "products": qr_service.generate_product_qr,
    "customers": qr_service.generate_customer_qr,
    "orders": qr_service.generate_order_qr,
    "payments": qr_service.generate_payment_qr,
    "auth": qr_service.generate_auth_qr,
}


@qr_bp.post("/generate/<kind>/<entity_id>")
@require_actor
def generate_qr_route(kind: str, entity_id: str):
    """Issue a QR code. kind is one of products, customers, orders, payments, auth."""
    generator = GENERATORS.get(kind)
    if generator is None:
        return jsonify({"error": f"Unknown QR kind {kind}"}), 404
    try:
        qr = generator(entity_id, g.actor.id)
        return jsonify({"qr_code": qr.to_dict()}), 201

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to generate QR code")
        return jsonify({"error": "Internal server error"}), 500


@qr_bp.post("/scan")
@optional_actor
def scan_qr_route():
    try:
        data = request.get_json() or {}
        code = data.get("code")
        if not code:
            return jsonify({"error": "code required"}), 400

        context = ScanContext(
            scanned_by=actor_id(),
            session_id=data.get("session_id") or request.headers.get("X-Session-Id"),
            ip_address=request.remote_addr,
            user_agent=(request.user_agent.string or "")[:500] or None,
            scan_method=data.get("scan_method"),
            location=data.get("location"),
        )
        result = qr_service.scan_qr(code, context)
        return jsonify(result.to_dict()), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to scan QR code")
        return jsonify({"error": "Internal server error"}), 500


@qr_bp.get("/entity/<entity_type>/<entity_id>")
@require_actor
def entity_qr_codes_route(entity_type: str, entity_id: str):
    try:
        codes = qr_service.get_qr_codes_by_entity(entity_id, entity_type)
        return jsonify({"qr_codes": [qr.to_dict() for qr in codes]}), 200
    except Exception:
        current_app.logger.exception("Failed to list QR codes")
        return jsonify({"error": "Internal server error"}), 500


@qr_bp.post("/<qr_code_id>/deactivate")
@require_actor
def deactivate_qr_route(qr_code_id: str):
    try:
        data = request.get_json(silent=True) or {}
        qr = qr_service.deactivate_qr_code(qr_code_id, reason=data.get("reason"), actor_id=g.actor.id)
        return jsonify({"qr_code": qr.to_dict()}), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate QR code")
        return jsonify({"error": "Internal server error"}), 500


@qr_bp.get("/scans")
@require_actor
def scan_history_route():
    try:
        args = request.args
        limit, offset = page_params(args, default_limit=50)
        logs, total = qr_service.get_scan_history(ScanHistoryFilters(
            qr_code_id=args.get("qr_code_id") or None,
            scanned_by=args.get("scanned_by") or None,
            success=coerce_bool("success", args.get("success")),
            date_from=coerce_datetime("date_from", args.get("date_from")),
            date_to=coerce_datetime("date_to", args.get("date_to")),
            limit=limit,
            offset=offset,
        ))
        return jsonify({"scans": [log.to_dict() for log in logs], "total": total}), 200

    except PharmacyError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load scan history")
        return jsonify({"error": "Internal server error"}), 500

# Overview: Flask API routes for admin order operations; parses input and returns JSON responses.

# backend/app/routes/admin.py
"""
Admin Order API Routes

- GET /api/admin/orders                   list with filters + pagination
- GET /api/admin/orders/<id>              order, lines and audit history
- PUT /api/admin/orders/<id>/status       administrative status override (audited)
- PUT /api/admin/settings/wallet          update wallet transfer instructions

All routes require an authenticated administrator.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_query_service, order_status_service, settings_service
from ..services.order_errors import OrderError, ValidationError
from ..services.order_builder import coerce_int
from ..decorators import require_auth, require_admin
from .orders import json_body, order_error_response


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/orders")
@require_auth
@require_admin
def list_orders_route():
    """
    Query params: page, limit, status, payment_status, search (name, email or order id)
    """
    try:
        result = order_query_service.list_orders(
            page=coerce_int(request.args.get("page", "1"), "page"),
            limit=coerce_int(request.args.get("limit", "20"), "limit"),
            order_status=request.args.get("status") or None,
            payment_status=request.args.get("payment_status") or None,
            search=request.args.get("search") or None,
        )
        return jsonify({
            "orders": [
                {**order.to_dict(), "user_name": order.user.name, "user_email": order.user.email}
                for order in result["orders"]
            ],
            "pagination": result["pagination"],
        }), 200

    except OrderError as e:
        return order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/orders/<int:order_id>")
@require_auth
@require_admin
def get_order_route(order_id: int):
    try:
        order, lines, transactions = order_query_service.get_order_with_history(order_id)
        return jsonify({
            "order": {
                **order.to_dict(include_lines=False),
                "items": [line.to_dict() for line in lines],
                "user_name": order.user.name,
                "user_email": order.user.email,
                "user_phone": order.user.phone,
            },
            "transactions": [tx.to_dict() for tx in transactions],
        }), 200

    except OrderError as e:
        return order_error_response(e)


@admin_bp.put("/orders/<int:order_id>/status")
@require_auth
@require_admin
def override_status_route(order_id: int):
    """
    Administrative status override.

    Request body (at least one status):
    {
        "order_status": "confirmed",
        "payment_status": "paid",
        "notes": "Transfer verified in wallet app"
    }
    """
    try:
        data = json_body()
        order = order_status_service.admin_override_status(
            order_id,
            g.current_user.id,
            order_status=data.get("order_status") or None,
            payment_status=data.get("payment_status") or None,
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/settings/wallet")
@require_auth
@require_admin
def update_wallet_settings_route():
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("JSON object required")
        settings = settings_service.update_wallet_settings(data, user_id=g.current_user.id)
        return jsonify({"settings": settings}), 200

    except OrderError as e:
        return order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update wallet settings")
        return jsonify({"error": "Internal server error"}), 500

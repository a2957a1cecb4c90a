# Overview: Flask API routes for customer order operations; parses input and returns JSON responses.

# backend/app/routes/orders.py
"""
Customer Order API Routes

- POST /api/orders/                       place order (Idempotency-Key header optional)
- GET  /api/orders/                       my orders
- GET  /api/orders/<id>                   one of my orders
- PUT  /api/orders/<id>/cancel            cancel (pending only, restores stock)
- POST /api/orders/<id>/payment-intent    (re)start card payment
- POST /api/orders/<id>/confirm-payment   confirm card payment with the gateway
- POST /api/orders/<id>/wallet-confirm    self-report a wallet transfer
- GET  /api/orders/wallet-settings        public wallet transfer instructions
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import checkout_service, order_query_service, order_status_service, payment_service
from ..services import settings_service
from ..services.order_builder import CheckoutRequest
from ..services.order_errors import (
    IllegalTransitionError,
    InsufficientStockError,
    OrderError,
    OrderNotFoundError,
    PaymentGatewayError,
    PaymentMismatchError,
    ValidationError,
)
from ..decorators import require_auth


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

_STATUS_BY_ERROR = [
    (OrderNotFoundError, 404),
    (InsufficientStockError, 409),
    (IllegalTransitionError, 409),
    (PaymentMismatchError, 402),
    (PaymentGatewayError, 502),
]


def order_error_response(exc: OrderError):
    status = 400
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = code
            break
    return jsonify({"error": str(exc), "error_type": type(exc).__name__, "details": exc.details}), status


def json_body() -> dict:
    """Request JSON as a dict; a missing body reads as empty."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object required")
    return data


@orders_bp.post("/")
@require_auth
def place_order_route():
    """
    Place an order from the selected cart items.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "price": 150000}],
        "delivery_address": {"full_name": "...", "phone": "...", "address": "...",
                             "city": "...", "district": "...", "ward": "..."},
        "message": "optional",
        "payment_method": "cod" | "card" | "wallet",
        "total_amount": 300000
    }
    """
    try:
        data = json_body()
        checkout = CheckoutRequest.from_payload(
            g.current_user.id,
            data,
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        result = checkout_service.place_order(checkout)
        return jsonify(result.to_dict()), 200 if result.replayed else 201

    except OrderError as e:
        return order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
@require_auth
def list_my_orders_route():
    orders = order_query_service.list_user_orders(g.current_user.id)
    return jsonify({"orders": [order.to_dict() for order in orders]}), 200


@orders_bp.get("/wallet-settings")
def wallet_settings_route():
    return jsonify({"settings": settings_service.get_wallet_settings()}), 200


@orders_bp.get("/<int:order_id>")
@require_auth
def get_my_order_route(order_id: int):
    try:
        order = order_query_service.get_order_for_user(order_id, g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except OrderError as e:
        return order_error_response(e)


@orders_bp.put("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    try:
        order = order_status_service.cancel_order(order_id, g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/payment-intent")
@require_auth
def payment_intent_route(order_id: int):
    try:
        intent = payment_service.initiate_card_payment(order_id, g.current_user.id)
        return jsonify({"payment_intent": intent.to_dict()}), 200

    except OrderError as e:
        return order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start card payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/confirm-payment")
@require_auth
def confirm_payment_route(order_id: int):
    """
    Confirm a card payment.

    Request body: {"payment_intent_id": "pi_..."}
    """
    try:
        data = json_body()
        result = payment_service.confirm_card_payment(
            order_id, g.current_user.id, data.get("payment_intent_id"),
        )
        return jsonify(result.to_dict()), 200

    except OrderError as e:
        return order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm card payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/wallet-confirm")
@require_auth
def wallet_confirm_route(order_id: int):
    """
    Customer reports a completed wallet transfer.

    Request body: {"transfer_note": "optional free text"}
    """
    try:
        data = json_body()
        result = payment_service.confirm_wallet_transfer(
            order_id, g.current_user.id, data.get("transfer_note"),
        )
        return jsonify(result.to_dict()), 200

    except OrderError as e:
        return order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record wallet transfer")
        return jsonify({"error": "Internal server error"}), 500

"""
Checkout Service - turns a cart selection into a durable order

WHY: The one place an order is created. Everything that must be atomic
happens in a single database transaction:

    validate -> insert order -> insert lines -> debit stock -> commit

A failed debit aborts the whole transaction, so the caller never sees a
half-placed order and no stock stays reserved for an order that does not
exist. Work that must NOT be able to undo the order runs after commit:

- cart cleanup (best effort, own transaction, logged on failure)
- card payment intent creation (gateway I/O never happens while stock rows
  are locked; on failure the order stays pending/pending and the customer can
  retry initiation)
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Order
from ..models.orders import PAYMENT_METHOD_CARD
from . import inventory_service
from .cart_service import delete_cart_items
from .concurrency import begin_write_transaction, run_with_retry
from .order_builder import CheckoutRequest, build_order
from .order_errors import InsufficientStockError, PaymentGatewayError
from .payment_gateway import PaymentIntent


@dataclass
class CheckoutResult:
    order: Order
    replayed: bool = False
    payment_intent: PaymentIntent | None = None
    payment_error: str | None = None

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "replayed": self.replayed,
            "payment_intent": self.payment_intent.to_dict() if self.payment_intent else None,
            "payment_error": self.payment_error,
        }


def _find_by_idempotency_key(user_id: int, key: str | None) -> Order | None:
    if not key:
        return None
    return db.session.query(Order).filter_by(user_id=user_id, idempotency_key=key).first()


def _create_order_locked(request: CheckoutRequest) -> tuple[Order, list[int]]:
    draft = build_order(request)
    order = draft.order

    db.session.add(order)
    db.session.flush()  # Get order ID

    for line in draft.lines:
        line.order_id = order.id
        db.session.add(line)
    db.session.flush()

    # Deterministic lock order (ascending product id) so two multi-item
    # checkouts can never wait on each other's rows in opposite order.
    for line in sorted(draft.lines, key=lambda l: (l.product_id, l.position)):
        if not inventory_service.debit(line.product_id, line.quantity):
            raise InsufficientStockError(
                product_id=line.product_id,
                product_name=line.product_name,
                requested=line.quantity,
                available=inventory_service.get_stock(line.product_id),
            )

    return order, [line.product_id for line in draft.lines]


def place_order(request: CheckoutRequest) -> CheckoutResult:
    """
    Place an order atomically.

    Returns:
        CheckoutResult (order committed as pending/pending)

    Raises:
        ValidationError: request rejected before anything was written
        InsufficientStockError: a product ran out; nothing was persisted
    """
    key = (request.idempotency_key or "").strip() or None
    request.idempotency_key = key

    existing = _find_by_idempotency_key(request.user_id, key)
    if existing:
        return CheckoutResult(order=existing, replayed=True)

    def _op():
        begin_write_transaction()
        order, product_ids = _create_order_locked(request)
        db.session.commit()
        return order, product_ids

    try:
        order, product_ids = run_with_retry(
            _op, attempts=current_app.config.get("CHECKOUT_RETRY_ATTEMPTS", 3)
        )
    except IntegrityError:
        # A concurrent request with the same idempotency key won the insert
        existing = _find_by_idempotency_key(request.user_id, key)
        if existing:
            return CheckoutResult(order=existing, replayed=True)
        raise

    current_app.logger.info(
        "Order %s placed by user %s (%s, total=%s)",
        order.id, order.user_id, order.payment_method, order.total_amount_cents,
    )

    _cleanup_cart(order.user_id, product_ids, order.id)

    result = CheckoutResult(order=order)
    if order.payment_method == PAYMENT_METHOD_CARD:
        from .payment_service import attach_payment_intent
        try:
            result.payment_intent = attach_payment_intent(order)
        except (PaymentGatewayError, SQLAlchemyError) as exc:
            current_app.logger.warning(
                "Payment intent creation failed for order %s; order left pending: %s",
                order.id, exc,
            )
            result.payment_error = "Card payment could not be started; retry from the order page"
    return result


def _cleanup_cart(user_id: int, product_ids: list[int], order_id: int) -> None:
    """Best effort. Failures are logged and the order stands."""
    def _op():
        removed = delete_cart_items(user_id, product_ids)
        db.session.commit()
        return removed

    try:
        run_with_retry(_op, attempts=2, backoff_base=0.05)
    except SQLAlchemyError:
        current_app.logger.warning(
            "Cart cleanup failed for user %s after order %s", user_id, order_id, exc_info=True,
        )

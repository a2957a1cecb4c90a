# Overview: Service-layer operations for order status; encapsulates business logic and database work.

"""
Order Status State Machine

order_status:    pending -> confirmed | cancelled
                 confirmed -> shipping | cancelled
                 shipping -> delivered
                 delivered, cancelled: terminal
payment_status:  pending -> paid | failed
                 paid, failed: terminal

Two distinct capabilities:

- cancel_order: the customer-facing transition. Enforces the table
  (pending only), restores stock line by line and audits, all in one
  transaction.
- admin_override_status: administrators may set any valid status value.
  It skips the transition table, but every changed field is still audited
  in the same transaction. Moves the table would reject are logged as warnings.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, OrderLineItem
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_SHIPPING,
    ORDER_STATUSES,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUSES,
    TX_ORDER_STATUS_CHANGE,
    TX_PAYMENT_STATUS_CHANGE,
)
from . import inventory_service
from .concurrency import begin_write_transaction, run_with_retry
from .order_audit_service import set_order_status, set_payment_status
from .order_errors import IllegalTransitionError, ValidationError
from .order_query_service import load_order

MAX_NOTES_LENGTH = 2_000

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    ORDER_STATUS_PENDING: frozenset({ORDER_STATUS_CONFIRMED, ORDER_STATUS_CANCELLED}),
    ORDER_STATUS_CONFIRMED: frozenset({ORDER_STATUS_SHIPPING, ORDER_STATUS_CANCELLED}),
    ORDER_STATUS_SHIPPING: frozenset({ORDER_STATUS_DELIVERED}),
    ORDER_STATUS_DELIVERED: frozenset(),
    ORDER_STATUS_CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    PAYMENT_STATUS_PENDING: frozenset({PAYMENT_STATUS_PAID, PAYMENT_STATUS_FAILED}),
    PAYMENT_STATUS_PAID: frozenset(),
    PAYMENT_STATUS_FAILED: frozenset(),
}

_TABLES = {
    TX_ORDER_STATUS_CHANGE: ORDER_TRANSITIONS,
    TX_PAYMENT_STATUS_CHANGE: PAYMENT_TRANSITIONS,
}


def can_transition(transaction_type: str, old_status: str, new_status: str) -> bool:
    """True when old -> new is an edge of the formal transition table."""
    table = _TABLES[transaction_type]
    return new_status in table.get(old_status, frozenset())


def cancel_order(order_id: int, user_id: int) -> Order:
    """
    Customer cancellation.

    Only a pending order can be cancelled. Every line's quantity is credited
    back to stock (exactly what checkout debited), then the status changes
    and is audited. A second cancel finds the order already cancelled and is
    rejected, so stock is never credited twice.

    Raises:
        OrderNotFoundError: not this customer's order
        IllegalTransitionError: order is not pending; nothing changes
    """
    def _op():
        begin_write_transaction()
        order = load_order(order_id, user_id, lock=True)
        if order.order_status != ORDER_STATUS_PENDING:
            raise IllegalTransitionError(
                "Only pending orders can be cancelled",
                details={"order_status": order.order_status},
            )

        lines = db.session.query(OrderLineItem).filter_by(order_id=order.id).order_by(OrderLineItem.product_id).all()
        for line in lines:
            inventory_service.credit(line.product_id, line.quantity)

        set_order_status(order, ORDER_STATUS_CANCELLED, notes="Cancelled by customer")
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s cancelled by user %s; stock restored", order_id, user_id)
    return order


def _clean_notes(notes) -> str | None:
    if notes is None:
        return None
    notes = str(notes).strip()
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"notes exceeds {MAX_NOTES_LENGTH} characters")
    return notes or None


def admin_override_status(
    order_id: int,
    admin_id: int,
    *,
    order_status: str | None = None,
    payment_status: str | None = None,
    notes: str | None = None,
) -> Order:
    """
    Administrative override of order_status and/or payment_status.

    Any valid enum value is accepted regardless of the transition table.
    Each field that actually changes produces exactly one audit row carrying
    the old value, new value, admin id and notes. Status and audit rows
    commit together or not at all.

    Inventory is not touched: an override to "cancelled" does not restock.
    """
    if order_status is None and payment_status is None:
        raise ValidationError("order_status or payment_status required")
    if order_status is not None and order_status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid order status: {order_status}. Must be one of {ORDER_STATUSES}")
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {payment_status}. Must be one of {PAYMENT_STATUSES}")
    notes = _clean_notes(notes)

    def _op():
        begin_write_transaction()
        order = load_order(order_id, lock=True)

        for kind, old, new in (
            (TX_ORDER_STATUS_CHANGE, order.order_status, order_status),
            (TX_PAYMENT_STATUS_CHANGE, order.payment_status, payment_status),
        ):
            if new is not None and new != old and not can_transition(kind, old, new):
                current_app.logger.warning(
                    "Admin %s override on order %s outside transition table: %s %s -> %s",
                    admin_id, order_id, kind, old, new,
                )

        if order_status is not None:
            set_order_status(order, order_status, admin_id=admin_id, notes=notes)
        if payment_status is not None:
            set_payment_status(order, payment_status, admin_id=admin_id, notes=notes)

        db.session.commit()
        return order

    return run_with_retry(_op)

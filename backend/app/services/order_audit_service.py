# Overview: Service-layer operations for the order audit trail; encapsulates business logic and database work.

from __future__ import annotations

from ..extensions import db
from ..models import Order, OrderTransaction
from ..models.orders import TX_ORDER_STATUS_CHANGE, TX_PAYMENT_STATUS_CHANGE
"""
Order Audit Trail Invariants (authoritative)

- Append-only: rows are inserted, never updated or deleted.
- Exactly one row per discrete status change. A change to both
  order_status and payment_status is two rows.
- Rows are written inside the same DB transaction as the status change they
  record (flush, never commit). If the insert fails the caller's transaction
  rolls back, so status and trail can never diverge.
- admin_id is NULL for customer- and system-driven changes.
"""

TRANSACTION_TYPES = [TX_ORDER_STATUS_CHANGE, TX_PAYMENT_STATUS_CHANGE]


def record_status_change(
    *,
    order: Order,
    transaction_type: str,
    old_status: str | None,
    new_status: str,
    admin_id: int | None = None,
    notes: str | None = None,
) -> OrderTransaction:
    if transaction_type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown transaction type: {transaction_type}")
    if old_status == new_status:
        raise ValueError("Audit entries record changes only")

    entry = OrderTransaction(
        order_id=order.id,
        admin_id=admin_id,
        transaction_type=transaction_type,
        old_status=old_status,
        new_status=new_status,
        notes=notes,
    )
    db.session.add(entry)
    db.session.flush()  # surfaces constraint errors inside the caller's transaction
    return entry


def set_order_status(order: Order, new_status: str, *, admin_id: int | None = None, notes: str | None = None) -> OrderTransaction | None:
    """Apply and audit an order_status change. No-op (None) when unchanged."""
    old_status = order.order_status
    if old_status == new_status:
        return None
    order.order_status = new_status
    return record_status_change(
        order=order,
        transaction_type=TX_ORDER_STATUS_CHANGE,
        old_status=old_status,
        new_status=new_status,
        admin_id=admin_id,
        notes=notes,
    )


def set_payment_status(order: Order, new_status: str, *, admin_id: int | None = None, notes: str | None = None) -> OrderTransaction | None:
    """Apply and audit a payment_status change. No-op (None) when unchanged."""
    old_status = order.payment_status
    if old_status == new_status:
        return None
    order.payment_status = new_status
    return record_status_change(
        order=order,
        transaction_type=TX_PAYMENT_STATUS_CHANGE,
        old_status=old_status,
        new_status=new_status,
        admin_id=admin_id,
        notes=notes,
    )


def get_order_history(order_id: int) -> list[OrderTransaction]:
    """Audit entries for an order, newest first."""
    return (
        db.session.query(OrderTransaction)
        .filter_by(order_id=order_id)
        .order_by(OrderTransaction.created_at.desc(), OrderTransaction.id.desc())
        .all()
    )

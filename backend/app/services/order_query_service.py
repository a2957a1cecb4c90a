# Overview: Read-side order lookups for customers and administrators.

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Order, OrderLineItem, OrderTransaction, User
from ..models.orders import ORDER_STATUSES, PAYMENT_STATUSES
from .concurrency import lock_for_update
from .order_audit_service import get_order_history
from .order_errors import OrderNotFoundError, ValidationError

MAX_PAGE_SIZE = 100


def load_order(order_id: int, user_id: int | None = None, *, lock: bool = False) -> Order:
    """
    Fetch an order, optionally scoped to its owner.

    A customer asking for someone else's order gets the same "not found" as
    for a missing one.
    """
    query = db.session.query(Order).filter_by(id=order_id)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise OrderNotFoundError("Order not found", details={"order_id": order_id})
    return order


def get_order_for_user(order_id: int, user_id: int) -> Order:
    return load_order(order_id, user_id)


def get_order_with_history(order_id: int) -> tuple[Order, list[OrderLineItem], list[OrderTransaction]]:
    order = load_order(order_id)
    lines = (
        db.session.query(OrderLineItem)
        .filter_by(order_id=order_id)
        .order_by(OrderLineItem.position, OrderLineItem.id)
        .all()
    )
    return order, lines, get_order_history(order_id)


def list_user_orders(user_id: int) -> list[Order]:
    return (
        db.session.query(Order)
        .filter_by(user_id=user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_orders(
    *,
    page: int = 1,
    limit: int = 20,
    order_status: str | None = None,
    payment_status: str | None = None,
    search: str | None = None,
) -> dict:
    """Admin listing with filters and pagination metadata."""
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    limit = min(limit, MAX_PAGE_SIZE)

    query = db.session.query(Order).join(User, Order.user_id == User.id)
    if order_status:
        if order_status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid order status: {order_status}")
        query = query.filter(Order.order_status == order_status)
    if payment_status:
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status: {payment_status}")
        query = query.filter(Order.payment_status == payment_status)
    if search:
        term = f"%{search.strip()}%"
        conditions = [User.name.ilike(term), User.email.ilike(term)]
        if search.strip().isdigit():
            conditions.append(Order.id == int(search.strip()))
        query = query.filter(or_(*conditions))

    total = query.with_entities(func.count(Order.id)).scalar() or 0
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "orders": orders,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "page_size": (total + limit - 1) // limit,
        },
    }

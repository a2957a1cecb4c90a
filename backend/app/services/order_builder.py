# Overview: Checkout request validation and in-memory order assembly.

"""
Order Aggregate Builder

WHY: A checkout must be rejected before any row is written or any stock is
touched if the request is incomplete. This module only READS products (to
confirm they exist and to snapshot display fields); it never debits.

The declared total is verified, not trusted: it must equal
sum(unit price x quantity) over the submitted lines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..extensions import db
from ..models import Order, OrderLineItem, Product
from ..models.orders import (
    ORDER_STATUS_PENDING,
    PAYMENT_METHODS,
    PAYMENT_STATUS_PENDING,
)
from .order_errors import ValidationError

MAX_LINE_QUANTITY = 10_000
MAX_MESSAGE_LENGTH = 2_000

# Client field name -> canonical key. The storefront sends camelCase.
_ADDRESS_ALIASES = {
    "fullName": "full_name",
    "province": "city",
}
_ADDRESS_REQUIRED = ("full_name", "phone", "address")
_ADDRESS_OPTIONAL = ("city", "district", "ward")


@dataclass
class CheckoutRequest:
    user_id: int
    items: list[dict]
    delivery_address: dict | None
    payment_method: str | None
    declared_total: Any
    message: str | None = None
    idempotency_key: str | None = None

    @classmethod
    def from_payload(cls, user_id: int, data: dict, idempotency_key: str | None = None) -> "CheckoutRequest":
        declared_total = data.get("total_amount_cents")
        if declared_total is None:
            declared_total = data.get("total_amount")
        return cls(
            user_id=user_id,
            items=data.get("items"),
            delivery_address=data.get("delivery_address"),
            payment_method=data.get("payment_method"),
            declared_total=declared_total,
            message=data.get("message"),
            idempotency_key=idempotency_key or data.get("idempotency_key"),
        )


@dataclass
class OrderDraft:
    """Validated, unsaved order aggregate."""
    order: Order
    lines: list[OrderLineItem]
    products: dict[int, Product] = field(default_factory=dict)


def coerce_int(value: Any, field_name: str) -> int:
    """Strict integer parsing: no floats, no bools, no scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field_name} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field_name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field_name} must be an integer, not a decimal")
    raise ValidationError(f"{field_name} must be an integer")


def normalize_address(raw: Any) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Delivery address is incomplete", details={"missing": list(_ADDRESS_REQUIRED)})

    address: dict[str, str | None] = {}
    for key, value in raw.items():
        key = _ADDRESS_ALIASES.get(key, key)
        if key in _ADDRESS_REQUIRED or key in _ADDRESS_OPTIONAL:
            address[key] = str(value).strip() if value is not None else None

    missing = [key for key in _ADDRESS_REQUIRED if not address.get(key)]
    if missing:
        raise ValidationError("Delivery address is incomplete", details={"missing": missing})

    for key in _ADDRESS_OPTIONAL:
        address.setdefault(key, None)
    return address


def _item_price(item: dict, key: str, fallback: int | None, position: int) -> int | None:
    value = item.get(f"{key}_cents")
    if value is None:
        value = item.get(key)
    if value is None:
        return fallback
    price = coerce_int(value, f"items[{position}].{key}")
    if price < 0:
        raise ValidationError(f"items[{position}].{key} must not be negative")
    return price


def validate_items(items: Any) -> list[dict]:
    """Shape checks that need no database access."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item")

    cleaned = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{position}] must be an object")
        if item.get("product_id") is None:
            raise ValidationError(f"items[{position}].product_id required")
        product_id = coerce_int(item["product_id"], f"items[{position}].product_id")
        if item.get("quantity") is None:
            raise ValidationError(f"items[{position}].quantity required")
        quantity = coerce_int(item["quantity"], f"items[{position}].quantity")
        if quantity <= 0:
            raise ValidationError(
                f"items[{position}].quantity must be a positive integer",
                details={"product_id": product_id, "quantity": quantity},
            )
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"items[{position}].quantity exceeds {MAX_LINE_QUANTITY}")
        cleaned.append({**item, "product_id": product_id, "quantity": quantity})
    return cleaned


def build_order(request: CheckoutRequest) -> OrderDraft:
    """
    Validate a checkout request and assemble the unsaved aggregate.

    Raises:
        ValidationError: on any problem. Nothing has been written.
    """
    items = validate_items(request.items)
    address = normalize_address(request.delivery_address)

    if request.payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {request.payment_method}. Must be one of {PAYMENT_METHODS}"
        )

    if request.declared_total is None:
        raise ValidationError("total_amount required")
    declared_total = coerce_int(request.declared_total, "total_amount")

    message = request.message
    if message is not None:
        message = str(message).strip() or None
        if message and len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"message exceeds {MAX_MESSAGE_LENGTH} characters")

    idempotency_key = request.idempotency_key
    if idempotency_key is not None:
        idempotency_key = str(idempotency_key).strip() or None
        if idempotency_key and len(idempotency_key) > 128:
            raise ValidationError("Idempotency key exceeds 128 characters")

    products: dict[int, Product] = {}
    lines: list[OrderLineItem] = []
    for position, item in enumerate(items):
        product_id = item["product_id"]
        product = products.get(product_id) or db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(
                f"Product {product_id} does not exist",
                details={"product_id": product_id},
            )
        products[product_id] = product

        unit_price = _item_price(item, "price", product.price_cents, position)
        price_before_discount = _item_price(
            item, "price_before_discount", product.price_before_discount_cents, position
        )

        lines.append(OrderLineItem(
            product_id=product_id,
            position=position,
            product_name=product.name or item.get("product_name") or f"Product {product_id}",
            product_image=product.image or item.get("product_image"),
            unit_price_cents=unit_price,
            price_before_discount_cents=price_before_discount,
            quantity=item["quantity"],
            line_total_cents=unit_price * item["quantity"],
        ))

    computed_total = sum(line.line_total_cents for line in lines)
    if computed_total != declared_total:
        raise ValidationError(
            "Order total does not match its items",
            details={"declared_total": declared_total, "computed_total": computed_total},
        )

    order = Order(
        user_id=request.user_id,
        delivery_address=address,
        message=message,
        payment_method=request.payment_method,
        payment_status=PAYMENT_STATUS_PENDING,
        order_status=ORDER_STATUS_PENDING,
        total_amount_cents=computed_total,
        idempotency_key=idempotency_key,
        user_payment_confirmed=False,
    )
    return OrderDraft(order=order, lines=lines, products=products)

from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


# Order lifecycle
ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_CONFIRMED = "confirmed"
ORDER_STATUS_SHIPPING = "shipping"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = [
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_SHIPPING,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
]

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"

PAYMENT_STATUSES = [
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_FAILED,
]

PAYMENT_METHOD_COD = "cod"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_WALLET = "wallet"

PAYMENT_METHODS = [
    PAYMENT_METHOD_COD,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_WALLET,
]

TX_ORDER_STATUS_CHANGE = "order_status_change"
TX_PAYMENT_STATUS_CHANGE = "payment_status_change"


class Order(db.Model):
    """
    Customer order (aggregate root; line items have no lifecycle of their own).

    Created once by checkout, then mutated only by the status state machine
    and the payment confirmation handlers. Never deleted: it is a financial
    record.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("user_id", "idempotency_key", name="uq_orders_user_idempotency_key"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "order_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # {"full_name", "phone", "address", "city", "district", "ward"}
    delivery_address = db.Column(db.JSON, nullable=False)
    message = db.Column(db.Text, nullable=True)

    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    order_status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)

    # Card: gateway reference issued after checkout commits
    payment_reference = db.Column(db.String(128), nullable=True, index=True)

    # Wallet: customer self-report, evidence only (never flips payment_status)
    user_payment_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    user_payment_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    wallet_transfer_note = db.Column(db.String(255), nullable=True)

    idempotency_key = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    lines = db.relationship(
        "OrderLineItem",
        back_populates="order",
        order_by="OrderLineItem.position",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.order_status}/{self.payment_status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "delivery_address": self.delivery_address,
            "message": self.message,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "order_status": self.order_status,
            "total_amount_cents": self.total_amount_cents,
            "payment_reference": self.payment_reference,
            "user_payment_confirmed": self.user_payment_confirmed,
            "user_payment_confirmed_at": to_utc_z(self.user_payment_confirmed_at),
            "wallet_transfer_note": self.wallet_transfer_note,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class OrderLineItem(db.Model):
    """
    Immutable order line.

    Name/image/price are snapshots so later product edits never rewrite
    history. quantity is exactly what was debited from stock.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Submission order within the checkout request
    position = db.Column(db.Integer, nullable=False, default=0)

    product_name = db.Column(db.String(255), nullable=False)
    product_image = db.Column(db.Text, nullable=True)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    price_before_discount_cents = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "unit_price_cents": self.unit_price_cents,
            "price_before_discount_cents": self.price_before_discount_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }


class OrderTransaction(db.Model):
    """
    Append-only audit trail of order status changes.

    One row per discrete transition (an update touching both statuses writes
    two rows). admin_id is NULL for customer- or system-driven changes.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "order_transactions"
    __table_args__ = (
        db.Index("ix_order_transactions_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    old_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    order = db.relationship("Order", backref=db.backref("transactions", lazy=True))
    admin = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "admin_id": self.admin_id,
            "admin_name": self.admin.name if self.admin else None,
            "admin_email": self.admin.email if self.admin else None,
            "transaction_type": self.transaction_type,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }

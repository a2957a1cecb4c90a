from __future__ import annotations

from ..extensions import db


class Product(db.Model):
    """
    Product master data and on-hand stock.

    STOCK INVARIANT: quantity is never negative. The check constraint backs
    this up; the inventory service only ever changes quantity
    with single conditional UPDATE statements (never read-then-write).

    No version_id_col here: stock moves through bulk UPDATEs that bypass the
    ORM, so optimistic versioning would only produce false conflicts.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.CheckConstraint("sold >= 0", name="ck_products_sold_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image = db.Column(db.String(255), nullable=True)

    # Authoritative storage in cents (minor units)
    price_cents = db.Column(db.Integer, nullable=False)
    price_before_discount_cents = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    sold = db.Column(db.Integer, nullable=False, default=0)
    rating = db.Column(db.Numeric(2, 1), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} quantity={self.quantity}>"


class Cart(db.Model):
    """One cart per user. Owned by the cart API; checkout only prunes it."""
    __tablename__ = "carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("cart", uselist=False, lazy=True))


class CartItem(db.Model):
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cart = db.relationship("Cart", backref=db.backref("items", lazy=True))
    product = db.relationship("Product")

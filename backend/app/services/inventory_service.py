# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/app/services/inventory_service.py

from sqlalchemy import case, select, update

from ..extensions import db
from ..models import Product
"""
Inventory Ledger Invariants (authoritative)

Stock model:
- Product.quantity is the on-hand count; a CHECK constraint keeps it >= 0.
- Stock is shared, contended state. It is changed ONLY by the two statements
  below, each a single atomic UPDATE. Never read quantity and write it back.

Debit:
- "subtract q only if quantity >= q" evaluated and applied by the database in
  one statement. rowcount == 0 means insufficient stock (or unknown product):
  a normal outcome reported as False, never an exception.
- Debits join the caller's transaction. Rolling that transaction back undoes
  every debit made in it, so a failed checkout never leaves stock reserved.

Credit:
- Unconditional increment used to compensate a cancelled order. Restores can
  only raise quantity, so they can never violate the non-negative constraint.

Neither operation commits.
"""


def _require_positive(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError("quantity must be a positive integer")


def debit(product_id: int, quantity: int) -> bool:
    """
    Atomically reserve ``quantity`` units of a product.

    Returns True when the stock was decremented, False when the product had
    fewer than ``quantity`` units (nothing changed in that case).
    """
    _require_positive(quantity)
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.quantity >= quantity)
        .values(
            quantity=Product.quantity - quantity,
            sold=Product.sold + quantity,
            updated_at=db.func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def credit(product_id: int, quantity: int) -> None:
    """Unconditionally restore ``quantity`` units (order cancellation)."""
    _require_positive(quantity)
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(
            quantity=Product.quantity + quantity,
            sold=case((Product.sold >= quantity, Product.sold - quantity), else_=0),
            updated_at=db.func.now(),
        )
        .execution_options(synchronize_session=False)
    )


def get_stock(product_id: int) -> int | None:
    """
    Current on-hand quantity as the database sees it.

    Bypasses the identity map: after a bulk UPDATE a loaded Product instance
    may still hold the old value.
    """
    return db.session.scalar(select(Product.quantity).where(Product.id == product_id))

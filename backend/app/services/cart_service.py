# Overview: Checkout's only touch point with the shopping cart.

from __future__ import annotations

from sqlalchemy import delete, select

from ..extensions import db
from ..models import Cart, CartItem


def delete_cart_items(user_id: int, product_ids: list[int]) -> int:
    """
    Remove the given products from the user's cart.

    Runs in the caller's transaction and does not commit. Returns the number
    of cart lines removed.
    """
    if not product_ids:
        return 0
    cart_ids = select(Cart.id).where(Cart.user_id == user_id)
    result = db.session.execute(
        delete(CartItem)
        .where(CartItem.cart_id.in_(cart_ids), CartItem.product_id.in_(sorted(set(product_ids))))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0

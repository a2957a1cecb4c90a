# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Confirmation Service

WHY: After checkout an order sits at pending/pending. How it becomes paid
depends on the payment method:

- CARD: the gateway is authoritative. We re-query it, require status
  "succeeded" and an amount equal to the order total, and only then move
  payment_status -> paid and order_status -> confirmed. A client-supplied
  reference is never trusted on its own.
- WALLET: the customer self-reports an out-of-band transfer. That is
  evidence for an administrator, not proof of payment, so it sets
  user_payment_confirmed and never touches payment_status.
- COD: nothing to confirm here; an administrator marks it paid on delivery.

DESIGN PRINCIPLES:
- Idempotent: confirming an already-paid order reports the existing state.
- Gateway I/O happens outside any DB transaction.
- Every status change is audited in the same transaction that makes it.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Order
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PENDING,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_WALLET,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
)
from app.time_utils import utcnow
from .concurrency import begin_write_transaction, run_with_retry
from .order_audit_service import set_order_status, set_payment_status
from .order_errors import IllegalTransitionError, PaymentMismatchError, ValidationError
from .order_query_service import load_order
from .payment_gateway import INTENT_STATUS_SUCCEEDED, PaymentIntent, get_payment_gateway

MAX_TRANSFER_NOTE_LENGTH = 255


@dataclass
class ConfirmationResult:
    order: Order
    already_confirmed: bool = False

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "already_confirmed": self.already_confirmed,
        }


def _require_method(order: Order, method: str) -> None:
    if order.payment_method != method:
        raise ValidationError(
            f"Order {order.id} does not use {method} payment",
            details={"payment_method": order.payment_method},
        )


def _require_payable(order: Order) -> None:
    if order.order_status == ORDER_STATUS_CANCELLED:
        raise IllegalTransitionError(
            "Cannot pay for a cancelled order",
            details={"order_status": order.order_status},
        )
    if order.payment_status == PAYMENT_STATUS_FAILED:
        raise IllegalTransitionError(
            "Payment for this order has failed; it cannot be confirmed",
            details={"payment_status": order.payment_status},
        )


# =============================================================================
# CARD
# =============================================================================

def attach_payment_intent(order: Order) -> PaymentIntent:
    """
    Create a gateway payment intent for a committed order and store its
    reference. Called after checkout commit, never inside it.

    First reference stored wins. If another request attached an intent
    while ours was being created, the stored intent is returned and ours is
    left unused.
    """
    intent = get_payment_gateway().create_payment_intent(
        order.total_amount_cents,
        {"order_id": order.id, "user_id": order.user_id},
    )

    order_id = order.id

    def _op():
        begin_write_transaction()
        locked = load_order(order_id, lock=True)
        if locked.payment_reference:
            stored = locked.payment_reference
            db.session.rollback()
            return stored
        locked.payment_reference = intent.reference
        db.session.commit()
        return intent.reference

    stored_reference = run_with_retry(_op)
    if stored_reference != intent.reference:
        current_app.logger.warning(
            "Order %s already has payment intent %s; intent %s left unused",
            order_id, stored_reference, intent.reference,
        )
        return get_payment_gateway().retrieve_payment_status(stored_reference)
    return intent


def initiate_card_payment(order_id: int, user_id: int) -> PaymentIntent:
    """
    (Re)start card payment for a pending order.

    Reuses the stored intent when there is one so a retry never opens a
    second charge for the same order.
    """
    order = load_order(order_id, user_id)
    _require_method(order, PAYMENT_METHOD_CARD)
    _require_payable(order)
    if order.payment_status == PAYMENT_STATUS_PAID:
        raise IllegalTransitionError("Order is already paid")

    reference = order.payment_reference
    # Release the read transaction before network I/O
    db.session.rollback()
    if reference:
        return get_payment_gateway().retrieve_payment_status(reference)
    return attach_payment_intent(order)


def confirm_card_payment(order_id: int, user_id: int, gateway_reference: str) -> ConfirmationResult:
    """
    Confirm a card payment against the gateway's authoritative record.

    Raises:
        ValidationError: missing reference or not a card order
        IllegalTransitionError: order cancelled or payment already failed
        PaymentMismatchError: reference, status or amount disagree; nothing changes
        PaymentGatewayError: gateway unreachable; nothing changes
    """
    if not gateway_reference or not str(gateway_reference).strip():
        raise ValidationError("payment_intent_id required")
    gateway_reference = str(gateway_reference).strip()

    order = load_order(order_id, user_id)
    _require_method(order, PAYMENT_METHOD_CARD)
    if order.payment_status == PAYMENT_STATUS_PAID:
        return ConfirmationResult(order=order, already_confirmed=True)
    _require_payable(order)

    if order.payment_reference and order.payment_reference != gateway_reference:
        raise PaymentMismatchError(
            "Payment reference does not belong to this order",
            details={"order_id": order.id},
        )

    expected_amount = order.total_amount_cents
    stored_reference = order.payment_reference
    db.session.rollback()  # no transaction held across gateway I/O

    intent = get_payment_gateway().retrieve_payment_status(gateway_reference)

    if intent.status != INTENT_STATUS_SUCCEEDED:
        raise PaymentMismatchError(
            "Payment has not succeeded at the gateway",
            details={"gateway_status": intent.status},
        )
    if intent.amount_cents != expected_amount:
        current_app.logger.warning(
            "Card amount mismatch on order %s: gateway=%s order=%s",
            order_id, intent.amount_cents, expected_amount,
        )
        raise PaymentMismatchError(
            "Paid amount does not match the order total",
            details={"gateway_amount": intent.amount_cents, "order_total": expected_amount},
        )
    intent_order_id = intent.metadata.get("order_id")
    if intent_order_id is None:
        # Only a reference this order already holds may omit its order id
        belongs = bool(stored_reference)
    else:
        belongs = str(intent_order_id) == str(order_id)
    if not belongs:
        raise PaymentMismatchError(
            "Payment reference does not belong to this order",
            details={"order_id": order_id},
        )

    def _op():
        begin_write_transaction()
        locked = load_order(order_id, user_id, lock=True)
        # Re-check under lock: a concurrent confirmation may have won
        if locked.payment_status == PAYMENT_STATUS_PAID:
            return ConfirmationResult(order=locked, already_confirmed=True)
        _require_payable(locked)

        notes = f"Card payment {gateway_reference} captured"
        locked.payment_reference = gateway_reference
        set_payment_status(locked, PAYMENT_STATUS_PAID, notes=notes)
        if locked.order_status == ORDER_STATUS_PENDING:
            set_order_status(locked, ORDER_STATUS_CONFIRMED, notes=notes)

        db.session.commit()
        return ConfirmationResult(order=locked)

    return run_with_retry(_op)


# =============================================================================
# WALLET (self-report)
# =============================================================================

def confirm_wallet_transfer(order_id: int, user_id: int, note: str | None = None) -> ConfirmationResult:
    """
    Record the customer's claim that they completed a wallet transfer.

    Sets user_payment_confirmed + timestamp + note. payment_status is left for
    an administrator to change after checking the wallet account.
    """
    if note is not None:
        note = str(note).strip() or None
        if note and len(note) > MAX_TRANSFER_NOTE_LENGTH:
            raise ValidationError(f"transfer_note exceeds {MAX_TRANSFER_NOTE_LENGTH} characters")

    def _op():
        begin_write_transaction()
        order = load_order(order_id, user_id, lock=True)
        _require_method(order, PAYMENT_METHOD_WALLET)
        if order.payment_status == PAYMENT_STATUS_PAID:
            return ConfirmationResult(order=order, already_confirmed=True)
        _require_payable(order)

        order.user_payment_confirmed = True
        order.user_payment_confirmed_at = utcnow()
        order.wallet_transfer_note = note
        db.session.commit()
        return ConfirmationResult(order=order)

    return run_with_retry(_op)

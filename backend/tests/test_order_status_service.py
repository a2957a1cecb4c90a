"""
Order status state machine tests.

Verifies:
- Customer cancel restores stock exactly once
- Admin override audits each changed field separately
- Audit history and transition table behave as documented
"""

import pytest

from app.models import Order, OrderTransaction
from app.models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_SHIPPING,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
    TX_ORDER_STATUS_CHANGE,
    TX_PAYMENT_STATUS_CHANGE,
)
from app.services import checkout_service, inventory_service, order_audit_service, order_status_service
from app.services.order_errors import (
    IllegalTransitionError,
    InsufficientStockError,
    OrderNotFoundError,
    ValidationError,
)
from app.services.order_query_service import get_order_with_history

from conftest import checkout_request, make_product


def _place(customer, lines, method="cod"):
    return checkout_service.place_order(checkout_request(customer, lines, payment_method=method)).order.id


# =============================================================================
# CUSTOMER CANCEL
# =============================================================================


class TestCancelOrder:

    def test_cancel_restores_stock_exactly(self, db_session, customer, product_a, product_b):
        order_id = _place(customer, [(product_a, 3), (product_b, 2)])
        assert inventory_service.get_stock(product_a.id) == 2
        assert inventory_service.get_stock(product_b.id) == 0

        order = order_status_service.cancel_order(order_id, customer.id)

        assert order.order_status == ORDER_STATUS_CANCELLED
        assert inventory_service.get_stock(product_a.id) == 5
        assert inventory_service.get_stock(product_b.id) == 2

    def test_cancel_writes_one_audit_row(self, db_session, customer, product_a):
        order_id = _place(customer, [(product_a, 1)])

        order_status_service.cancel_order(order_id, customer.id)

        rows = db_session.query(OrderTransaction).filter_by(order_id=order_id).all()
        assert len(rows) == 1
        assert rows[0].transaction_type == TX_ORDER_STATUS_CHANGE
        assert (rows[0].old_status, rows[0].new_status) == (ORDER_STATUS_PENDING, ORDER_STATUS_CANCELLED)
        assert rows[0].admin_id is None

    def test_second_cancel_rejected_without_double_credit(self, db_session, customer, product_a):
        order_id = _place(customer, [(product_a, 2)])
        order_status_service.cancel_order(order_id, customer.id)

        with pytest.raises(IllegalTransitionError):
            order_status_service.cancel_order(order_id, customer.id)

        assert inventory_service.get_stock(product_a.id) == 5
        assert db_session.query(OrderTransaction).filter_by(order_id=order_id).count() == 1

    def test_confirmed_order_cannot_be_cancelled_by_customer(self, db_session, customer, admin, product_a):
        order_id = _place(customer, [(product_a, 1)])
        order_status_service.admin_override_status(order_id, admin.id, order_status=ORDER_STATUS_CONFIRMED)

        with pytest.raises(IllegalTransitionError):
            order_status_service.cancel_order(order_id, customer.id)

        assert inventory_service.get_stock(product_a.id) == 4

    def test_cannot_cancel_someone_elses_order(self, db_session, customer, other_customer, product_a):
        order_id = _place(customer, [(product_a, 1)])

        with pytest.raises(OrderNotFoundError):
            order_status_service.cancel_order(order_id, other_customer.id)

        assert db_session.get(Order, order_id).order_status == ORDER_STATUS_PENDING


# =============================================================================
# ADMIN OVERRIDE
# =============================================================================


class TestAdminOverride:

    def test_two_fields_write_two_rows(self, db_session, customer, admin, product_a):
        order_id = _place(customer, [(product_a, 1)])

        order_status_service.admin_override_status(
            order_id,
            admin.id,
            order_status=ORDER_STATUS_CONFIRMED,
            payment_status=PAYMENT_STATUS_PAID,
            notes="Paid at counter",
        )

        rows = db_session.query(OrderTransaction).filter_by(order_id=order_id).all()
        by_type = {row.transaction_type: row for row in rows}
        assert len(rows) == 2
        assert (by_type[TX_ORDER_STATUS_CHANGE].old_status, by_type[TX_ORDER_STATUS_CHANGE].new_status) == (
            ORDER_STATUS_PENDING, ORDER_STATUS_CONFIRMED,
        )
        assert (by_type[TX_PAYMENT_STATUS_CHANGE].old_status, by_type[TX_PAYMENT_STATUS_CHANGE].new_status) == (
            PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PAID,
        )
        assert all(row.admin_id == admin.id and row.notes == "Paid at counter" for row in rows)

    def test_unchanged_field_writes_no_row(self, db_session, customer, admin, product_a):
        order_id = _place(customer, [(product_a, 1)])

        order_status_service.admin_override_status(
            order_id, admin.id, order_status=ORDER_STATUS_PENDING, payment_status=PAYMENT_STATUS_PAID,
        )

        rows = db_session.query(OrderTransaction).filter_by(order_id=order_id).all()
        assert [row.transaction_type for row in rows] == [TX_PAYMENT_STATUS_CHANGE]

    def test_off_table_move_allowed_and_audited(self, db_session, customer, admin, product_a):
        order_id = _place(customer, [(product_a, 1)])
        order_status_service.admin_override_status(order_id, admin.id, order_status=ORDER_STATUS_DELIVERED)

        order = order_status_service.admin_override_status(order_id, admin.id, order_status=ORDER_STATUS_PENDING)

        assert order.order_status == ORDER_STATUS_PENDING
        history = order_audit_service.get_order_history(order_id)
        assert [(row.old_status, row.new_status) for row in history] == [
            (ORDER_STATUS_DELIVERED, ORDER_STATUS_PENDING),
            (ORDER_STATUS_PENDING, ORDER_STATUS_DELIVERED),
        ]

    def test_override_to_cancelled_does_not_restock(self, db_session, customer, admin, product_a):
        order_id = _place(customer, [(product_a, 2)])

        order_status_service.admin_override_status(order_id, admin.id, order_status=ORDER_STATUS_CANCELLED)

        assert inventory_service.get_stock(product_a.id) == 3

    @pytest.mark.parametrize("kwargs", [
        {},
        {"order_status": "lost"},
        {"payment_status": "refunded"},
        {"order_status": ORDER_STATUS_SHIPPING, "notes": "x" * 2001},
    ])
    def test_invalid_requests_rejected(self, db_session, customer, admin, product_a, kwargs):
        order_id = _place(customer, [(product_a, 1)])

        with pytest.raises(ValidationError):
            order_status_service.admin_override_status(order_id, admin.id, **kwargs)

        assert db_session.query(OrderTransaction).count() == 0

    def test_unknown_order(self, db_session, admin):
        with pytest.raises(OrderNotFoundError):
            order_status_service.admin_override_status(12345, admin.id, order_status=ORDER_STATUS_CONFIRMED)

    def test_failed_audit_insert_rolls_back_status(self, db_session, customer, admin, product_a, monkeypatch):
        order_id = _place(customer, [(product_a, 1)])

        def broken_audit(**kwargs):
            raise RuntimeError("audit table unavailable")

        monkeypatch.setattr(order_audit_service, "record_status_change", broken_audit)

        with pytest.raises(RuntimeError):
            order_status_service.admin_override_status(order_id, admin.id, order_status=ORDER_STATUS_CONFIRMED)

        assert db_session.get(Order, order_id).order_status == ORDER_STATUS_PENDING


# =============================================================================
# TRANSITION TABLE + HISTORY
# =============================================================================


class TestTransitionTable:

    @pytest.mark.parametrize("kind,old,new,allowed", [
        (TX_ORDER_STATUS_CHANGE, ORDER_STATUS_PENDING, ORDER_STATUS_CONFIRMED, True),
        (TX_ORDER_STATUS_CHANGE, ORDER_STATUS_PENDING, ORDER_STATUS_CANCELLED, True),
        (TX_ORDER_STATUS_CHANGE, ORDER_STATUS_CONFIRMED, ORDER_STATUS_SHIPPING, True),
        (TX_ORDER_STATUS_CHANGE, ORDER_STATUS_SHIPPING, ORDER_STATUS_DELIVERED, True),
        (TX_ORDER_STATUS_CHANGE, ORDER_STATUS_SHIPPING, ORDER_STATUS_CANCELLED, False),
        (TX_ORDER_STATUS_CHANGE, ORDER_STATUS_DELIVERED, ORDER_STATUS_PENDING, False),
        (TX_ORDER_STATUS_CHANGE, ORDER_STATUS_CANCELLED, ORDER_STATUS_CONFIRMED, False),
        (TX_PAYMENT_STATUS_CHANGE, PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PAID, True),
        (TX_PAYMENT_STATUS_CHANGE, PAYMENT_STATUS_PENDING, PAYMENT_STATUS_FAILED, True),
        (TX_PAYMENT_STATUS_CHANGE, PAYMENT_STATUS_PAID, PAYMENT_STATUS_PENDING, False),
    ])
    def test_can_transition(self, kind, old, new, allowed):
        assert order_status_service.can_transition(kind, old, new) is allowed

    def test_record_rejects_no_change(self, db_session, customer, product_a):
        order = db_session.get(Order, _place(customer, [(product_a, 1)]))
        with pytest.raises(ValueError):
            order_audit_service.record_status_change(
                order=order,
                transaction_type=TX_ORDER_STATUS_CHANGE,
                old_status=ORDER_STATUS_PENDING,
                new_status=ORDER_STATUS_PENDING,
            )

    def test_order_with_history(self, db_session, customer, admin, product_a):
        order_id = _place(customer, [(product_a, 2)])
        order_status_service.admin_override_status(order_id, admin.id, order_status=ORDER_STATUS_CONFIRMED)
        order_status_service.admin_override_status(order_id, admin.id, order_status=ORDER_STATUS_SHIPPING)

        order, lines, transactions = get_order_with_history(order_id)

        assert order.id == order_id
        assert [(line.product_id, line.quantity) for line in lines] == [(product_a.id, 2)]
        assert [tx.new_status for tx in transactions] == [ORDER_STATUS_SHIPPING, ORDER_STATUS_CONFIRMED]
        assert transactions[0].to_dict()["admin_email"] == "admin@shop.test"


# =============================================================================
# END-TO-END SCENARIO
# =============================================================================


class TestLastUnitScenario:

    def test_last_unit_then_admin_confirm_then_cancel_rejected(self, db_session, customer, other_customer, admin):
        product = make_product(db_session, "Product P", 75_000, 1)

        order_a = checkout_service.place_order(checkout_request(customer, [(product, 1)])).order
        order_a_id = order_a.id
        assert inventory_service.get_stock(product.id) == 0
        assert (order_a.order_status, order_a.payment_status) == (ORDER_STATUS_PENDING, PAYMENT_STATUS_PENDING)

        with pytest.raises(InsufficientStockError):
            checkout_service.place_order(checkout_request(other_customer, [(product, 1)]))
        assert db_session.query(Order).filter_by(user_id=other_customer.id).count() == 0

        order_status_service.admin_override_status(order_a_id, admin.id, order_status=ORDER_STATUS_CONFIRMED)
        rows = db_session.query(OrderTransaction).filter_by(order_id=order_a_id).all()
        assert [(r.transaction_type, r.old_status, r.new_status) for r in rows] == [
            (TX_ORDER_STATUS_CHANGE, ORDER_STATUS_PENDING, ORDER_STATUS_CONFIRMED),
        ]

        with pytest.raises(IllegalTransitionError):
            order_status_service.cancel_order(order_a_id, customer.id)
        assert inventory_service.get_stock(product.id) == 0

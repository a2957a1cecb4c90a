"""
Concurrency tests against a real file-backed SQLite database.

Each worker thread runs in its own app context (own session, own
connection), the way concurrent requests do.
"""

import os
import tempfile
import threading
import unittest

from sqlalchemy.exc import OperationalError

from app import create_app
from app.extensions import db
from app.models import Order, OrderLineItem, Product, User
from app.services import checkout_service, inventory_service, order_status_service
from app.services.concurrency import run_with_retry
from app.services.order_builder import CheckoutRequest
from app.services.order_errors import InsufficientStockError


ADDRESS = {"full_name": "Load Test", "phone": "0900000000", "address": "1 Test St"}


class ConcurrentCheckoutTests(unittest.TestCase):
    STOCK = 5
    BUYERS = 12

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "CHECKOUT_RETRY_ATTEMPTS": 10,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            self.user_ids = []
            for i in range(self.BUYERS):
                user = User(email=f"buyer{i}@shop.test", name=f"Buyer {i}", password_hash="dummy", is_active=True)
                db.session.add(user)
                db.session.flush()
                self.user_ids.append(user.id)

            product = Product(name="Hot Item", price_cents=10_000, quantity=self.STOCK, sold=0)
            other = Product(name="Side Item", price_cents=5_000, quantity=100, sold=0)
            db.session.add_all([product, other])
            db.session.commit()
            self.product_id = product.id
            self.other_id = other.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _request(self, user_id, lines):
        total = sum(price * quantity for _product_id, quantity, price in lines)
        return CheckoutRequest(
            user_id=user_id,
            items=[
                {"product_id": product_id, "quantity": quantity, "price": price}
                for product_id, quantity, price in lines
            ],
            delivery_address=dict(ADDRESS),
            payment_method="cod",
            declared_total=total,
        )

    def _run_workers(self, requests):
        successes = []
        out_of_stock = []
        errors = []
        lock = threading.Lock()
        start = threading.Barrier(len(requests))

        def worker(request):
            with self.app.app_context():
                try:
                    start.wait()
                    result = checkout_service.place_order(request)
                    with lock:
                        successes.append(result.order.id)
                except InsufficientStockError:
                    with lock:
                        out_of_stock.append(request.user_id)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(request,)) for request in requests]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return successes, out_of_stock, errors

    def test_no_overselling(self):
        requests = [self._request(user_id, [(self.product_id, 1, 10_000)]) for user_id in self.user_ids]

        successes, out_of_stock, errors = self._run_workers(requests)

        self.assertEqual(errors, [])
        self.assertEqual(len(successes), self.STOCK)
        self.assertEqual(len(out_of_stock), self.BUYERS - self.STOCK)
        with self.app.app_context():
            self.assertEqual(inventory_service.get_stock(self.product_id), 0)
            self.assertEqual(db.session.get(Product, self.product_id).sold, self.STOCK)
            self.assertEqual(db.session.query(Order).count(), self.STOCK)
            self.assertEqual(db.session.query(OrderLineItem).count(), self.STOCK)

    def test_multi_item_checkouts_in_opposite_order(self):
        # Half submit (hot, side), half (side, hot); debit order is by product id
        requests = []
        for i, user_id in enumerate(self.user_ids):
            lines = [(self.product_id, 1, 10_000), (self.other_id, 1, 5_000)]
            if i % 2:
                lines.reverse()
            requests.append(self._request(user_id, lines))

        successes, out_of_stock, errors = self._run_workers(requests)

        self.assertEqual(errors, [])
        self.assertEqual(len(successes), self.STOCK)
        with self.app.app_context():
            self.assertEqual(inventory_service.get_stock(self.product_id), 0)
            # Losers rolled back their side-item debit too
            self.assertEqual(inventory_service.get_stock(self.other_id), 100 - self.STOCK)

    def test_concurrent_cancels_credit_once(self):
        with self.app.app_context():
            order_id = checkout_service.place_order(
                self._request(self.user_ids[0], [(self.product_id, 2, 10_000)])
            ).order.id

        outcomes = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    order_status_service.cancel_order(order_id, self.user_ids[0])
                    with lock:
                        outcomes.append("cancelled")
                except Exception as exc:
                    with lock:
                        outcomes.append(type(exc).__name__)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(outcomes.count("cancelled"), 1)
        self.assertEqual(outcomes.count("IllegalTransitionError"), 3)
        with self.app.app_context():
            self.assertEqual(inventory_service.get_stock(self.product_id), self.STOCK)


class RunWithRetryTests(unittest.TestCase):
    def setUp(self):
        self.app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"})
        self.ctx = self.app.app_context()
        self.ctx.push()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def test_retries_operational_error(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
            return "done"

        self.assertEqual(run_with_retry(flaky, attempts=3, backoff_base=0), "done")
        self.assertEqual(len(calls), 3)

    def test_gives_up_after_attempts(self):
        def locked():
            raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))

        with self.assertRaises(OperationalError):
            run_with_retry(locked, attempts=2, backoff_base=0)

    def test_other_errors_not_retried(self):
        calls = []

        def broken():
            calls.append(1)
            raise ValueError("bad")

        with self.assertRaises(ValueError):
            run_with_retry(broken, attempts=3, backoff_base=0)
        self.assertEqual(len(calls), 1)

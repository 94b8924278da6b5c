"""Tests for the checkout transaction."""

import threading
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from errors import PaymentDeclinedError, PersistenceError, ValidationError
from models import Order, OrderItem, Product
from orders import OrderService
from payments import ApproveAllPaymentPolicy, PaymentPolicy, RandomDeclinePaymentPolicy
from schemas import BillingInfo, CartItemIn


def count_rows(db, model):
    with db.session() as session:
        return session.scalar(select(func.count()).select_from(model))


class TestCheckoutEndpoint:
    def test_two_shirts_example(self, client, make_product, stock_of, billing):
        product_id = make_product(price="9.99", stock=5)

        resp = client.post("/api/checkout", json={
            "cart": [{"productId": product_id, "quantity": 2, "price": 9.99}],
            "billing": billing,
        })

        assert resp.status_code == 201
        body = resp.json()
        assert body["totalAmount"] == 19.98
        assert body["status"] == "completed"
        assert body["transactionId"].startswith("TXN_")
        assert body["redirectUrl"] == f"/thank-you?order={body['orderId']}"
        assert body["items"] == [{
            "productId": product_id,
            "productName": "Plain Shirt",
            "quantity": 2,
            "unitPrice": 9.99,
            "totalPrice": 19.98,
        }]
        assert stock_of(product_id) == 3

    def test_stored_total_matches_line_items(self, client, db, make_product, billing):
        a = make_product(name="Socks", price="4.25", stock=10)
        b = make_product(name="Hat", price="17.10", stock=10)

        resp = client.post("/api/checkout", json={
            "cart": [{"productId": a, "quantity": 3}, {"productId": b, "quantity": 1}],
            "billing": billing,
        })
        assert resp.status_code == 201
        order_id = resp.json()["orderId"]

        with db.session() as session:
            order = session.get(Order, order_id)
            items = session.scalars(select(OrderItem).where(OrderItem.order_id == order_id)).all()
            assert order.total_amount == Decimal("29.85")
            assert sum(i.unit_price * i.quantity for i in items) == order.total_amount
            assert sum(i.total_price for i in items) == order.total_amount

    def test_transaction_id_is_persisted(self, client, db, make_product, billing):
        product_id = make_product()
        body = client.post("/api/checkout", json={
            "cart": [{"productId": product_id, "quantity": 1}], "billing": billing,
        }).json()

        with db.session() as session:
            assert session.get(Order, body["orderId"]).transaction_id == body["transactionId"]

    def test_client_price_is_ignored(self, client, make_product, billing):
        product_id = make_product(price="50.00", stock=5)

        resp = client.post("/api/checkout", json={
            "cart": [{"productId": product_id, "quantity": 1, "price": 0.01}], "billing": billing,
        })

        assert resp.status_code == 201
        assert resp.json()["totalAmount"] == 50.0

    def test_insufficient_stock_changes_nothing(self, client, db, make_product, stock_of, billing):
        ok = make_product(name="Plenty", stock=10)
        scarce = make_product(name="Scarce", stock=1)

        resp = client.post("/api/checkout", json={
            "cart": [{"productId": ok, "quantity": 2}, {"productId": scarce, "quantity": 2}],
            "billing": billing,
        })

        assert resp.status_code == 400
        assert "Insufficient stock for product Scarce" in resp.json()["error"]
        assert count_rows(db, Order) == 0
        assert count_rows(db, OrderItem) == 0
        assert stock_of(ok) == 10
        assert stock_of(scarce) == 1

    def test_repeated_lines_are_checked_together(self, client, make_product, stock_of, billing):
        product_id = make_product(stock=3)

        resp = client.post("/api/checkout", json={
            "cart": [{"productId": product_id, "quantity": 2}, {"productId": product_id, "quantity": 2}],
            "billing": billing,
        })

        assert resp.status_code == 400
        assert stock_of(product_id) == 3

    def test_unknown_product(self, client, make_product, billing):
        make_product()
        resp = client.post("/api/checkout", json={
            "cart": [{"productId": 999, "quantity": 1}], "billing": billing,
        })
        assert resp.status_code == 400
        assert resp.json()["error"] == "Product with ID 999 not found"

    def test_oversized_product_id_is_unknown(self, client, make_product, billing):
        make_product()
        resp = client.post("/api/checkout", json={
            "cart": [{"productId": 99999999999999999999, "quantity": 1}], "billing": billing,
        })
        assert resp.status_code == 400
        assert resp.json()["error"] == "Product with ID 99999999999999999999 not found"

    def test_oversized_quantity_is_rejected(self, client, make_product, stock_of, billing):
        product_id = make_product(stock=5)
        resp = client.post("/api/checkout", json={
            "cart": [{"productId": product_id, "quantity": 99999999999999999999}], "billing": billing,
        })
        assert resp.status_code == 400
        assert stock_of(product_id) == 5

    @pytest.mark.parametrize("cart", [
        [],
        [{"productId": 1, "quantity": 0}],
        [{"productId": 1, "quantity": -3}],
        [{"quantity": 1}],
    ])
    def test_invalid_cart(self, client, make_product, billing, cart):
        make_product()
        resp = client.post("/api/checkout", json={"cart": cart, "billing": billing})
        assert resp.status_code == 400

    @pytest.mark.parametrize("billing", [
        None,
        {"name": "", "email": "ada@example.com"},
        {"name": "Ada"},
        {"name": "Ada", "email": "not-an-email"},
    ])
    def test_invalid_billing(self, client, make_product, billing):
        product_id = make_product()
        resp = client.post("/api/checkout", json={
            "cart": [{"productId": product_id, "quantity": 1}], "billing": billing,
        })
        assert resp.status_code == 400

    def test_payment_declined_over_limit(self, client, db, make_product, stock_of, billing):
        product_id = make_product(price="500.00", stock=5)

        resp = client.post("/api/checkout", json={
            "cart": [{"productId": product_id, "quantity": 2}], "billing": billing,
        })

        assert resp.status_code == 402
        assert resp.json()["code"] == "PAYMENT_DECLINED"
        assert count_rows(db, Order) == 0
        assert stock_of(product_id) == 5

    def test_order_linked_to_authenticated_user(self, client, db, make_product, billing, user_headers):
        product_id = make_product()
        resp = client.post(
            "/api/checkout",
            json={"cart": [{"productId": product_id, "quantity": 1}], "billing": billing},
            headers=user_headers,
        )
        assert resp.status_code == 201

        with db.session() as session:
            assert session.get(Order, resp.json()["orderId"]).user_id is not None


class StockThief(PaymentPolicy):
    """Approves the payment after another buyer empties the shelf."""

    def __init__(self, db, product_id):
        self.db = db
        self.product_id = product_id

    def authorize(self, amount):
        with self.db.transaction() as session:
            session.execute(update(Product).where(Product.id == self.product_id).values(stock_quantity=0))
        return True


class TestCheckoutService:
    def test_stock_is_rechecked_inside_transaction(self, db, make_product, stock_of):
        product_id = make_product(stock=2)
        service = OrderService(db, StockThief(db, product_id))

        with pytest.raises(ValidationError):
            service.checkout(
                [CartItemIn(productId=product_id, quantity=1)],
                BillingInfo(name="Ada", email="ada@example.com"),
            )

        assert count_rows(db, Order) == 0
        assert count_rows(db, OrderItem) == 0
        assert stock_of(product_id) == 0

    def test_random_policy_declines(self, db, make_product):
        product_id = make_product()
        service = OrderService(db, RandomDeclinePaymentPolicy(rate=1.0))

        with pytest.raises(PaymentDeclinedError):
            service.checkout(
                [CartItemIn(productId=product_id, quantity=1)],
                BillingInfo(name="Ada", email="ada@example.com"),
            )

    def test_concurrent_checkouts_do_not_oversell(self, db, make_product, stock_of):
        product_id = make_product(stock=1)
        service = OrderService(db, ApproveAllPaymentPolicy())
        barrier = threading.Barrier(2)
        successes, failures = [], []

        def buy():
            barrier.wait()
            try:
                successes.append(service.checkout(
                    [CartItemIn(productId=product_id, quantity=1)],
                    BillingInfo(name="Racer", email="racer@example.com"),
                ))
            except (ValidationError, PersistenceError) as exc:
                failures.append(exc)

        threads = [threading.Thread(target=buy) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(successes) == 1
        assert len(failures) == 1
        assert stock_of(product_id) == 0
        assert count_rows(db, Order) == 1

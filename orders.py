"""
Checkout and order management.

``checkout`` is the completed-purchase path: it validates the cart against the
catalog, prices every line from the store, runs the payment policy and then
writes the order, its items and the stock decrements in one transaction.
``create_order`` is the lighter pending path used by the storefront checkout
form; it never touches stock.
"""
import logging
import re
from collections import OrderedDict
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import selectinload

from catalog import to_money
from database import Database
from errors import NotFoundError, PaymentDeclinedError, ValidationError
from models import INT_MAX, ORDER_STATUSES, Order, OrderItem, Product, is_row_id, utcnow
from payments import PaymentPolicy, generate_transaction_id
from schemas import BillingInfo, CartItemIn, OrderItemIn, PaymentSummary, ShippingInfo

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CARD_LAST4_RE = re.compile(r"^\d{4}$")


def _iso(value):
    return value.isoformat() if value else None


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "total_amount": float(order.total_amount),
        "status": order.status,
        "billing_name": order.billing_name,
        "billing_email": order.billing_email,
        "billing_address": order.billing_address,
        "transaction_id": order.transaction_id,
        "card_last4": order.card_last4,
        "card_brand": order.card_brand,
        "created_at": _iso(order.created_at),
    }


def order_item_to_dict(item: OrderItem) -> dict:
    return {
        "id": item.id,
        "product_id": item.product_id,
        "product_name": item.product.name if item.product is not None else None,
        "quantity": item.quantity,
        "unit_price": float(item.unit_price),
        "total_price": float(item.total_price),
    }


class OrderService:
    def __init__(self, db: Database, payment_policy: PaymentPolicy):
        self.db = db
        self.payment_policy = payment_policy

    # Validation helpers
    @staticmethod
    def _requested_quantities(items: Iterable) -> "OrderedDict[int, int]":
        """Sum requested quantities per product id, rejecting malformed lines."""
        requested = OrderedDict()
        for item in items:
            if not item.product_id or item.quantity is None or not 0 < item.quantity <= INT_MAX:
                raise ValidationError("Invalid cart item format")
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
        return requested

    @staticmethod
    def _load_products(session, product_ids) -> dict:
        # ids outside the column range cannot exist and would overflow the driver
        lookup = [product_id for product_id in product_ids if is_row_id(product_id)]
        rows = session.scalars(select(Product).where(Product.id.in_(lookup))).all()
        products = {p.id: p for p in rows}
        for product_id in product_ids:
            if product_id not in products:
                raise ValidationError(f"Product with ID {product_id} not found")
        return products

    @staticmethod
    def _price_lines(items, products) -> List[dict]:
        lines = []
        for item in items:
            product = products[item.product_id]
            unit_price = to_money(product.price)
            lines.append({
                "productId": product.id,
                "productName": product.name,
                "quantity": item.quantity,
                "unitPrice": unit_price,
                "totalPrice": unit_price * item.quantity,
            })
        return lines

    # Completed checkout
    def checkout(self, cart: Optional[List[CartItemIn]], billing: Optional[BillingInfo],
                 user_id: Optional[int] = None) -> dict:
        if not cart:
            raise ValidationError("Cart is required and must contain at least one item")
        requested = self._requested_quantities(cart)

        if billing is None or not billing.name or not billing.email:
            raise ValidationError("Billing information (name and email) is required")
        if not EMAIL_RE.match(billing.email):
            raise ValidationError("Invalid email format")

        with self.db.session() as session:
            products = self._load_products(session, requested)
        for product_id, quantity in requested.items():
            product = products[product_id]
            if product.stock_quantity < quantity:
                raise ValidationError(
                    f"Insufficient stock for product {product.name}. "
                    f"Available: {product.stock_quantity}, Requested: {quantity}"
                )

        lines = self._price_lines(cart, products)
        total_amount = sum((line["totalPrice"] for line in lines), Decimal("0.00"))

        if not self.payment_policy.authorize(total_amount):
            logger.info("Payment declined (total %s)", total_amount)
            raise PaymentDeclinedError()

        transaction_id = generate_transaction_id()
        with self.db.transaction() as session:
            order = Order(
                user_id=user_id,
                total_amount=total_amount,
                status="completed",
                billing_name=billing.name,
                billing_email=billing.email,
                billing_address=billing.address or "",
                transaction_id=transaction_id,
            )
            session.add(order)
            session.flush()

            for line in lines:
                session.add(OrderItem(
                    order_id=order.id,
                    product_id=line["productId"],
                    quantity=line["quantity"],
                    unit_price=line["unitPrice"],
                    total_price=line["totalPrice"],
                ))
                # re-check stock at write time; a concurrent checkout may have won the race
                result = session.execute(
                    update(Product)
                    .where(Product.id == line["productId"], Product.stock_quantity >= line["quantity"])
                    .values(stock_quantity=Product.stock_quantity - line["quantity"], updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise ValidationError(f"Insufficient stock for product {line['productName']}")
            order_id = order.id

        logger.info("Order %s completed (transaction %s, total %s)", order_id, transaction_id, total_amount)
        return {
            "message": "Order processed successfully",
            "orderId": order_id,
            "totalAmount": float(total_amount),
            "transactionId": transaction_id,
            "items": [
                {
                    "productId": line["productId"],
                    "productName": line["productName"],
                    "quantity": line["quantity"],
                    "unitPrice": float(line["unitPrice"]),
                    "totalPrice": float(line["totalPrice"]),
                }
                for line in lines
            ],
            "billing": {"name": billing.name, "email": billing.email, "address": billing.address or ""},
            "status": "completed",
            "redirectUrl": f"/thank-you?order={order_id}",
        }

    # Pending orders
    def create_order(self, items: Optional[List[OrderItemIn]], shipping_info: Optional[ShippingInfo],
                     payment_summary: Optional[PaymentSummary] = None, user_id: Optional[int] = None) -> dict:
        if not items:
            raise ValidationError("Order must contain at least one item")
        requested = self._requested_quantities(items)

        shipping = shipping_info or ShippingInfo()
        billing_name = f"{shipping.first_name} {shipping.last_name}".strip()
        if not billing_name or not shipping.email:
            raise ValidationError("Shipping name and email are required")
        if not EMAIL_RE.match(shipping.email):
            raise ValidationError("Invalid email format")
        locality = " ".join(part for part in (shipping.state, shipping.zip_code) if part)
        billing_address = ", ".join(
            part for part in (shipping.address, shipping.city, locality, shipping.country) if part
        )

        card_last4 = card_brand = None
        if payment_summary is not None:
            card_last4 = payment_summary.card_last4
            card_brand = payment_summary.card_type
            if card_last4 is not None and not CARD_LAST4_RE.match(card_last4):
                raise ValidationError("cardLast4 must be exactly four digits")

        with self.db.transaction() as session:
            products = self._load_products(session, requested)
            lines = self._price_lines(items, products)
            total_amount = sum((line["totalPrice"] for line in lines), Decimal("0.00"))

            order = Order(
                user_id=user_id,
                total_amount=total_amount,
                status="pending",
                billing_name=billing_name,
                billing_email=shipping.email,
                billing_address=billing_address,
                card_last4=card_last4,
                card_brand=card_brand,
            )
            session.add(order)
            session.flush()
            for line in lines:
                session.add(OrderItem(
                    order_id=order.id,
                    product_id=line["productId"],
                    quantity=line["quantity"],
                    unit_price=line["unitPrice"],
                    total_price=line["totalPrice"],
                ))
            order_id, created_at = order.id, order.created_at

        logger.info("Pending order %s created", order_id)
        return {
            "orderId": order_id,
            "status": "pending",
            "totalAmount": float(total_amount),
            "createdAt": _iso(created_at),
        }

    # Maintenance
    @staticmethod
    def _check_status(status: Optional[str]) -> str:
        if status not in ORDER_STATUSES:
            raise ValidationError("Invalid status")
        return status

    def search_orders(self, status: Optional[str]) -> List[dict]:
        status = self._check_status(status)
        with self.db.session() as session:
            orders = session.scalars(
                select(Order).where(Order.status == status).order_by(Order.created_at.desc(), Order.id.desc())
            ).all()
            return [order_to_dict(o) for o in orders]

    def list_orders(self) -> List[dict]:
        stmt = (
            select(Order, func.count(OrderItem.id))
            .outerjoin(OrderItem, OrderItem.order_id == Order.id)
            .group_by(Order.id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        with self.db.session() as session:
            rows = session.execute(stmt).all()
        result = []
        for order, item_count in rows:
            data = order_to_dict(order)
            data["item_count"] = item_count
            result.append(data)
        return result

    def get_order(self, order_id: int) -> dict:
        if not is_row_id(order_id):
            raise NotFoundError("Order not found")
        with self.db.session() as session:
            order = session.scalar(
                select(Order)
                .where(Order.id == order_id)
                .options(selectinload(Order.items).selectinload(OrderItem.product))
            )
            if order is None:
                raise NotFoundError("Order not found")
            data = order_to_dict(order)
            data["items"] = [order_item_to_dict(item) for item in order.items]
        return data

    def update_status(self, order_id: int, status: Optional[str]) -> dict:
        status = self._check_status(status)
        if not is_row_id(order_id):
            raise NotFoundError("Order not found")
        with self.db.transaction() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order not found")
            order.status = status
            session.flush()
            data = order_to_dict(order)
        logger.info("Order %s status set to %s", order_id, status)
        return data

    def delete_order(self, order_id: int) -> dict:
        if not is_row_id(order_id):
            raise NotFoundError("Order not found")
        with self.db.transaction() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order not found")
            data = order_to_dict(order)
            session.delete(order)
        logger.info("Order %s deleted", order_id)
        return {"message": "Order deleted successfully", "deletedOrder": data}

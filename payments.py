"""Order creation, Stripe checkout and payment confirmation.

An order starts unpaid and becomes paid exactly once. Confirmation is polled
by the client after the checkout redirect (there is no webhook), so it must be
safe to repeat: a payment intent that is already recorded on an order returns
the stored transaction and tracking ids without another write.
"""

import logging
import random
import string
from datetime import datetime, timezone
from typing import Any, Optional

import stripe
from pymongo.database import Database

from config import SITE_DOMAIN, STRIPE_SECRET_KEY
from database import ORDERS, create_document, get_document_by_id, parse_object_id

logger = logging.getLogger(__name__)

stripe.api_key = STRIPE_SECRET_KEY

CURRENCY = "usd"
TRACKING_SUFFIX_CHARS = string.ascii_uppercase + string.digits


class OrderNotFound(Exception):
    pass


class OrderAlreadyPaid(Exception):
    pass


class PaymentProcessingError(Exception):
    """The payment could not be confirmed against the processor."""


def generate_tracking_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    suffix = "".join(random.choices(TRACKING_SUFFIX_CHARS, k=6))
    return f"MEAL-{now:%Y%m%d}-{suffix}"


def to_minor_units(total_price: float) -> int:
    # whole currency units only; cents are truncated before conversion
    return int(total_price) * 100


class OrderPaymentEngine:
    def __init__(self, db: Database, checkout: Any = None):
        self.db = db
        self.checkout = checkout or stripe.checkout.Session

    def create_order(self, user_email: str, payload: dict) -> dict:
        order = dict(payload)
        if order.get("totalPrice") is None:
            order["totalPrice"] = order["price"] * order.get("quantity", 1)
        order.update(userEmail=user_email, orderStatus="pending", paymentStatus="unpaid")
        order_id = create_document(self.db, ORDERS, order)
        return {"_id": order_id, "totalPrice": order["totalPrice"], "paymentStatus": "unpaid"}

    def create_checkout_session(self, order_id: str, meal_name: str, total_price: float, customer_email: str) -> str:
        """Open a Stripe checkout session for an unpaid order and return its URL."""
        order = get_document_by_id(self.db, ORDERS, order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if order.get("userEmail") != customer_email:
            raise PermissionError("Order belongs to another customer")
        if order.get("paymentStatus") == "paid":
            raise OrderAlreadyPaid(f"Order {order_id} is already paid")

        try:
            session = self.checkout.create(
                line_items=[
                    {
                        "price_data": {
                            "currency": CURRENCY,
                            "unit_amount": to_minor_units(total_price),
                            "product_data": {"name": meal_name},
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                customer_email=customer_email,
                metadata={"orderId": order_id},
                success_url=f"{SITE_DOMAIN}/dashboard/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{SITE_DOMAIN}/dashboard/payment-cancelled",
            )
        except stripe.StripeError as e:
            raise PaymentProcessingError("Could not create checkout session") from e
        return session["url"]

    def confirm_payment(self, session_id: str) -> dict:
        """Mark the order behind a completed checkout session as paid."""
        try:
            session = self.checkout.retrieve(session_id)
        except stripe.StripeError as e:
            raise PaymentProcessingError("Could not retrieve checkout session") from e

        transaction_id = session["payment_intent"]
        if session["payment_status"] != "paid" or not transaction_id:
            raise PaymentProcessingError("Payment has not been completed")

        orders = self.db[ORDERS]
        existing = orders.find_one({"transactionId": transaction_id})
        if existing:
            return {"transactionId": existing["transactionId"], "trackingId": existing["trackingId"]}

        try:
            order_id = session["metadata"]["orderId"]
        except KeyError:
            raise PaymentProcessingError("Checkout session carries no order reference")
        order = orders.find_one({"_id": parse_object_id(order_id)})
        if order is None:
            raise PaymentProcessingError(f"Order {order_id} not found")
        if order.get("paymentStatus") == "paid":
            return {"transactionId": order["transactionId"], "trackingId": order["trackingId"]}

        tracking_id = generate_tracking_id()
        now = datetime.now(timezone.utc)
        orders.update_one(
            {"_id": order["_id"]},
            {
                "$set": {
                    "paymentStatus": "paid",
                    "transactionId": transaction_id,
                    "trackingId": tracking_id,
                    "paidAt": now,
                    "updatedAt": now,
                }
            },
        )
        logger.info(f"Order {order_id} paid with {transaction_id}, tracking {tracking_id}")
        return {"transactionId": transaction_id, "trackingId": tracking_id}

    def update_order_status(self, order_id: str, order_status: str, chef_id: str) -> int:
        order = get_document_by_id(self.db, ORDERS, order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if order.get("chefId") != chef_id:
            raise PermissionError("Order belongs to another chef")
        if order_status == "delivered" and order.get("paymentStatus") != "paid":
            raise ValueError("Only paid orders can be delivered")
        result = self.db[ORDERS].update_one(
            {"_id": parse_object_id(order_id)},
            {"$set": {"orderStatus": order_status, "updatedAt": datetime.now(timezone.utc)}},
        )
        return result.modified_count

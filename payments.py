"""
Midtrans Snap integration.

Wraps the `midtransclient` Snap API: building transaction parameters,
requesting a Snap token, normalising webhook notifications, verifying their
signature and translating gateway transaction statuses into order/payment
statuses.
"""
import hashlib
import hmac
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import midtransclient
from midtransclient.error_midtrans import JSONDecodeError, MidtransAPIError

logger = logging.getLogger("omahring.payments")

MIDTRANS_SERVER_KEY = os.getenv("MIDTRANS_SERVER_KEY", "")
MIDTRANS_CLIENT_KEY = os.getenv("MIDTRANS_CLIENT_KEY", "")
MIDTRANS_IS_PRODUCTION = os.getenv("MIDTRANS_IS_PRODUCTION", "false").lower() == "true"
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Snap tokens and the payment page they open stay valid for two hours.
SNAP_EXPIRY_MINUTES = 120
SNAP_TOKEN_TTL = timedelta(minutes=SNAP_EXPIRY_MINUTES)

ENABLED_PAYMENTS = ["credit_card", "gopay", "qris", "shopeepay", "echannel", "bank_transfer"]

snap = midtransclient.Snap(
    is_production=MIDTRANS_IS_PRODUCTION,
    server_key=MIDTRANS_SERVER_KEY,
    client_key=MIDTRANS_CLIENT_KEY,
)


class PaymentGatewayError(Exception):
    """The Snap API could not be reached or rejected the request."""


def gateway_order_id(order_id: str, attempt: int = 0) -> str:
    # Midtrans refuses a transaction_details.order_id it has seen before.
    if attempt <= 0:
        return order_id
    return f"{order_id}-{attempt}"


def build_transaction_params(order: Dict[str, Any], midtrans_order_id: str) -> Dict[str, Any]:
    return {
        "transaction_details": {
            "order_id": midtrans_order_id,
            "gross_amount": int(order["total_amount"]),
        },
        "item_details": [
            {
                "id": item["product_id"],
                "price": int(item["price"]),
                "quantity": int(item["quantity"]),
                "name": f"{item['title']} - {item['variant_name']}"[:50],
            }
            for item in order["cart_items"]
        ],
        "customer_details": {
            "first_name": order["customer_name"],
            "email": order["email"],
            "phone": order["address_info"]["phone"],
        },
        "enabled_payments": ENABLED_PAYMENTS,
        "credit_card": {"secure": True},
        "callbacks": {
            "finish": f"{FRONTEND_URL}/shop/payment-success",
            "error": f"{FRONTEND_URL}/shop/checkout",
            "pending": f"{FRONTEND_URL}/shop/payment-pending",
        },
        "expiry": {"unit": "minutes", "duration": SNAP_EXPIRY_MINUTES},
    }


def create_snap_transaction(order: Dict[str, Any], midtrans_order_id: str) -> Dict[str, str]:
    """Ask Snap for a payment token; returns {"token", "redirect_url"}."""
    params = build_transaction_params(order, midtrans_order_id)
    try:
        transaction = snap.create_transaction(params)
    except (MidtransAPIError, JSONDecodeError, OSError) as exc:
        logger.error("Snap transaction failed for %s: %s", midtrans_order_id, exc)
        raise PaymentGatewayError(str(exc)) from exc
    if not transaction or not transaction.get("token"):
        raise PaymentGatewayError("Snap did not return a token")
    return {"token": transaction["token"], "redirect_url": transaction.get("redirect_url")}


def fetch_notification_status(body: Dict[str, Any]) -> Dict[str, Any]:
    """Re-read the transaction from the Midtrans status API using the notification body."""
    try:
        return snap.transactions.notification(body)
    except (MidtransAPIError, JSONDecodeError, OSError) as exc:
        logger.error("Midtrans status lookup failed for %s: %s", body.get("order_id"), exc)
        raise PaymentGatewayError(str(exc)) from exc


def signature_for(order_id: str, status_code: str, gross_amount: str, server_key: Optional[str] = None) -> str:
    key = MIDTRANS_SERVER_KEY if server_key is None else server_key
    raw = f"{order_id}{status_code}{gross_amount}{key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature(notification: Dict[str, Any]) -> bool:
    expected = signature_for(
        str(notification.get("order_id", "")),
        str(notification.get("status_code", "")),
        str(notification.get("gross_amount", "")),
    )
    return hmac.compare_digest(expected, str(notification.get("signature_key", "")))


def map_transaction_status(transaction_status: Optional[str], fraud_status: Optional[str] = None) -> Tuple[str, str]:
    """Translate a Midtrans transaction status into (payment_status, order_status).

    A ("paid", "confirmed") result means the order should be fulfilled.
    """
    if transaction_status == "capture":
        if fraud_status == "challenge":
            return "pending", "challenge"
        return "paid", "confirmed"
    if transaction_status == "settlement":
        return "paid", "confirmed"
    if transaction_status in ("cancel", "deny"):
        return "failed", "cancelled"
    if transaction_status == "expire":
        return "failed", "expired"
    if transaction_status == "pending":
        return "pending", "pending"
    if transaction_status in ("refund", "partial_refund"):
        return "refund", "needs_review"
    if transaction_status in ("chargeback", "partial_chargeback"):
        return "chargeback", "needs_review"
    return "pending", "needs_review"


def _aware(moment: datetime) -> datetime:
    # pymongo hands back naive datetimes that are UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def token_expires_at(issued_at: datetime) -> datetime:
    return _aware(issued_at) + SNAP_TOKEN_TTL


def token_remaining_minutes(issued_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    if issued_at is None:
        return 0
    now = now or datetime.now(timezone.utc)
    remaining = token_expires_at(issued_at) - _aware(now)
    return max(0, int(remaining.total_seconds() // 60))


def is_token_fresh(issued_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if issued_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return _aware(now) < token_expires_at(issued_at)

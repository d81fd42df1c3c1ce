"""
Unit tests for the Midtrans helpers.
"""
from datetime import datetime, timedelta, timezone

import pytest
from midtransclient.error_midtrans import JSONDecodeError

import payments


ORDER = {
    "total_amount": 40000,
    "customer_name": "Budi",
    "email": "budi@example.com",
    "address_info": {"address": "Jl. Kenari 1", "city": "Yogyakarta", "phone": "08123"},
    "cart_items": [
        {"product_id": "p1", "title": "Pakan Murai", "variant_name": "500 gr", "price": 20000, "quantity": 2},
    ],
}


class TestSignature:

    def test_valid_signature_accepted(self):
        body = {"order_id": "abc", "status_code": "200", "gross_amount": "40000.00"}
        body["signature_key"] = payments.signature_for("abc", "200", "40000.00")
        assert payments.verify_signature(body)

    def test_tampered_amount_rejected(self):
        body = {"order_id": "abc", "status_code": "200", "gross_amount": "1.00",
                "signature_key": payments.signature_for("abc", "200", "40000.00")}
        assert not payments.verify_signature(body)

    def test_signature_is_sha512_of_concatenation(self):
        import hashlib
        expected = hashlib.sha512(b"abc20040000.00key").hexdigest()
        assert payments.signature_for("abc", "200", "40000.00", server_key="key") == expected


class TestStatusMapping:

    @pytest.mark.parametrize("status,fraud,expected", [
        ("capture", "accept", ("paid", "confirmed")),
        ("capture", "challenge", ("pending", "challenge")),
        ("settlement", None, ("paid", "confirmed")),
        ("cancel", None, ("failed", "cancelled")),
        ("deny", None, ("failed", "cancelled")),
        ("expire", None, ("failed", "expired")),
        ("pending", None, ("pending", "pending")),
        ("refund", None, ("refund", "needs_review")),
        ("chargeback", None, ("chargeback", "needs_review")),
        ("authorize", None, ("pending", "needs_review")),
    ])
    def test_mapping(self, status, fraud, expected):
        assert payments.map_transaction_status(status, fraud) == expected


class TestTokenAge:

    def test_fresh_within_two_hours(self):
        issued = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert payments.is_token_fresh(issued, now=issued + timedelta(minutes=119))
        assert not payments.is_token_fresh(issued, now=issued + timedelta(minutes=120))

    def test_naive_datetimes_are_treated_as_utc(self):
        issued = datetime(2026, 1, 1, 10, 0)
        now = datetime(2026, 1, 1, 11, 0, tzinfo=timezone.utc)
        assert payments.token_remaining_minutes(issued, now=now) == 60

    def test_missing_token_is_stale(self):
        assert not payments.is_token_fresh(None)
        assert payments.token_remaining_minutes(None) == 0


class TestTransactionParams:

    def test_gateway_order_id_suffixes_attempts(self):
        assert payments.gateway_order_id("abc") == "abc"
        assert payments.gateway_order_id("abc", 2) == "abc-2"

    def test_params_carry_amount_items_and_expiry(self):
        params = payments.build_transaction_params(ORDER, "abc")
        assert params["transaction_details"] == {"order_id": "abc", "gross_amount": 40000}
        assert params["item_details"][0]["name"] == "Pakan Murai - 500 gr"
        assert params["customer_details"]["phone"] == "08123"
        assert params["expiry"] == {"unit": "minutes", "duration": 120}
        assert params["callbacks"]["pending"].endswith("/shop/payment-pending")

    def test_gateway_failure_is_wrapped(self, fake_snap):
        fake_snap.fail = True
        with pytest.raises(payments.PaymentGatewayError):
            payments.create_snap_transaction(ORDER, "abc")

    def test_unreadable_gateway_reply_is_wrapped(self, fake_snap):
        fake_snap.fail = True
        fake_snap.error = JSONDecodeError("<html>502 Bad Gateway</html>")
        with pytest.raises(payments.PaymentGatewayError):
            payments.create_snap_transaction(ORDER, "abc")

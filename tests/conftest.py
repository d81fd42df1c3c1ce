"""
Shared fixtures: an in-memory MongoDB (mongomock) behind every MongoClient the
app opens, a fake Snap client, and small factories for users and products.
"""
import os
from unittest import mock

import mongomock
import pytest

os.environ.setdefault("MIDTRANS_SERVER_KEY", "SB-Mid-server-test")
os.environ.setdefault("JWT_SECRET", "test-secret")

mock.patch("pymongo.MongoClient", mongomock.MongoClient).start()

from fastapi.testclient import TestClient  # noqa: E402

import payments  # noqa: E402
from database import db, create_document  # noqa: E402
from main import app  # noqa: E402
from schemas import Product, User  # noqa: E402
from security import create_token, hash_password  # noqa: E402


class FakeTransactions:
    """Stands in for the status API: echoes the notification back."""

    def __init__(self):
        self.seen = []
        self.fail = False
        self.error = ConnectionError("status API unreachable")

    def notification(self, body):
        self.seen.append(body)
        if self.fail:
            raise self.error
        return dict(body)


class FakeSnap:
    def __init__(self):
        self.calls = []
        self.fail = False
        self.error = ConnectionError("snap unreachable")
        self.transactions = FakeTransactions()

    def create_transaction(self, params):
        self.calls.append(params)
        if self.fail:
            raise self.error
        n = len(self.calls)
        return {
            "token": f"snap-token-{n}",
            "redirect_url": f"https://app.sandbox.midtrans.com/snap/v2/vtweb/snap-token-{n}",
        }


@pytest.fixture(autouse=True)
def clean_db():
    for name in db.list_collection_names():
        db.drop_collection(name)
    yield


@pytest.fixture(autouse=True)
def fake_snap(monkeypatch):
    snap = FakeSnap()
    monkeypatch.setattr(payments, "snap", snap)
    return snap


@pytest.fixture
def client():
    return TestClient(app)


def make_user(role="user", email=None, password=None, user_name=None):
    email = email or f"{role}-{db['user'].count_documents({})}@omahring.id"
    user = User(
        user_name=user_name or role.title(),
        email=email,
        password_hash=hash_password(password) if password else None,
        role=role,
    )
    return create_document("user", user)


def auth_headers(user_id):
    from bson import ObjectId
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    return {"Authorization": f"Bearer {create_token(user)}"}


def make_product(title="Pakan Murai", variants=None, **extra):
    variants = variants or [
        {"name": "500 gr", "price": 20000, "total_stock": 10},
        {"name": "1 kg", "price": 35000, "sale_price": 30000, "total_stock": 3},
    ]
    product = Product(
        title=title,
        description="Pakan burung berkualitas",
        category=extra.pop("category", "pakan"),
        brand=extra.pop("brand", "Omahring"),
        image=extra.pop("image", "https://img.example/pakan.jpg"),
        variants=variants,
        **extra,
    )
    return create_document("product", product)


def variant_stock(product_id, variant_name):
    from bson import ObjectId
    product = db["product"].find_one({"_id": ObjectId(product_id)})
    for variant in product["variants"]:
        if variant["name"] == variant_name:
            return variant["total_stock"]
    return None


def signed_notification(order_id, transaction_status, gross_amount="40000.00", status_code="200",
                        fraud_status="accept", **extra):
    body = {
        "order_id": order_id,
        "transaction_status": transaction_status,
        "fraud_status": fraud_status,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "payment_type": "qris",
        "transaction_id": f"trx-{order_id}-{transaction_status}",
        "signature_key": payments.signature_for(order_id, status_code, gross_amount),
    }
    body.update(extra)
    return body

from database import db


def test_root_reports_status(client):
    assert client.get("/").json() == {"name": "Omahring", "status": "ok"}


def test_config_exposes_public_payment_settings(client):
    body = client.get("/config").json()
    assert body["currency"] == "IDR"
    assert body["payments"]["provider"] == "midtrans"
    assert "serverKey" not in body["payments"]


def test_seed_is_idempotent(client):
    assert client.post("/dev/seed").json() == {"ok": True}
    client.post("/dev/seed")
    assert db["user"].count_documents({}) == 2
    assert db["product"].count_documents({}) == 3
    assert db["promo"].find_one({"promo_code": "KICAU10"})["discount_value"] == 10


def test_seeded_manager_can_log_in(client):
    client.post("/dev/seed")
    response = client.post("/api/auth/login", json={"email": "manager@omahring.id", "password": "manager123"})
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "manager"

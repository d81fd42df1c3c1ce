"""
Integration tests for the cart endpoints.
"""

from bson import ObjectId

from conftest import make_product, make_user
from database import db


def add(client, product_id, variant_name="500 gr", quantity=1, **owner):
    return client.post("/api/shop/cart/add", json={
        "product_id": product_id, "variant_name": variant_name, "quantity": quantity, **owner,
    })


class TestAddToCart:

    def test_out_of_stock_variant_returns_400(self, client):
        product_id = make_product()
        response = add(client, product_id, "1 kg", quantity=4)
        assert response.status_code == 400
        assert "Stok tidak mencukupi" in response.json()["detail"]

    def test_unknown_variant_returns_400(self, client):
        response = add(client, make_product(), "5 kg")
        assert response.status_code == 400

    def test_missing_product_returns_404(self, client):
        response = add(client, str(ObjectId()))
        assert response.status_code == 404

    def test_non_positive_quantity_returns_400(self, client):
        response = add(client, make_product(), quantity=0)
        assert response.status_code == 400

    def test_guest_gets_a_session_cart(self, client):
        response = add(client, make_product(), quantity=2)
        assert response.status_code == 200
        body = response.json()
        assert body["session_id"].startswith("guest-")
        assert body["user_id"] is None
        assert body["data"]["cart_total"] == 40000
        assert db["cart"].count_documents({"session_id": body["session_id"]}) == 1

    def test_same_line_quantities_are_summed(self, client):
        product_id = make_product()
        session_id = add(client, product_id).json()["session_id"]
        body = add(client, product_id, quantity=2, session_id=session_id).json()
        items = body["data"]["items"]
        assert len(items) == 1
        assert items[0]["quantity"] == 3
        assert body["data"]["cart_total"] == 60000

    def test_variant_snapshot_and_sale_price_total(self, client):
        product_id = make_product()
        user_id = make_user()
        body = add(client, product_id, "1 kg", quantity=2, user_id=user_id).json()
        line = body["data"]["items"][0]
        assert line["variant"]["name"] == "1 kg"
        assert line["unit_price"] == 30000
        assert body["data"]["cart_total"] == 60000
        assert body["user_id"] == user_id


class TestCartLifecycle:

    def test_fetch_by_user_and_session(self, client):
        product_id = make_product()
        user_id = make_user()
        add(client, product_id, user_id=user_id)
        session_id = add(client, product_id).json()["session_id"]

        assert client.get(f"/api/shop/cart/get/{user_id}").json()["data"]["user_id"] == user_id
        assert client.get(f"/api/shop/cart/get/{session_id}").json()["data"]["session_id"] == session_id

    def test_fetch_missing_cart_returns_404(self, client):
        assert client.get("/api/shop/cart/get/guest-nothing").status_code == 404

    def test_lines_of_deleted_products_are_dropped(self, client):
        keep, gone = make_product("Pakan Murai"), make_product("Pakan Kenari")
        session_id = add(client, keep).json()["session_id"]
        add(client, gone, quantity=2, session_id=session_id)
        db["product"].delete_one({"_id": ObjectId(gone)})

        body = client.get(f"/api/shop/cart/get/{session_id}").json()["data"]
        assert [i["product_id"] for i in body["items"]] == [keep]
        assert body["cart_total"] == 20000
        assert len(db["cart"].find_one({"session_id": session_id})["items"]) == 1

    def test_update_quantity_checks_stock(self, client):
        product_id = make_product()
        session_id = add(client, product_id, "1 kg").json()["session_id"]
        payload = {"id": session_id, "product_id": product_id, "variant_name": "1 kg"}

        assert client.put("/api/shop/cart/update-cart", json={**payload, "quantity": 9}).status_code == 400
        response = client.put("/api/shop/cart/update-cart", json={**payload, "quantity": 3})
        assert response.status_code == 200
        assert response.json()["data"]["cart_total"] == 90000

    def test_update_line_not_in_cart_returns_404(self, client):
        product_id = make_product()
        session_id = add(client, product_id, "500 gr").json()["session_id"]
        response = client.put("/api/shop/cart/update-cart", json={
            "id": session_id, "product_id": product_id, "variant_name": "1 kg", "quantity": 1,
        })
        assert response.status_code == 404

    def test_delete_line_recomputes_total(self, client):
        product_id = make_product()
        session_id = add(client, product_id, "500 gr").json()["session_id"]
        add(client, product_id, "1 kg", session_id=session_id)

        response = client.delete(f"/api/shop/cart/{session_id}/{product_id}/500 gr")
        assert response.status_code == 200
        data = response.json()["data"]
        assert [i["variant"]["name"] for i in data["items"]] == ["1 kg"]
        assert data["cart_total"] == 30000


class TestMerge:

    def setup_cart(self, client, product_id, variant_name, quantity, **owner):
        return add(client, product_id, variant_name, quantity=quantity, **owner).json()

    def test_replace_deletes_guest_cart(self, client):
        product_id = make_product()
        user_id = make_user()
        self.setup_cart(client, product_id, "500 gr", 1, user_id=user_id)
        session_id = self.setup_cart(client, product_id, "500 gr", 4)["session_id"]

        response = client.post("/api/shop/cart/merge",
                               json={"user_id": user_id, "session_id": session_id, "action": "replace"})
        assert response.status_code == 200
        assert db["cart"].find_one({"session_id": session_id}) is None
        assert response.json()["data"]["items"][0]["quantity"] == 1

    def test_merge_sums_matching_lines_past_stock(self, client):
        product_id = make_product()
        user_id = make_user()
        self.setup_cart(client, product_id, "1 kg", 2, user_id=user_id)
        session_id = self.setup_cart(client, product_id, "1 kg", 3)["session_id"]

        data = client.post("/api/shop/cart/merge",
                           json={"user_id": user_id, "session_id": session_id, "action": "merge"}).json()["data"]
        assert data["items"][0]["quantity"] == 5  # stock is 3
        assert data["cart_total"] == 150000
        assert db["cart"].find_one({"session_id": session_id}) is None

    def test_merge_appends_only_lines_with_stock(self, client):
        product_id = make_product()
        user_id = make_user()
        self.setup_cart(client, product_id, "500 gr", 1, user_id=user_id)
        session_id = self.setup_cart(client, product_id, "1 kg", 3)["session_id"]
        db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"variants.1.total_stock": 1}})

        data = client.post("/api/shop/cart/merge",
                           json={"user_id": user_id, "session_id": session_id}).json()["data"]
        assert [i["variant"]["name"] for i in data["items"]] == ["500 gr"]

    def test_merge_creates_user_cart_when_missing(self, client):
        product_id = make_product()
        user_id = make_user()
        session_id = self.setup_cart(client, product_id, "500 gr", 2)["session_id"]

        data = client.post("/api/shop/cart/merge",
                           json={"user_id": user_id, "session_id": session_id}).json()["data"]
        assert data["user_id"] == user_id
        assert data["cart_total"] == 40000
        assert db["cart"].count_documents({}) == 1

    def test_merge_without_guest_cart_returns_user_cart(self, client):
        product_id = make_product()
        user_id = make_user()
        self.setup_cart(client, product_id, "500 gr", 1, user_id=user_id)

        response = client.post("/api/shop/cart/merge",
                               json={"user_id": user_id, "session_id": "guest-missing"})
        assert response.status_code == 200
        assert response.json()["data"]["items"][0]["quantity"] == 1

    def test_unknown_action_is_rejected(self, client):
        response = client.post("/api/shop/cart/merge",
                               json={"user_id": make_user(), "session_id": "guest-x", "action": "keep"})
        assert response.status_code == 422

"""Tests for the FastAPI API."""

from bson import ObjectId

from conftest import stock_of

ADDRESS = {
    "full_name": "Demo User",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560001",
}


def fill_cart(client, headers, product_id, quantity):
    response = client.post("/api/cart/add", json={"product_id": product_id, "quantity": quantity}, headers=headers)
    assert response.status_code == 200
    return response


class TestAuth:
    def test_register_login_me(self, client):
        response = client.post(
            "/api/register", json={"name": "Asha", "email": "asha@minutemart.com", "password": "secret123"}
        )
        assert response.status_code == 201

        response = client.post("/api/login", data={"username": "asha@minutemart.com", "password": "secret123"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        response = client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["email"] == "asha@minutemart.com"

    def test_bad_password(self, client):
        client.post("/api/register", json={"name": "Asha", "email": "asha@minutemart.com", "password": "secret123"})
        response = client.post("/api/login", data={"username": "asha@minutemart.com", "password": "wrong"})
        assert response.status_code == 400

    def test_cart_needs_token(self, client):
        assert client.get("/api/cart").status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/api/cart", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestCatalog:
    def test_list_and_detail(self, client, make_product):
        pid = make_product(name="Honey", price=449.0, mrp=599.0)
        make_product(name="Rice", price=699.0)

        response = client.get("/api/products", params={"q": "hon"})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == pid
        assert data["items"][0]["effective_price"] == 449.0

        response = client.get(f"/api/products/{pid}")
        assert response.status_code == 200
        assert response.json()["name"] == "Honey"

    def test_price_sort(self, client, make_product):
        make_product(name="B", price=20.0)
        make_product(name="A", price=10.0)
        names = [p["name"] for p in client.get("/api/products", params={"sort": "price_asc"}).json()["items"]]
        assert names == ["A", "B"]

    def test_unknown_product(self, client):
        assert client.get(f"/api/products/{ObjectId()}").status_code == 404
        assert client.get("/api/products/not-an-id").status_code == 404


class TestCart:
    def test_add_merges_and_summarizes(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(price=100.0, stock=5)
        fill_cart(client, headers, pid, 1)
        response = fill_cart(client, headers, pid, 1)
        assert response.json()["cart_count"] == 2

        data = client.get("/api/cart", headers=headers).json()
        assert len(data["items"]) == 1
        summary = data["summary"]
        assert summary["subtotal"] == 200.0
        assert summary["shipping"] == 40.0
        assert summary["tax"] == 36.0
        assert summary["total"] == 276.0

    def test_add_beyond_stock(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(name="Scarce", stock=2)
        fill_cart(client, headers, pid, 2)
        response = client.post("/api/cart/add", json={"product_id": pid, "quantity": 1}, headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "product_unavailable"

    def test_update_remove_count(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(stock=5)
        fill_cart(client, headers, pid, 1)

        assert client.put(f"/api/cart/update/{pid}", json={"quantity": 4}, headers=headers).status_code == 200
        assert client.get("/api/cart/count", headers=headers).json() == {"count": 4}
        assert client.put(f"/api/cart/update/{pid}", json={"quantity": 6}, headers=headers).status_code == 400

        assert client.delete(f"/api/cart/remove/{pid}", headers=headers).status_code == 200
        assert client.delete(f"/api/cart/remove/{pid}", headers=headers).status_code == 404

    def test_clear(self, client, customer, make_product):
        _, headers = customer
        fill_cart(client, headers, make_product(), 1)
        assert client.delete("/api/cart/clear", headers=headers).status_code == 200
        assert client.get("/api/cart/count", headers=headers).json() == {"count": 0}


class TestApplyCoupon:
    def test_preview_discount(self, client, customer, make_product, make_coupon):
        _, headers = customer
        make_coupon()
        fill_cart(client, headers, make_product(price=300.0), 2)

        response = client.post("/api/cart/apply-coupon", json={"code": "welcome10"}, headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["discount"] == 60.0
        assert data["coupon"]["code"] == "WELCOME10"
        assert data["summary"]["total"] == 648.0

    def test_preview_does_not_count_a_use(self, client, db, customer, make_product, make_coupon):
        _, headers = customer
        coupon_id = make_coupon(min_purchase=0)
        fill_cart(client, headers, make_product(), 1)
        client.post("/api/cart/apply-coupon", json={"code": "WELCOME10"}, headers=headers)
        assert db["coupon"].find_one({"_id": coupon_id})["used_count"] == 0

    def test_min_purchase_reported(self, client, customer, make_product, make_coupon):
        _, headers = customer
        make_coupon()
        fill_cart(client, headers, make_product(price=100.0), 2)

        response = client.post("/api/cart/apply-coupon", json={"code": "WELCOME10"}, headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "min_purchase_not_met"
        assert response.json()["min_purchase"] == 500

    def test_unknown_coupon(self, client, customer, make_product):
        _, headers = customer
        fill_cart(client, headers, make_product(), 1)
        response = client.post("/api/cart/apply-coupon", json={"code": "BOGUS"}, headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid or expired coupon"

    def test_empty_cart(self, client, customer, make_coupon):
        _, headers = customer
        make_coupon(code="NEWUSER", min_purchase=0)
        response = client.post("/api/cart/apply-coupon", json={"code": "NEWUSER"}, headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Cart is empty"

    def test_blank_code(self, client, customer):
        _, headers = customer
        response = client.post("/api/cart/apply-coupon", json={"code": "  "}, headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"


class TestOrders:
    def test_place_get_track_cancel(self, client, db, customer, make_product):
        _, headers = customer
        pid = make_product(price=100.0, stock=5)
        fill_cart(client, headers, pid, 2)

        response = client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=headers)
        assert response.status_code == 201
        order = response.json()["order"]
        assert order["total"] == 276.0
        assert order["status"] == "pending"
        assert order["order_number"].startswith("MM")
        assert stock_of(db, pid) == 3

        detail = client.get(f"/api/orders/{order['order_number']}", headers=headers).json()
        assert detail["id"] == order["order_id"]
        assert detail["payment_method"] == "cod"
        assert detail["items"][0]["quantity"] == 2

        track = client.get(f"/api/orders/{order['order_id']}/track", headers=headers).json()
        assert track["current_status"] == "pending"
        assert [s["completed"] for s in track["timeline"]] == [True, False, False, False, False]

        response = client.put(f"/api/orders/{order['order_number']}/cancel", headers=headers)
        assert response.status_code == 200
        assert stock_of(db, pid) == 5

        response = client.put(f"/api/orders/{order['order_number']}/cancel", headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_transition"

    def test_empty_cart(self, client, customer):
        _, headers = customer
        response = client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Cart is empty"

    def test_missing_address(self, client, customer, make_product):
        _, headers = customer
        fill_cart(client, headers, make_product(), 1)
        response = client.post("/api/orders", json={}, headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Shipping address is required"

    def test_partial_address_uses_the_validation_error_shape(self, client, customer, make_product):
        _, headers = customer
        fill_cart(client, headers, make_product(), 1)
        response = client.post("/api/orders", json={"shipping_address": {"full_name": "Demo"}}, headers=headers)
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "validation_error"
        assert body["detail"].startswith("shipping_address.")
        assert body["errors"]

    def test_bad_quantity_uses_the_validation_error_shape(self, client, customer, make_product):
        _, headers = customer
        response = client.post("/api/cart/add", json={"product_id": make_product(), "quantity": 0}, headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_place_with_saved_address(self, client, customer, make_product):
        _, headers = customer
        address_id = client.post("/api/user/addresses", json=ADDRESS, headers=headers).json()["address_id"]
        fill_cart(client, headers, make_product(), 1)

        response = client.post("/api/orders", json={"address_id": address_id}, headers=headers)
        assert response.status_code == 201
        number = response.json()["order"]["order_number"]

        client.put(f"/api/user/addresses/{address_id}", json={"city": "Mysuru"}, headers=headers)
        detail = client.get(f"/api/orders/{number}", headers=headers).json()
        assert detail["shipping_address"]["city"] == "Bengaluru"

    def test_unknown_saved_address(self, client, customer, make_product):
        _, headers = customer
        fill_cart(client, headers, make_product(), 1)
        response = client.post("/api/orders", json={"address_id": str(ObjectId())}, headers=headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "Address not found"

    def test_insufficient_stock_names_product(self, client, db, customer, make_product):
        _, headers = customer
        pid = make_product(name="Glass Card", stock=3)
        fill_cart(client, headers, pid, 3)
        db["product"].update_one({"_id": ObjectId(pid)}, {"$set": {"stock": 1}})

        response = client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Insufficient stock for Glass Card"
        assert stock_of(db, pid) == 1

    def test_orders_are_private(self, client, customer, other_customer, make_product):
        _, headers = customer
        _, other_headers = other_customer
        fill_cart(client, headers, make_product(), 1)
        number = client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=headers).json()["order"]["order_number"]

        for response in (
            client.get(f"/api/orders/{number}", headers=other_headers),
            client.get(f"/api/orders/{number}/track", headers=other_headers),
            client.put(f"/api/orders/{number}/cancel", headers=other_headers),
            client.get("/api/orders/MMDOESNOTEXIST", headers=headers),
        ):
            assert response.status_code == 404
            assert response.json()["detail"] == "Order not found"

    def test_list_with_status_filter(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(stock=10)
        numbers = []
        for _ in range(3):
            fill_cart(client, headers, pid, 1)
            numbers.append(
                client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=headers).json()["order"]["order_number"]
            )
        client.put(f"/api/orders/{numbers[0]}/cancel", headers=headers)

        data = client.get("/api/orders", headers=headers).json()
        assert data["pagination"]["total"] == 3
        data = client.get("/api/orders", params={"status": "cancelled"}, headers=headers).json()
        assert [o["order_number"] for o in data["orders"]] == [numbers[0]]


class TestAdminStatus:
    def place(self, client, headers, pid):
        fill_cart(client, headers, pid, 1)
        return client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=headers).json()["order"]["order_number"]

    def test_admin_ships_then_customer_cannot_cancel(self, client, customer, admin, make_product):
        _, headers = customer
        _, admin_headers = admin
        number = self.place(client, headers, make_product())

        for status in ("confirmed", "processing", "shipped"):
            response = client.put(f"/api/admin/orders/{number}/status", json={"status": status}, headers=admin_headers)
            assert response.status_code == 200
            assert response.json()["status"] == status

        response = client.put(f"/api/orders/{number}/cancel", headers=headers)
        assert response.status_code == 400
        assert response.json()["current_status"] == "shipped"

    def test_customer_cannot_use_admin_route(self, client, customer, make_product):
        _, headers = customer
        number = self.place(client, headers, make_product())
        response = client.put(f"/api/admin/orders/{number}/status", json={"status": "confirmed"}, headers=headers)
        assert response.status_code == 403


class TestSeed:
    def test_seed_is_idempotent(self, client, db):
        assert client.post("/api/seed").json() == {"ok": True}
        client.post("/api/seed")
        assert db["product"].count_documents({}) == 4
        assert db["coupon"].find_one({"code": "WELCOME10"})["usage_limit"] == 1000


class TestWishlist:
    def test_add_check_move_to_cart(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(stock=5)

        response = client.post("/api/wishlist/add", json={"product_id": pid}, headers=headers)
        assert response.status_code == 200
        assert response.json()["wishlist_count"] == 1
        assert client.get(f"/api/wishlist/check/{pid}", headers=headers).json() == {"in_wishlist": True}
        assert client.get("/api/wishlist", headers=headers).json()[0]["product"]["id"] == pid

        response = client.post(f"/api/wishlist/move-to-cart/{pid}", headers=headers)
        assert response.status_code == 200
        assert client.get("/api/cart/count", headers=headers).json() == {"count": 1}
        assert client.get("/api/wishlist/count", headers=headers).json() == {"count": 0}

    def test_duplicate_add(self, client, customer, make_product):
        _, headers = customer
        pid = make_product()
        client.post("/api/wishlist/add", json={"product_id": pid}, headers=headers)
        response = client.post("/api/wishlist/add", json={"product_id": pid}, headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "already_in_wishlist"

    def test_move_out_of_stock(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(name="Sold Out", stock=0)
        client.post("/api/wishlist/add", json={"product_id": pid}, headers=headers)
        response = client.post(f"/api/wishlist/move-to-cart/{pid}", headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "product_unavailable"

    def test_remove(self, client, customer, make_product):
        _, headers = customer
        pid = make_product()
        client.post("/api/wishlist/add", json={"product_id": pid}, headers=headers)
        assert client.delete(f"/api/wishlist/remove/{pid}", headers=headers).status_code == 200
        assert client.delete(f"/api/wishlist/remove/{pid}", headers=headers).status_code == 404


class TestAddresses:
    def test_crud(self, client, customer, other_customer):
        _, headers = customer
        _, other_headers = other_customer

        response = client.post("/api/user/addresses", json={**ADDRESS, "is_default": True}, headers=headers)
        assert response.status_code == 201
        address_id = response.json()["address_id"]

        [saved] = client.get("/api/user/addresses", headers=headers).json()
        assert saved["is_default"] is True

        response = client.put(f"/api/user/addresses/{address_id}", json={"label": "work"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["label"] == "work"
        assert response.json()["city"] == "Bengaluru"

        assert client.get("/api/user/addresses", headers=other_headers).json() == []
        assert client.delete(f"/api/user/addresses/{address_id}", headers=other_headers).status_code == 404
        assert client.delete(f"/api/user/addresses/{address_id}", headers=headers).status_code == 200

    def test_missing_fields(self, client, customer):
        _, headers = customer
        response = client.post("/api/user/addresses", json={"full_name": "Demo"}, headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

"""Tests for the FastAPI API."""

from decimal import Decimal

import pytest

import config
from schemas import UserRole

PHONE = "+22890123456"


def signup(client, email="kossi@example.tg", password="secret1", **fields):
    payload = {
        "email": email,
        "password": password,
        "first_name": "Kossi",
        "last_name": "Agbeko",
        "phone": PHONE,
    }
    payload.update(fields)
    return client.post("/api/auth/signup", json=payload)


@pytest.fixture
def buyer_headers(auth_headers, buyer):
    return auth_headers(buyer)


@pytest.fixture
def seller_headers(auth_headers, seller):
    return auth_headers(seller)


@pytest.fixture
def admin_headers(auth_headers, admin):
    return auth_headers(admin)


class TestHealthCheck:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "running" in response.json()["message"]


class TestAuth:
    def test_signup_returns_token(self, client):
        response = signup(client)
        assert response.status_code == 200
        data = response.json()
        assert data["token"]
        assert data["user"]["role"] == "buyer"
        assert "password_hash" not in data["user"]

    def test_seller_signup_defaults_shop_name(self, client):
        response = signup(client, role="seller")
        assert response.json()["user"]["shop_name"] == "Kossi Agbeko"

    def test_duplicate_email(self, client):
        signup(client)
        response = signup(client)
        assert response.status_code == 400
        assert response.json()["error_type"] == "InvalidInputError"

    def test_admin_signup_forbidden(self, client):
        response = signup(client, role="admin")
        assert response.status_code == 403

    def test_invalid_phone(self, client):
        response = signup(client, phone="90123456")
        assert response.status_code == 422

    def test_login_and_me(self, client):
        signup(client)
        response = client.post("/api/auth/login", json={"email": "kossi@example.tg", "password": "secret1"})
        assert response.status_code == 200
        token = response.json()["token"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["email"] == "kossi@example.tg"

    def test_wrong_password(self, client):
        signup(client)
        response = client.post("/api/auth/login", json={"email": "kossi@example.tg", "password": "wrong!"})
        assert response.status_code == 401
        assert response.json()["error_type"] == "AuthenticationError"

    def test_missing_token(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_disabled_account(self, client, db, buyer, buyer_headers):
        db[config.USERS].update_many({}, {"$set": {"is_active": False}})
        assert client.get("/api/auth/me", headers=buyer_headers).status_code == 403


class TestProducts:
    def test_paging(self, client, make_products):
        make_products(5)
        first = client.get("/api/products", params={"limit": 3}).json()
        assert [p["name"] for p in first["items"]] == ["Produit 04", "Produit 03", "Produit 02"]
        second = client.get("/api/products", params={"limit": 3, "cursor": first["next_cursor"]}).json()
        assert [p["name"] for p in second["items"]] == ["Produit 01", "Produit 00"]
        third = client.get("/api/products", params={"limit": 3, "cursor": second["next_cursor"]}).json()
        assert third == {"items": [], "next_cursor": None}

    def test_category_filter(self, client, make_product):
        make_product(name="Sandales en cuir", category="shoes")
        make_product(name="Pagne Wax")
        data = client.get("/api/products", params={"category": "shoes"}).json()
        assert [p["name"] for p in data["items"]] == ["Sandales en cuir"]

    def test_unknown_category(self, client):
        assert client.get("/api/products", params={"category": "cars"}).status_code == 422

    def test_invalid_cursor(self, client):
        response = client.get("/api/products", params={"cursor": "garbage"})
        assert response.status_code == 400

    def test_get_product(self, client, make_product):
        product = make_product(name="Chemise Kente")
        response = client.get(f"/api/products/{product.id}")
        assert response.status_code == 200
        assert response.json()["name"] == "Chemise Kente"

    def test_product_not_found(self, client):
        response = client.get("/api/products/000000000000000000000000")
        assert response.status_code == 404
        assert response.json()["error_type"] == "ProductNotFoundError"


class TestCart:
    def test_requires_login(self, client):
        assert client.get("/api/cart").status_code == 401

    def test_add_update_remove(self, client, make_product, buyer_headers):
        product = make_product(price=12000, stock=5)
        line = {"product_id": product.id, "options": {"size": "M"}}

        response = client.post("/api/cart/items", json={**line, "quantity": 2}, headers=buyer_headers)
        assert response.status_code == 200
        assert Decimal(response.json()["total"]) == 24000

        response = client.patch("/api/cart/items", json={**line, "delta": 1}, headers=buyer_headers)
        assert response.json()["item_count"] == 3

        response = client.request("DELETE", "/api/cart/items", json=line, headers=buyer_headers)
        body = response.json()
        assert (body["items"], Decimal(body["total"]), body["item_count"]) == ([], 0, 0)

    def test_cart_survives_requests(self, client, make_product, buyer_headers):
        product = make_product()
        client.post("/api/cart/items", json={"product_id": product.id}, headers=buyer_headers)
        assert client.get("/api/cart", headers=buyer_headers).json()["item_count"] == 1

    def test_over_stock(self, client, make_product, buyer_headers):
        product = make_product(stock=1)
        response = client.post(
            "/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=buyer_headers
        )
        assert response.status_code == 409
        assert response.json()["error_type"] == "OutOfStockError"

    def test_clear(self, client, make_product, buyer_headers):
        product = make_product()
        client.post("/api/cart/items", json={"product_id": product.id}, headers=buyer_headers)
        assert client.delete("/api/cart", headers=buyer_headers).json()["item_count"] == 0


class TestCheckoutAndPayment:
    @pytest.fixture
    def order_id(self, client, make_product, buyer_headers):
        wax = make_product(name="Pagne Wax", price=12000, stock=10)
        sandals = make_product(name="Sandales", price=5000, stock=3)
        client.post("/api/cart/items", json={"product_id": wax.id, "quantity": 2}, headers=buyer_headers)
        client.post("/api/cart/items", json={"product_id": sandals.id}, headers=buyer_headers)
        response = client.post("/api/checkout", headers=buyer_headers)
        assert response.status_code == 201
        return response.json()["id"]

    def start_payment(self, client, order_id, headers):
        client.post(f"/api/orders/{order_id}/payment/method", json={"method": "tmoney"}, headers=headers)
        response = client.post(
            f"/api/orders/{order_id}/payment/otp",
            json={"phone": PHONE, "confirm_phone": PHONE},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["state"] == "otp_requested"

    def confirm(self, client, order_id, headers, otp):
        return client.post(
            f"/api/orders/{order_id}/payment/confirm",
            json={"otp": otp, "shipping": {"full_name": "Kossi Agbeko", "address": "Bè", "city": "lome"}},
            headers=headers,
        )

    def test_empty_checkout(self, client, buyer_headers):
        response = client.post("/api/checkout", headers=buyer_headers)
        assert response.status_code == 400
        assert response.json()["error_type"] == "EmptyCartError"

    def test_order_totals(self, client, order_id, buyer_headers):
        order = client.get(f"/api/orders/{order_id}", headers=buyer_headers).json()
        assert Decimal(order["total_amount"]) == 29000
        assert Decimal(order["commission"]["platform"]) == 2900
        assert Decimal(order["commission"]["seller"]) == 26100
        assert order["status"] == "pending"
        assert client.get("/api/cart", headers=buyer_headers).json()["item_count"] == 0

    def test_payment_summary(self, client, order_id, buyer_headers):
        summary = client.get(f"/api/orders/{order_id}/payment", params={"city": "kara"}, headers=buyer_headers)
        assert Decimal(summary.json()["total"]) == 30500

    def test_pay(self, client, order_id, buyer_headers, seller_headers):
        self.start_payment(client, order_id, buyer_headers)
        response = self.confirm(client, order_id, buyer_headers, config.MOCK_OTP_CODE)
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        assert Decimal(response.json()["paid_amount"]) == 29500

        sales = client.get("/api/seller/sales", headers=seller_headers).json()
        assert {s["status"] for s in sales} == {"paid"}

    def test_wrong_code(self, client, order_id, buyer_headers):
        self.start_payment(client, order_id, buyer_headers)
        response = self.confirm(client, order_id, buyer_headers, "000000")
        assert response.status_code == 402
        assert response.json()["error_type"] == "PaymentFailedError"
        order = client.get(f"/api/orders/{order_id}", headers=buyer_headers).json()
        assert order["status"] == "pending"

    def test_cancel(self, client, order_id, buyer_headers):
        self.start_payment(client, order_id, buyer_headers)
        assert client.delete(f"/api/orders/{order_id}/payment", headers=buyer_headers).status_code == 204
        summary = client.get(f"/api/orders/{order_id}/payment", headers=buyer_headers).json()
        assert summary["session"]["state"] == "method_selection"

    def test_other_buyer_cannot_pay(self, client, order_id, make_user, auth_headers):
        headers = auth_headers(make_user(UserRole.BUYER))
        response = client.post(f"/api/orders/{order_id}/payment/method", json={"method": "flooz"}, headers=headers)
        assert response.status_code == 403

    def test_seller_updates_status(self, client, order_id, seller_headers, buyer_headers):
        response = client.patch(
            f"/api/orders/{order_id}/status",
            json={"status": "shipped", "tracking_number": "TG-7"},
            headers=seller_headers,
        )
        assert response.status_code == 200
        assert response.json()["tracking_number"] == "TG-7"
        forbidden = client.patch(f"/api/orders/{order_id}/status", json={"status": "cancelled"}, headers=buyer_headers)
        assert forbidden.status_code == 403

    def test_my_orders(self, client, order_id, buyer_headers):
        orders = client.get("/api/orders", headers=buyer_headers).json()
        assert [o["id"] for o in orders] == [order_id]


class TestRoles:
    def test_buyer_cannot_use_admin_routes(self, client, buyer_headers):
        response = client.get("/api/admin/stats", headers=buyer_headers)
        assert response.status_code == 403
        assert response.json()["error_type"] == "PermissionDeniedError"

    def test_buyer_cannot_use_seller_routes(self, client, buyer_headers):
        assert client.get("/api/seller/stats", headers=buyer_headers).status_code == 403

    def test_seller_lists_product(self, client, seller_headers):
        response = client.post(
            "/api/seller/products",
            json={
                "name": "Panier tressé",
                "description": "Panier de rangement tressé à la main",
                "category": "home",
                "price": 4000,
                "stock": 30,
            },
            headers=seller_headers,
        )
        assert response.status_code == 201
        assert client.get("/api/seller/stats", headers=seller_headers).json()["total_products"] == 1

    def test_listing_validation(self, client, seller_headers):
        response = client.post(
            "/api/seller/products",
            json={"name": "ab", "description": "short", "category": "home", "price": 0, "stock": 1},
            headers=seller_headers,
        )
        assert response.status_code == 422

    def test_admin_stats_and_moderation(self, client, admin_headers, make_product, buyer):
        product = make_product()
        assert client.get("/api/admin/stats", headers=admin_headers).json()["total_products"] == 1
        toggled = client.post(f"/api/admin/products/{product.id}/toggle", headers=admin_headers)
        assert toggled.json()["is_active"] is False
        user = client.post(f"/api/admin/users/{buyer.id}/toggle", headers=admin_headers)
        assert user.json()["is_active"] is False
        deleted = client.delete(f"/api/admin/products/{product.id}", headers=admin_headers)
        assert deleted.status_code == 204


class TestFilesAndFittingRoom:
    def upload(self, client, headers, data, content_type="image/png"):
        return client.post("/api/files", files={"file": ("wax.png", data, content_type)}, headers=headers)

    def test_upload_and_download(self, client, seller_headers, png):
        data = png((255, 0, 0))
        response = self.upload(client, seller_headers, data)
        assert response.status_code == 201
        path = response.json()["url"].replace(config.PUBLIC_BASE_URL, "")
        download = client.get(path)
        assert download.status_code == 200
        assert download.headers["content-type"] == "image/png"
        assert download.content == data

    def test_buyer_cannot_upload(self, client, buyer_headers, png):
        assert self.upload(client, buyer_headers, png((255, 0, 0))).status_code == 403

    def test_rejects_non_image(self, client, seller_headers):
        assert self.upload(client, seller_headers, b"%PDF", "application/pdf").status_code == 400

    def test_preview_with_stored_product_image(self, client, seller_headers, buyer_headers, png):
        url = self.upload(client, seller_headers, png((255, 0, 0))).json()["url"]
        product = client.post(
            "/api/seller/products",
            json={
                "name": "Pagne Wax",
                "description": "Pagne wax 6 yards, 100% coton",
                "category": "clothing",
                "price": 12000,
                "stock": 5,
                "image_url": url,
            },
            headers=seller_headers,
        ).json()
        response = client.post(
            f"/api/fitting-room/{product['id']}",
            files={"photo": ("me.png", png((0, 0, 255)), "image/png")},
            data={"size": "120", "position": "-20"},
            headers=buyer_headers,
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"

    def test_preview_needs_garment(self, client, make_product, buyer_headers, png):
        product = make_product()
        response = client.post(
            f"/api/fitting-room/{product.id}",
            files={"photo": ("me.png", png((0, 0, 255)), "image/png")},
            headers=buyer_headers,
        )
        assert response.status_code == 400

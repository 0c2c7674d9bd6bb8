from storedash.extensions import db
from storedash.models import ActivityLog
from storedash.services import cart as cart_svc
from storedash.services import categories, checkout, products
from tests.helpers import AppTestCase


class ApiTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.other = self.make_tenant("Loja 2", "loja2")
        self.admin = self.make_user(self.tenant, "admin@loja1.com")
        self.viewer = self.make_user(self.tenant, "viewer@loja1.com", role="viewer")
        self.client = self.app.test_client()

    def login(self, email, password="secret123", slug="loja1", **headers):
        return self.client.post(f"/{slug}/auth/login", json={"email": email, "password": password}, headers=headers)


class AuthTests(ApiTestCase):
    def test_login_and_me(self):
        resp = self.login("admin@loja1.com")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["user"]["roles"], ["admin"])

        me = self.client.get("/loja1/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.get_json()["user"]["email"], "admin@loja1.com")
        self.assertEqual(ActivityLog.query.filter_by(action="login").count(), 1)

    def test_missing_fields(self):
        resp = self.client.post("/loja1/auth/login", json={"email": "admin@loja1.com"})
        self.assertEqual(resp.status_code, 400)

    def test_wrong_password(self):
        resp = self.login("admin@loja1.com", "errada")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.get_json()["error"], "invalid_credentials")

    def test_inactive_user(self):
        self.viewer.is_active = False
        db.session.commit()
        resp = self.login("viewer@loja1.com")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error"], "inactive_user")

    def test_user_of_other_tenant_cannot_log_in(self):
        self.assertEqual(self.login("admin@loja1.com", slug="loja2").status_code, 401)

    def test_unknown_tenant(self):
        self.assertEqual(self.login("admin@loja1.com", slug="nope").status_code, 404)

    def test_me_requires_session(self):
        resp = self.client.get("/loja1/auth/me")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.get_json()["error"], "unauthorized")


class AdminApiTests(ApiTestCase):
    def test_api_requires_login(self):
        self.assertEqual(self.client.get("/loja1/api/products").status_code, 401)

    def test_cross_tenant_access_is_forbidden(self):
        self.login("admin@loja1.com")
        self.assertEqual(self.client.get("/loja1/api/products").status_code, 200)
        self.assertEqual(self.client.get("/loja2/api/products").status_code, 403)

    def test_viewer_cannot_create(self):
        self.login("viewer@loja1.com")
        resp = self.client.post("/loja1/api/products", json={"name": "Boné", "base_price": "15"})
        self.assertEqual(resp.status_code, 403)
        body = resp.get_json()
        self.assertEqual(body["error"], "forbidden")
        self.assertEqual(body["details"], {"required": ["products:create"]})

    def test_admin_create_is_logged(self):
        self.login("admin@loja1.com")
        resp = self.client.post("/loja1/api/products", json={"name": "Boné", "base_price": "15"})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.get_json()["slug"], "bone")
        entry = ActivityLog.query.filter_by(action="POST products_create").one()
        self.assertEqual(entry.user_id, self.admin.id)
        self.assertEqual(entry.entity_type, "products")

    def test_customer_endpoints(self):
        self.login("admin@loja1.com")
        resp = self.client.post("/loja1/api/customers", json={"email": "rita@example.com", "first_name": "Rita"})
        self.assertEqual(resp.status_code, 201)
        cid = resp.get_json()["id"]
        dup = self.client.post("/loja1/api/customers", json={"email": "rita@example.com"})
        self.assertEqual(dup.status_code, 409)
        stats = self.client.get(f"/loja1/api/customers/{cid}/statistics").get_json()
        self.assertEqual(stats["total_orders"], 0)
        self.assertEqual(self.client.get(f"/loja1/api/customers/{cid}/orders").get_json(), {"data": []})
        self.assertEqual(self.client.delete(f"/loja1/api/customers/{cid}").status_code, 200)
        entry = ActivityLog.query.filter_by(action="POST customers_create").one()
        self.assertEqual(entry.entity_type, "customers")

    def test_viewer_reads_but_cannot_create_categories(self):
        self.login("viewer@loja1.com")
        self.assertEqual(self.client.get("/loja1/api/categories").status_code, 200)
        resp = self.client.post("/loja1/api/categories", json={"name": "Roupas"})
        self.assertEqual(resp.status_code, 403)

    def test_service_errors_become_json(self):
        self.login("admin@loja1.com")
        resp = self.client.post("/loja1/api/products", json={"base_price": "15"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "validation_error")


class StoreTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.product = products.create_product(self.tenant.id, {
            "name": "Caneca",
            "base_price": "30.00",
            "status": "published",
            "variants": [{"name": "Azul", "sku": "CAN-AZ", "quantity": 4}],
        })
        checkout.update_settings(self.tenant.id, {"portal_enabled": True})
        self.shipping = checkout.create_shipping_method(self.tenant.id, {"name": "PAC", "price": "10"})
        self.payment = checkout.create_payment_method(self.tenant.id, {"name": "Cartão", "type": "card"})
        db.session.commit()
        self.variant_id = self.product.variants[0].id
        self.guest = {"X-Session-Id": "guest-abc"}

    def _add(self, qty=2):
        return self.client.post(
            "/loja1/store/cart/items",
            json={"product_id": self.product.id, "variant_id": self.variant_id, "quantity": qty},
            headers=self.guest,
        )

    def test_guest_cart(self):
        resp = self._add()
        self.assertEqual(resp.status_code, 201)
        body = resp.get_json()
        self.assertEqual((body["item_count"], body["subtotal"]), (2, "60.00"))
        again = self.client.get("/loja1/store/cart", headers=self.guest)
        self.assertEqual(again.get_json()["id"], body["id"])

    def test_cart_needs_session_header(self):
        self.assertEqual(self.client.get("/loja1/store/cart").status_code, 400)

    def test_portal_disabled(self):
        checkout.update_settings(self.tenant.id, {"portal_enabled": False})
        db.session.commit()
        self.assertEqual(self.client.get("/loja1/store/products").status_code, 404)

    def test_guest_checkout(self):
        self._add()
        options = self.client.get("/loja1/store/checkout/options").get_json()
        self.assertEqual([m["name"] for m in options["payment_methods"]], ["Cartão"])

        resp = self.client.post("/loja1/store/checkout", headers=self.guest, json={
            "shipping_method_id": self.shipping.id,
            "payment_method_id": self.payment.id,
            "customer_email": "cliente@example.com",
            "shipping_address": {
                "first_name": "Rita", "last_name": "Lima", "address1": "Rua B, 5",
                "city": "Recife", "postal_code": "50000-000", "country": "BR",
            },
        })
        self.assertEqual(resp.status_code, 201)
        order = resp.get_json()
        self.assertEqual(order["total"], "70.00")

        found = self.client.get(f"/loja1/store/orders/{order['order_number']}?email=cliente@example.com")
        self.assertEqual(found.status_code, 200)
        hidden = self.client.get(f"/loja1/store/orders/{order['order_number']}?email=outro@example.com")
        self.assertEqual(hidden.status_code, 404)

    def test_login_merges_guest_cart(self):
        self._add(1)
        self.assertEqual(self.login("admin@loja1.com", **self.guest).status_code, 200)
        mine = cart_svc.get_or_create(self.tenant.id, user_id=self.admin.id)
        self.assertEqual(cart_svc.item_count(mine), 1)

    def test_category_pages(self):
        mugs = categories.create_category(self.tenant.id, {"name": "Canecas"})
        categories.set_product_categories(self.product, [mugs.id])
        db.session.commit()
        tree = self.client.get("/loja1/store/categories").get_json()["data"]
        self.assertEqual([(c["slug"], c["product_count"]) for c in tree], [("canecas", 1)])
        page = self.client.get("/loja1/store/categories/canecas/products").get_json()
        self.assertEqual(page["category"]["name"], "Canecas")
        self.assertEqual([p["slug"] for p in page["data"]], ["caneca"])
        self.assertEqual(self.client.get("/loja1/store/categories/nada/products").status_code, 404)
        filtered = self.client.get("/loja1/store/products?category=canecas").get_json()
        self.assertEqual(filtered["total"], 1)
        related = self.client.get("/loja1/store/products/caneca/related").get_json()
        self.assertEqual(related, {"data": []})

from datetime import datetime
from decimal import Decimal

from storedash.errors import ConflictError, ValidationError
from storedash.extensions import db
from storedash.services import cart as cart_svc
from storedash.models_shop import Customer
from storedash.services import checkout, customers, orders, products
from tests.helpers import AppTestCase

ADDRESS = {
    "first_name": "Ana",
    "last_name": "Souza",
    "address1": "Rua A, 10",
    "city": "São Paulo",
    "postal_code": "01000-000",
    "country": "BR",
}


class OrdersTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.tid = self.tenant.id
        self.admin = self.make_user(self.tenant, "admin@loja1.com")
        checkout.update_settings(self.tid, {"tax_rate": "10", "cod_enabled": True, "cod_fee": "5.00"})
        self.standard = checkout.create_shipping_method(self.tid, {"name": "Standard", "price": "7.50"})
        self.card = checkout.create_payment_method(self.tid, {"name": "Card", "type": "card"})
        self.cod = checkout.create_payment_method(self.tid, {"name": "Cash", "type": "cod"})
        self.product = products.create_product(
            self.tid,
            {
                "name": "Caneca",
                "base_price": "25.00",
                "status": "published",
                "variants": [{"name": "Branca", "sku": "CAN-B", "quantity": 10}],
            },
        )
        db.session.commit()
        self.variant = self.product.variants[0]

    def _order(self, qty=2, email="ana@example.com", now=None):
        order = orders.create_order(
            self.tid,
            {
                "items": [{"product_id": self.product.id, "variant_id": self.variant.id, "quantity": qty}],
                "shipping_method_id": self.standard.id,
                "customer_email": email,
            },
            user=self.admin,
            now=now,
        )
        db.session.commit()
        return order


class OrderLifecycleTests(OrdersTestCase):
    def test_order_number_format(self):
        number = orders.generate_order_number()
        self.assertRegex(number, r"^ORD-[0-9A-Z]+-[0-9A-F]{4}$")

    def test_compute_totals(self):
        totals = orders.compute_totals(Decimal("19.99"), None, Decimal("5"))
        self.assertEqual(totals["tax"], Decimal("0.00"))
        self.assertEqual(totals["total"], Decimal("24.99"))

    def test_create_reserves_stock_and_totals(self):
        order = self._order()
        self.assertEqual(order.subtotal, Decimal("50.00"))
        self.assertEqual(order.tax, Decimal("5.00"))
        self.assertEqual(order.shipping, Decimal("7.50"))
        self.assertEqual(order.total, Decimal("62.50"))
        self.assertEqual(self.variant.inventory.reserved, 2)
        self.assertEqual(self.variant.inventory.available, 8)

    def test_insufficient_stock(self):
        with self.assertRaises(ValidationError):
            self._order(qty=11)

    def test_invalid_transition(self):
        order = self._order()
        with self.assertRaises(ValidationError) as cm:
            orders.update_status(order, "delivered")
        self.assertEqual(cm.exception.details, {"allowed": ["processing", "cancelled"]})

    def test_full_lifecycle(self):
        order = self._order()
        orders.update_status(order, "processing", user=self.admin)
        orders.update_status(order, "shipped", tracking_number="BR123")
        self.assertEqual(order.fulfillment_status, "fulfilled")
        self.assertEqual(order.tracking_number, "BR123")
        self.assertEqual((self.variant.inventory.quantity, self.variant.inventory.reserved), (8, 0))

        orders.update_status(order, "delivered")
        orders.update_status(order, "refunded")
        db.session.commit()
        self.assertEqual(order.payment_status, "refunded")
        steps = [(h.from_status, h.to_status) for h in orders.status_history(order)]
        self.assertEqual(steps, [
            (None, "pending"),
            ("pending", "processing"),
            ("processing", "shipped"),
            ("shipped", "delivered"),
            ("delivered", "refunded"),
        ])

    def test_cancel_releases_reservation(self):
        order = self._order()
        orders.cancel(order, "customer asked")
        db.session.commit()
        self.assertEqual(order.status, "cancelled")
        self.assertIsNotNone(order.cancelled_at)
        self.assertEqual(self.variant.inventory.reserved, 0)
        self.assertEqual(self.variant.inventory.available, 10)

    def test_terminal_status(self):
        order = self._order()
        orders.cancel(order)
        with self.assertRaises(ValidationError):
            orders.update_status(order, "processing")

    def test_notes_and_payment(self):
        order = self._order()
        orders.add_note(order, "Ligar antes", user=self.admin)
        orders.update_payment_status(order, "paid")
        self.assertIn(f"User {self.admin.id}: Ligar antes", order.internal_notes)
        self.assertIsNotNone(order.paid_at)
        with self.assertRaises(ValidationError):
            orders.add_note(order, "  ")


class CheckoutTests(OrdersTestCase):
    def setUp(self):
        super().setUp()
        self.cart = cart_svc.get_or_create(self.tid, session_id="guest-1")
        cart_svc.add_item(self.cart, self.product.id, 2, self.variant.id)
        db.session.commit()

    def _data(self, **overrides):
        data = {
            "shipping_method_id": self.standard.id,
            "payment_method_id": self.card.id,
            "shipping_address": dict(ADDRESS),
            "customer_email": "ana@example.com",
        }
        data.update(overrides)
        return data

    def test_validation_collects_errors(self):
        result = checkout.validate_checkout(self.cart, {"shipping_address": {"first_name": "Ana"}})
        self.assertFalse(result["valid"])
        self.assertIn("A valid shipping method is required", result["errors"])
        self.assertIn("A valid payment method is required", result["errors"])
        self.assertIn("shipping_address.city is required", result["errors"])
        self.assertIn("customer_email is required", result["errors"])

    def test_valid_checkout(self):
        self.assertEqual(checkout.validate_checkout(self.cart, self._data()), {"valid": True, "errors": []})

    def test_cod_fee_in_totals(self):
        totals = checkout.totals_for(self.cart, self._data(payment_method_id=self.cod.id))
        self.assertEqual(totals["cod_fee"], "5.00")
        self.assertEqual(totals["total"], "67.50")

    def test_cod_hidden_when_disabled(self):
        checkout.update_settings(self.tid, {"cod_enabled": False})
        types = [m.type for m in checkout.list_payment_methods(self.tid)]
        self.assertEqual(types, ["card"])
        result = checkout.validate_checkout(self.cart, self._data(payment_method_id=self.cod.id))
        self.assertIn("Cash on delivery is not enabled", result["errors"])

    def test_shipping_optional_when_disabled(self):
        checkout.update_settings(self.tid, {"shipping_enabled": False})
        result = checkout.validate_checkout(self.cart, self._data(shipping_method_id=None))
        self.assertTrue(result["valid"])

    def test_place_order_from_cart(self):
        order = checkout.create_order_from_cart(self.cart, self._data(payment_method_id=self.cod.id))
        db.session.commit()
        self.assertEqual(order.customer_name, "Ana Souza")
        self.assertEqual(order.shipping, Decimal("12.50"))
        self.assertEqual(order.total, Decimal("67.50"))
        self.assertEqual([i.sku for i in order.items], ["CAN-B"])
        self.assertEqual(self.cart.items, [])
        self.assertEqual(self.variant.inventory.reserved, 2)

    def test_place_order_rejects_invalid(self):
        with self.assertRaises(ValidationError) as cm:
            checkout.create_order_from_cart(self.cart, self._data(customer_email=""))
        self.assertIn("customer_email is required", cm.exception.details)

    def test_settings_validation(self):
        with self.assertRaises(ValidationError):
            checkout.update_settings(self.tid, {"tax_rate": "150"})
        with self.assertRaises(ValidationError):
            checkout.update_settings(self.tid, {"currency": "EURO"})


class CustomerTests(OrdersTestCase):
    def test_orders_share_one_customer(self):
        first = self._order(qty=1)
        second = self._order(qty=1, email="ANA@example.com")
        self.assertEqual(Customer.query.count(), 1)
        self.assertIsNotNone(first.customer_id)
        self.assertEqual(first.customer_id, second.customer_id)
        self.assertEqual(orders.serialize(first)["customer_id"], first.customer_id)
        listed = orders.list_orders(self.tid, customer_id=first.customer_id)
        self.assertEqual(listed["total"], 2)

    def test_checkout_fills_customer_from_address(self):
        cart = cart_svc.get_or_create(self.tid, session_id="guest-2")
        cart_svc.add_item(cart, self.product.id, 1, self.variant.id)
        order = checkout.create_order_from_cart(cart, {
            "shipping_method_id": self.standard.id,
            "payment_method_id": self.card.id,
            "shipping_address": dict(ADDRESS),
            "customer_email": "rita@example.com",
        })
        db.session.commit()
        customer = customers.find_by_email(self.tid, "rita@example.com")
        self.assertEqual(order.customer_id, customer.id)
        self.assertEqual((customer.first_name, customer.last_name), ("Ana", "Souza"))
        self.assertEqual(customer.shipping_address["city"], "São Paulo")

    def test_statistics_and_history(self):
        jan = self._order(qty=1, now=datetime(2026, 1, 10, 9, 0))
        feb = self._order(qty=3, now=datetime(2026, 2, 10, 9, 0))
        customer = jan.customer
        stats = customers.statistics(customer)
        total = jan.total + feb.total
        self.assertEqual(stats["total_orders"], 2)
        self.assertEqual(stats["total_spent"], str(total))
        self.assertEqual(stats["average_order_value"], str((total / 2).quantize(Decimal("0.01"))))
        self.assertEqual(stats["first_order_date"], "2026-01-10T09:00:00")
        self.assertEqual(stats["last_order_date"], "2026-02-10T09:00:00")
        self.assertEqual([o.id for o in customers.order_history(customer)], [feb.id, jan.id])

    def test_statistics_without_orders(self):
        c = customers.create_customer(self.tid, {"email": "nova@example.com"})
        stats = customers.statistics(c)
        self.assertEqual((stats["total_orders"], stats["total_spent"]), (0, "0.00"))
        self.assertIsNone(stats["first_order_date"])

    def test_email_must_be_unique(self):
        customers.create_customer(self.tid, {"email": "bia@example.com", "first_name": "Bia"})
        with self.assertRaises(ConflictError):
            customers.create_customer(self.tid, {"email": "BIA@example.com"})
        with self.assertRaises(ValidationError):
            customers.create_customer(self.tid, {"email": "sem-arroba"})

        other = customers.create_customer(self.tid, {"email": "caio@example.com"})
        with self.assertRaises(ConflictError) as cm:
            customers.update_customer(other, {"email": "bia@example.com"})
        self.assertEqual(cm.exception.message, "Email is already taken")

    def test_delete_is_blocked_by_orders(self):
        customer = self._order().customer
        with self.assertRaises(ValidationError):
            customers.delete_customer(customer)
        lonely = customers.create_customer(self.tid, {"email": "zeca@example.com"})
        customers.delete_customer(lonely)
        db.session.commit()
        self.assertIsNone(customers.find_by_email(self.tid, "zeca@example.com"))

    def test_search_and_tag_filter(self):
        customers.create_customer(self.tid, {"email": "vip@example.com", "company": "Acme", "tags": ["vip", "vip"]})
        customers.create_customer(self.tid, {"email": "comum@example.com"})
        db.session.commit()
        vip = customers.list_customers(self.tid, tag="vip")
        self.assertEqual([c["email"] for c in vip["data"]], ["vip@example.com"])
        self.assertEqual(vip["data"][0]["tags"], ["vip"])
        self.assertEqual(customers.list_customers(self.tid, search="acme")["total"], 1)
        self.assertEqual(customers.list_customers(self.tid, tag="nenhuma")["total"], 0)

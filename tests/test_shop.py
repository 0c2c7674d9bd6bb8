from datetime import datetime, timedelta
from decimal import Decimal

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models_comm import Notification
from storedash.models_shop import Cart
from storedash.services import cart as cart_svc
from storedash.services import categories, inventory, products
from tests.helpers import AppTestCase


class ShopTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.admin = self.make_user(self.tenant, "admin@loja1.com")
        self.product = products.create_product(
            self.tenant.id,
            {
                "name": "Camiseta Básica",
                "base_price": "20.00",
                "status": "published",
                "variants": [
                    {"name": "M", "sku": "TS-M", "price": "25.00", "quantity": 20},
                    {"name": "G", "sku": "TS-G", "quantity": 5},
                ],
            },
        )
        db.session.commit()
        self.medium, self.large = self.product.variants
        self.tid = self.tenant.id


class ProductTests(ShopTestCase):
    def test_slug_is_generated_and_unique(self):
        self.assertEqual(self.product.slug, "camiseta-basica")
        again = products.create_product(self.tid, {"name": "Camiseta Basica", "base_price": "10"})
        self.assertEqual(again.slug, "camiseta-basica-2")

    def test_explicit_duplicate_slug_conflicts(self):
        with self.assertRaises(ConflictError):
            products.create_product(self.tid, {"name": "X", "slug": "camiseta-basica", "base_price": "1"})

    def test_variant_gets_inventory(self):
        self.assertEqual(self.medium.inventory.quantity, 20)
        self.assertEqual(self.medium.inventory.available, 20)
        self.assertEqual(self.large.effective_price, Decimal("20.00"))

    def test_duplicate_sku_conflicts(self):
        with self.assertRaises(ConflictError):
            products.add_variant(self.product, {"name": "M2", "sku": "TS-M"})

    def test_bulk_status(self):
        draft = products.create_product(self.tid, {"name": "Boné", "base_price": "15"})
        changed = products.bulk_update_status(self.tid, [self.product.id, draft.id], "archived")
        self.assertEqual(changed, 2)
        with self.assertRaises(ValidationError):
            products.bulk_update_status(self.tid, [draft.id], "gone")

    def test_published_listing_hides_drafts(self):
        products.create_product(self.tid, {"name": "Rascunho", "base_price": "1"})
        out = products.list_products(self.tid, published_only=True)
        self.assertEqual([p["name"] for p in out["data"]], ["Camiseta Básica"])


class InventoryTests(ShopTestCase):
    def test_adjust_records_history(self):
        inv = inventory.adjust_quantity(self.tid, self.medium.id, -5, "sale", user=self.admin)
        self.assertEqual(inv.quantity, 15)
        self.assertEqual(inv.available, 15)
        history = inventory.adjustment_history(self.tid, self.medium.id)
        self.assertEqual([h.quantity_change for h in history], [-5])

    def test_adjust_cannot_go_negative(self):
        with self.assertRaises(ValidationError):
            inventory.adjust_quantity(self.tid, self.large.id, -6, "damage")

    def test_unknown_reason(self):
        with self.assertRaises(ValidationError):
            inventory.adjust_quantity(self.tid, self.large.id, 1, "magic")

    def test_restock_sets_timestamp(self):
        now = datetime(2026, 3, 1, 9, 0)
        inv = inventory.adjust_quantity(self.tid, self.large.id, 10, "restock", now=now)
        self.assertEqual(inv.last_restocked_at, now)

    def test_low_stock_alert_goes_to_inventory_readers(self):
        inventory.adjust_quantity(self.tid, self.medium.id, -12, "sale")
        db.session.commit()
        alerts = Notification.query.filter_by(user_id=self.admin.id, category="inventory").all()
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].title, "Low stock")

    def test_reserve_and_release(self):
        inv = inventory.reserve_stock(self.tid, self.large.id, 3)
        self.assertEqual((inv.reserved, inv.available), (3, 2))
        with self.assertRaises(ConflictError):
            inventory.reserve_stock(self.tid, self.large.id, 3)
        inv = inventory.release_stock(self.tid, self.large.id, 3)
        self.assertEqual((inv.reserved, inv.available), (0, 5))
        with self.assertRaises(ValidationError):
            inventory.release_stock(self.tid, self.large.id, 1)

    def test_backorder_allows_overselling(self):
        inventory.update_settings(self.large.inventory, {"allow_backorder": True})
        self.assertTrue(inventory.check_availability(self.tid, self.large.id, 50)["available"])
        inv = inventory.reserve_stock(self.tid, self.large.id, 8)
        self.assertEqual(inv.available, -3)

    def test_availability_for_unknown_variant(self):
        self.assertEqual(
            inventory.check_availability(self.tid, 9999, 1),
            {"available": False, "current_stock": 0},
        )

    def test_low_stock_listing(self):
        rows = inventory.low_stock_items(self.tid)
        self.assertEqual([r.variant_id for r in rows], [self.large.id])


class CartTests(ShopTestCase):
    def test_add_merges_same_line(self):
        cart = cart_svc.get_or_create(self.tid, session_id="guest-1")
        cart_svc.add_item(cart, self.product.id, 1, self.medium.id)
        cart_svc.add_item(cart, self.product.id, 2, self.medium.id)
        self.assertEqual(len(cart.items), 1)
        self.assertEqual(cart_svc.item_count(cart), 3)
        self.assertEqual(cart_svc.subtotal(cart), Decimal("75.00"))

    def test_requires_session_or_user(self):
        with self.assertRaises(ValidationError):
            cart_svc.get_or_create(self.tid)

    def test_draft_product_rejected(self):
        draft = products.create_product(self.tid, {"name": "Rascunho", "base_price": "1"})
        cart = cart_svc.get_or_create(self.tid, session_id="guest-1")
        with self.assertRaises(ValidationError):
            cart_svc.add_item(cart, draft.id, 1)

    def test_unknown_variant(self):
        cart = cart_svc.get_or_create(self.tid, session_id="guest-1")
        with self.assertRaises(NotFoundError):
            cart_svc.add_item(cart, self.product.id, 1, 9999)

    def test_update_to_zero_removes_line(self):
        cart = cart_svc.get_or_create(self.tid, session_id="guest-1")
        cart_svc.add_item(cart, self.product.id, 1, self.medium.id)
        cart_svc.update_quantity(cart, cart.items[0].id, 0)
        self.assertEqual(cart.items, [])

    def test_validate_inventory_reports_shortage(self):
        cart = cart_svc.get_or_create(self.tid, session_id="guest-1")
        cart_svc.add_item(cart, self.product.id, 7, self.large.id)
        problems = cart_svc.validate_inventory(cart)
        self.assertEqual(len(problems), 1)
        self.assertEqual(problems[0]["available"], 5)

    def test_merge_guest_into_user_cart(self):
        guest = cart_svc.get_or_create(self.tid, session_id="guest-1")
        cart_svc.add_item(guest, self.product.id, 2, self.medium.id)
        mine = cart_svc.get_or_create(self.tid, user_id=self.admin.id)
        cart_svc.add_item(mine, self.product.id, 1, self.medium.id)
        guest_id = guest.id

        merged = cart_svc.merge_carts(guest, mine)
        db.session.commit()
        self.assertEqual(merged.items[0].quantity, 3)
        self.assertIsNone(db.session.get(Cart, guest_id))

    def test_expired_cart_is_replaced(self):
        old = cart_svc.get_or_create(self.tid, session_id="guest-1", now=datetime(2020, 1, 1))
        fresh = cart_svc.get_or_create(self.tid, session_id="guest-1", now=datetime(2026, 1, 1))
        self.assertNotEqual(old.id, fresh.id)
        self.assertEqual(fresh.expires_at, datetime(2026, 1, 1) + timedelta(days=30))

    def test_cleanup_expired_carts(self):
        old = cart_svc.get_or_create(self.tid, session_id="old", now=datetime(2020, 1, 1))
        cart_svc.add_item(old, self.product.id, 1, self.medium.id)
        cart_svc.get_or_create(self.tid, session_id="new", now=datetime(2026, 1, 1))
        db.session.commit()

        deleted = cart_svc.cleanup_expired_carts(now=datetime(2026, 1, 2))
        db.session.commit()
        self.assertEqual(deleted, 1)
        self.assertEqual([c.session_id for c in Cart.query.all()], ["new"])


class CategoryTests(ShopTestCase):
    def setUp(self):
        super().setUp()
        self.clothes = categories.create_category(self.tid, {"name": "Roupas"})
        self.shirts = categories.create_category(self.tid, {"name": "Camisetas", "parent_id": self.clothes.id})
        db.session.commit()

    def test_tree_counts_published_products(self):
        categories.set_product_categories(self.product, [self.shirts.id])
        products.create_product(self.tid, {"name": "Rascunho", "base_price": "1", "category_ids": [self.shirts.id]})
        db.session.commit()
        tree = categories.list_categories(self.tid)
        self.assertEqual([c["slug"] for c in tree], ["roupas"])
        child = tree[0]["children"][0]
        self.assertEqual((child["slug"], child["product_count"]), ("camisetas", 1))

    def test_hidden_parent_hides_children_in_store(self):
        categories.update_category(self.clothes, {"is_visible": False})
        self.assertEqual(categories.list_categories(self.tid, visible_only=True), [])
        self.assertEqual(len(categories.list_categories(self.tid)), 1)

    def test_slug_conflict_and_cycle(self):
        with self.assertRaises(ConflictError):
            categories.create_category(self.tid, {"name": "Outra", "slug": "roupas"})
        again = categories.create_category(self.tid, {"name": "Roupas"})
        self.assertEqual(again.slug, "roupas-2")
        with self.assertRaises(ValidationError):
            categories.update_category(self.clothes, {"parent_id": self.shirts.id})
        with self.assertRaises(ValidationError):
            categories.update_category(self.clothes, {"parent_id": self.clothes.id})

    def test_delete_with_subcategories_is_refused(self):
        with self.assertRaises(ValidationError):
            categories.delete_category(self.clothes)
        categories.set_product_categories(self.product, [self.shirts.id])
        categories.delete_category(self.shirts)
        db.session.commit()
        self.assertEqual(self.product.categories, [])
        categories.delete_category(self.clothes)

    def test_filter_products_by_category(self):
        mug = products.create_product(self.tid, {"name": "Caneca", "base_price": "12", "status": "published"})
        categories.set_product_categories(self.product, [self.shirts.id])
        db.session.commit()
        by_id = products.list_products(self.tid, category_id=self.shirts.id)
        self.assertEqual([p["name"] for p in by_id["data"]], ["Camiseta Básica"])
        self.assertEqual(by_id["data"][0]["categories"][0]["slug"], "camisetas")
        by_slug = products.list_products(self.tid, category_slug="camisetas", published_only=True)
        self.assertEqual(by_slug["total"], 1)
        self.assertEqual(products.list_products(self.tid)["total"], 2)
        self.assertNotIn(mug.id, [p["id"] for p in by_id["data"]])

    def test_unknown_category_ids(self):
        with self.assertRaises(NotFoundError) as cm:
            categories.set_product_categories(self.product, [self.shirts.id, 999])
        self.assertEqual(cm.exception.details, {"ids": [999]})

    def test_related_products_share_a_category(self):
        polo = products.create_product(self.tid, {
            "name": "Polo", "base_price": "40", "status": "published", "category_ids": [self.shirts.id],
        })
        products.create_product(self.tid, {"name": "Meia", "base_price": "5", "status": "published"})
        products.create_product(self.tid, {"name": "Regata", "base_price": "30", "category_ids": [self.shirts.id]})
        categories.set_product_categories(self.product, [self.shirts.id, self.clothes.id])
        db.session.commit()
        self.assertEqual([p.id for p in categories.related_products(self.product)], [polo.id])
        self.assertEqual(categories.get_by_slug(self.tid, "camisetas").id, self.shirts.id)
        with self.assertRaises(NotFoundError):
            categories.get_by_slug(self.tid, "nada")

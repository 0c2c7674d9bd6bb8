import unittest
from datetime import datetime

from storedash.errors import ConflictError, ForbiddenError, RateLimitError, ValidationError
from storedash.extensions import db
from storedash.models import ActivityLog
from storedash.models_site import DashboardMenu
from storedash.services import activity_log, blog, checkout, dashboard, menus, permissions, products, search, widgets
from tests.helpers import AppTestCase


def _menu(id, key, parent_id=None, order=0, **kw):
    return DashboardMenu(id=id, key=key, label=key.title(), parent_id=parent_id, order=order, **kw)


class MenuFilterTests(unittest.TestCase):
    def setUp(self):
        self.items = [
            _menu(1, "shop", order=2, required_permissions=["products:read"]),
            _menu(2, "products", parent_id=1, required_permissions=["products:read"]),
            _menu(3, "stock", parent_id=1, feature_flag="inventory_enabled"),
            _menu(4, "admin", order=1, required_roles=["admin"]),
            _menu(5, "lost", parent_id=99),
        ]

    def test_role_filter(self):
        keys = [m.key for m in menus.filter_by_role(self.items, ["viewer"])]
        self.assertNotIn("admin", keys)
        self.assertIn("admin", [m.key for m in menus.filter_by_role(self.items, ["admin"])])

    def test_permission_filter_uses_wildcards(self):
        self.assertEqual(len(menus.filter_by_permission(self.items, ["*:read"])), 5)
        keys = [m.key for m in menus.filter_by_permission(self.items, ["orders:*"])]
        self.assertEqual(keys, ["stock", "admin", "lost"])

    def test_feature_flags_need_settings(self):
        keys = [m.key for m in menus.filter_by_feature_flags(self.items, None)]
        self.assertNotIn("stock", keys)

    def test_hierarchy_puts_orphans_at_root(self):
        tree = menus.build_hierarchy(self.items)
        self.assertEqual([n["key"] for n in tree], ["lost", "admin", "shop"])
        shop = tree[2]
        self.assertEqual([c["key"] for c in shop["children"]], ["products", "stock"])

    def test_hidden_parent_hides_children(self):
        visible = [m for m in self.items if m.key != "shop"]
        keys = [m.key for m in menus.cascade_visibility(visible, self.items)]
        self.assertEqual(keys, ["admin", "lost"])


class MenuCrudTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.tid = self.tenant.id
        self.root = menus.create_menu(self.tid, {"key": "shop", "label": "Loja", "order": 1})
        self.child = menus.create_menu(self.tid, {"key": "orders", "label": "Pedidos", "parent_id": self.root.id})
        db.session.commit()

    def test_duplicate_key(self):
        with self.assertRaises(ConflictError):
            menus.create_menu(self.tid, {"key": "shop", "label": "Outra"})

    def test_cycle_is_rejected(self):
        with self.assertRaises(ValidationError):
            menus.update_menu(self.root, {"parent_id": self.child.id})
        with self.assertRaises(ValidationError):
            menus.update_menu(self.root, {"parent_id": self.root.id})

    def test_delete_with_children(self):
        with self.assertRaises(ValidationError):
            menus.delete_menu(self.root)
        menus.delete_menu(self.child)
        menus.delete_menu(self.root)
        self.assertEqual(menus.list_all(self.tid), [])

    def test_unknown_feature_flag(self):
        with self.assertRaises(ValidationError):
            menus.create_menu(self.tid, {"key": "x", "label": "X", "feature_flag": "warp_drive"})

    def test_reorder(self):
        rows = menus.reorder(self.tid, [{"id": self.root.id, "order": 5}, {"id": self.child.id, "order": 0}])
        self.assertEqual([m.key for m in rows], ["orders", "shop"])

    def test_user_menus_respect_roles_and_flags(self):
        menus.create_menu(self.tid, {"key": "stock", "label": "Estoque", "feature_flag": "inventory_enabled"})
        menus.create_menu(self.tid, {"key": "roles", "label": "Papéis", "required_roles": ["admin"]})
        viewer = self.make_user(self.tenant, "viewer@loja1.com", role="viewer")
        self.assertEqual([m["key"] for m in menus.user_menus(viewer)], ["shop"])

        checkout.update_settings(self.tid, {"track_inventory": True})
        admin = self.make_user(self.tenant, "admin@loja1.com")
        keys = [m["key"] for m in menus.user_menus(admin)]
        self.assertEqual(sorted(keys), ["roles", "shop", "stock"])


class WidgetTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.admin = self.make_user(self.tenant, "admin@loja1.com")
        self.revenue = widgets.create_widget({
            "key": "revenue-chart",
            "name": "Revenue Chart",
            "description": "Shows sales over time",
            "category": "analytics",
            "tags": ["sales", "chart"],
            "use_cases": ["track revenue"],
            "data_requirements": {"permissions": ["orders:read"]},
        })
        self.users = widgets.create_widget({
            "key": "user-list",
            "name": "User List",
            "description": "Table of users",
            "category": "people",
        })
        db.session.commit()

    def test_scoring(self):
        self.assertEqual(widgets.score_widget(self.revenue, "revenue"), 20)
        self.assertEqual(widgets.score_widget(self.users, "revenue"), 0)

    def test_search_by_intent(self):
        hits = widgets.search_by_intent("revenue", tenant_id=self.tenant.id)
        self.assertEqual([h["widget"]["key"] for h in hits], ["revenue-chart"])
        self.assertEqual(hits[0]["relevance"], 40)
        with self.assertRaises(ValidationError):
            widgets.search_by_intent("  ")

    def test_search_hides_widgets_without_permission(self):
        role = permissions.create_role(self.tenant.id, "content", permissions=["blog:read"])
        editor = self.make_user(self.tenant, "editor@loja1.com", role=role.name)
        self.assertEqual(widgets.search_by_intent("revenue", tenant_id=self.tenant.id, user=editor), [])

    def test_config_schema(self):
        with self.assertRaises(ValidationError):
            widgets.validate_config_schema({"properties": {}})
        with self.assertRaises(ValidationError):
            widgets.validate_config_schema({"type": "object"})
        schema = {"type": "object", "properties": {"days": {"type": "integer"}}}
        self.assertEqual(widgets.validate_config_schema(schema), schema)

    def test_duplicate_key(self):
        with self.assertRaises(ValidationError):
            widgets.create_widget({"key": "user-list", "name": "Again"})

    def test_personal_layout_overrides_global(self):
        shared = widgets.create_layout(self.admin, {"scope": "global", "name": "Loja"})
        widgets.add_widget(self.admin, shared, {"widget_key": "user-list"})
        self.assertEqual(widgets.layout_for(self.admin).id, shared.id)

        mine = widgets.create_layout(self.admin, {})
        first = widgets.add_widget(self.admin, mine, {"widget_key": "revenue-chart", "col_span": 8})
        second = widgets.add_widget(self.admin, mine, {"widget_key": "user-list"})
        self.assertEqual((first.position, second.position), (0, 1))
        self.assertEqual(widgets.layout_for(self.admin).id, mine.id)
        self.assertEqual(widgets.available_widgets(self.admin), [])

        widgets.reorder_widgets(mine, [second.id, first.id])
        self.assertEqual([i.widget_key for i in mine.widgets], ["user-list", "revenue-chart"])

        self.assertEqual(widgets.reset_user_layout(self.admin).id, shared.id)

    def test_add_widget_checks_permissions_and_span(self):
        viewer = self.make_user(self.tenant, "viewer@loja1.com", role="viewer")
        layout = widgets.create_layout(viewer, {})
        with self.assertRaises(ValidationError):
            widgets.add_widget(viewer, layout, {"widget_key": "user-list", "col_span": 13})
        role = permissions.create_role(self.tenant.id, "content", permissions=["blog:read"])
        editor = self.make_user(self.tenant, "editor@loja1.com", role=role.name)
        with self.assertRaises(ForbiddenError):
            widgets.add_widget(editor, widgets.create_layout(editor, {}), {"widget_key": "revenue-chart"})


class SearchTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.admin = self.make_user(self.tenant, "admin@loja1.com", name="Camila Admin")
        products.create_product(self.tenant.id, {"name": "Camiseta", "base_price": "10", "sku": "CAM-1"})
        products.create_product(self.tenant.id, {"name": "Caneca Camiseta", "base_price": "10"})
        blog.create_post(self.tenant.id, {"title": "Como lavar camiseta"})
        db.session.commit()

    def test_results_are_ranked(self):
        out = search.search(self.admin, "camiseta")
        titles = [r["title"] for r in out["results"]]
        self.assertEqual(titles[0], "Camiseta")
        self.assertEqual(out["total"], 3)
        self.assertEqual(out["results"][0]["relevance_score"], 100)

    def test_type_filter_and_sorting(self):
        out = search.search(self.admin, "cam", type="products", sort_by="name")
        self.assertEqual([r["title"] for r in out["results"]], ["Camiseta", "Caneca Camiseta"])
        with self.assertRaises(ValidationError):
            search.search(self.admin, "cam", type="invoices")
        with self.assertRaises(ValidationError):
            search.search(self.admin, "   ")

    def test_sensitive_search_is_audited(self):
        search.search(self.admin, "camila", type="users")
        search.search(self.admin, "camiseta", type="posts")
        db.session.commit()
        logs = ActivityLog.query.filter_by(action="search").all()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].meta, {"query": "camila", "types": ["users"]})

    def test_providers_follow_permissions(self):
        role = permissions.create_role(self.tenant.id, "content", permissions=["blog:read"])
        editor = self.make_user(self.tenant, "editor@loja1.com", role=role.name)
        out = search.quick_search(editor, "camiseta")
        self.assertEqual([r["entity_type"] for r in out], ["posts"])

    def test_sliding_window_limiter(self):
        limiter = search.SlidingWindowLimiter(window=60)
        self.assertEqual(limiter.hit("k", 2, now=0), 1)
        limiter.hit("k", 2, now=1)
        with self.assertRaises(RateLimitError) as cm:
            limiter.hit("k", 2, now=2)
        self.assertEqual(cm.exception.details["retry_after"], 59)
        self.assertEqual(limiter.hit("k", 2, now=61), 1)

    def test_limiter_forgets_idle_keys(self):
        limiter = search.SlidingWindowLimiter(window=60)
        for user_id in range(5):
            limiter.hit(user_id, 3, now=0)
        self.assertEqual(len(limiter), 5)
        limiter.hit("late", 3, now=120)
        self.assertEqual(len(limiter), 1)

    def test_enforce_rate_limit_uses_config(self):
        self.app.config["SEARCH_RATE_LIMIT"] = 1
        search.enforce_rate_limit(self.admin, now=0)
        with self.assertRaises(RateLimitError):
            search.enforce_rate_limit(self.admin, now=1)


class ActivityAndStatsTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.admin = self.make_user(self.tenant, "admin@loja1.com")

    def test_purge_old_logs(self):
        activity_log.log_activity(self.tenant.id, "login", user=self.admin, now=datetime(2025, 1, 1))
        activity_log.log_activity(self.tenant.id, "login", user=self.admin, now=datetime(2026, 3, 1))
        db.session.commit()
        self.assertEqual(activity_log.purge_activity_logs(now=datetime(2026, 3, 2), days=90), 1)
        out = activity_log.list_logs(self.tenant.id, action="log")
        self.assertEqual([e["created_at"] for e in out["data"]], ["2026-03-01T00:00:00"])

    def test_stats_blocks_follow_permissions(self):
        blog.create_post(self.tenant.id, {"title": "Publicado", "status": "published"})
        blog.create_post(self.tenant.id, {"title": "Rascunho"})
        role = permissions.create_role(self.tenant.id, "content", permissions=["blog:read"])
        editor = self.make_user(self.tenant, "editor@loja1.com", role=role.name)

        full = dashboard.stats(self.tenant, self.admin)
        self.assertEqual(set(full), {"orders", "inventory", "content", "users", "notifications"})
        self.assertEqual(full["users"], {"active": 2})

        limited = dashboard.stats(self.tenant, editor)
        self.assertEqual(set(limited), {"content", "notifications"})
        self.assertEqual(limited["content"], {"published_posts": 1, "draft_posts": 1})

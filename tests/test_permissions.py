import unittest

from storedash.errors import ConflictError, ValidationError
from storedash.extensions import db
from storedash.models import Role
from storedash.services import permissions as perms
from tests.helpers import AppTestCase


class PermissionMatchTests(unittest.TestCase):
    def test_exact_and_wildcards(self):
        self.assertTrue(perms.permission_matches({"products:read"}, "products:read"))
        self.assertTrue(perms.permission_matches({"*:*"}, "orders:delete"))
        self.assertTrue(perms.permission_matches({"orders:*"}, "orders:update"))
        self.assertTrue(perms.permission_matches({"*:read"}, "blog:read"))

    def test_no_match(self):
        self.assertFalse(perms.permission_matches({"orders:*"}, "products:read"))
        self.assertFalse(perms.permission_matches({"*:read"}, "blog:update"))
        self.assertFalse(perms.permission_matches(set(), "blog:read"))


class RoleTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()

    def test_new_tenant_gets_system_roles(self):
        names = [r.name for r in perms.list_roles(self.tenant.id)]
        self.assertEqual(names, ["admin", "manager", "viewer"])
        admin = Role.query.filter_by(tenant_id=self.tenant.id, name="admin").first()
        self.assertTrue(admin.is_system)
        self.assertEqual(admin.permission_names, {"*:*"})

    def test_user_permissions_follow_role(self):
        viewer = self.make_user(self.tenant, "viewer@loja1.com", role="viewer")
        self.assertTrue(perms.user_has_permission(viewer, "orders:read"))
        self.assertFalse(perms.user_has_permission(viewer, "orders:update"))
        self.assertEqual(perms.user_roles(viewer), ["viewer"])

    def test_superadmin_is_always_allowed(self):
        root = self.make_user(self.tenant, "root@loja1.com", role=None, is_superadmin=True)
        self.assertTrue(perms.user_has_permission(root, "anything:delete"))
        self.assertIn("superadmin", perms.user_roles(root))

    def test_custom_role_assign_and_revoke(self):
        role = perms.create_role(self.tenant.id, "editor", "Content", ["blog:read", "blog:update"])
        db.session.commit()
        perms.assign_permission(role, "landing:*")
        perms.revoke_permission(role, "blog:update")
        db.session.commit()
        self.assertEqual(role.permission_names, {"blog:read", "landing:*"})

    def test_duplicate_role_name_conflicts(self):
        with self.assertRaises(ConflictError):
            perms.create_role(self.tenant.id, "admin")

    def test_system_role_cannot_be_deleted(self):
        admin = Role.query.filter_by(tenant_id=self.tenant.id, name="admin").first()
        with self.assertRaises(ValidationError):
            perms.delete_role(admin)

    def test_invalid_permission_name(self):
        with self.assertRaises(ValidationError):
            perms.validate_permission_name("no-colon")

    def test_users_with_permission(self):
        admin = self.make_user(self.tenant, "admin@loja1.com")
        self.make_user(self.tenant, "viewer@loja1.com", role="viewer")
        holders = perms.users_with_permission(self.tenant.id, "orders:update")
        self.assertEqual([u.id for u in holders], [admin.id])

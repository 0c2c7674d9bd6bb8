import os
import unittest

from storedash import create_app
from storedash.extensions import db
from storedash.services import search
from storedash.services.tenants import create_tenant, create_user


class AppTestCase(unittest.TestCase):
    """App em SQLite em memória com todas as tabelas criadas."""

    def setUp(self):
        self._old_db_url = os.environ.get("DATABASE_URL")
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        self.app = create_app(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
                "SQLALCHEMY_TRACK_MODIFICATIONS": False,
                "SECRET_KEY": "test",
            }
        )
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()
        search.limiter.reset()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()
        if self._old_db_url is None:
            os.environ.pop("DATABASE_URL", None)
        else:
            os.environ["DATABASE_URL"] = self._old_db_url

    # ---------------- fábricas ----------------
    def make_tenant(self, name: str = "Loja 1", slug: str = "loja1"):
        tenant = create_tenant(name, slug)
        db.session.commit()
        return tenant

    def make_user(self, tenant, email: str, role: str | None = "admin", password: str = "secret123", **kwargs):
        user = create_user(tenant, email, password, role_name=role, **kwargs)
        db.session.commit()
        return user

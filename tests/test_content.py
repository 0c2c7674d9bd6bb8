import unittest
from datetime import datetime

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.services import blog, landing
from tests.helpers import AppTestCase


class ExcerptTests(unittest.TestCase):
    def test_strips_markdown(self):
        text = "# Título\n\nTexto com **negrito** e [link](http://x.io).\n\n```\ncode\n```"
        self.assertEqual(blog.generate_excerpt(text), "Título Texto com negrito e link.")

    def test_cuts_at_word_boundary(self):
        text = "palavra " * 40
        excerpt = blog.generate_excerpt(text, max_length=30)
        self.assertTrue(excerpt.endswith("..."))
        self.assertEqual(excerpt, "palavra palavra palavra...")


class BlogTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.tid = self.tenant.id
        self.author = self.make_user(self.tenant, "autor@loja1.com")

    def test_create_draft_and_publish(self):
        post = blog.create_post(self.tid, {"title": "Olá Mundo", "content": "Primeiro post"}, author=self.author)
        self.assertEqual(post.slug, "ola-mundo")
        self.assertEqual(post.excerpt, "Primeiro post")
        self.assertIsNone(post.published_at)

        when = datetime(2026, 2, 1, 12, 0)
        blog.publish(post, now=when)
        self.assertEqual((post.status, post.published_at), ("published", when))
        blog.unpublish(post)
        self.assertEqual(post.status, "draft")
        self.assertEqual(post.published_at, when)

    def test_published_listing(self):
        blog.create_post(self.tid, {"title": "Rascunho"})
        blog.create_post(self.tid, {"title": "Novidades", "status": "published", "tags": "loja, promo"})
        db.session.commit()
        out = blog.list_published(self.tid)
        self.assertEqual([p["title"] for p in out["data"]], ["Novidades"])
        tagged = blog.list_posts(self.tid, tag="promo")
        self.assertEqual([p["tags"] for p in tagged["data"]], [["loja", "promo"]])

    def test_categories_and_tags(self):
        blog.create_post(self.tid, {"title": "A", "status": "published", "category": "Dicas", "tags": ["moda", "verão"]})
        blog.create_post(self.tid, {"title": "B", "category": "Dicas", "tags": ["moda"]})
        blog.create_post(self.tid, {"title": "C", "status": "published", "category": "Notícias"})
        db.session.commit()
        self.assertEqual(
            [(c["name"], c["post_count"]) for c in blog.list_categories(self.tid)],
            [("Dicas", 2), ("Notícias", 1)],
        )
        self.assertEqual([t["post_count"] for t in blog.list_tags(self.tid, published_only=True)], [1, 1])

        # renomear para uma existente junta as duas
        self.assertEqual(blog.rename_category(self.tid, "Notícias", "Dicas"), 1)
        self.assertEqual([c["post_count"] for c in blog.list_categories(self.tid)], [3])
        self.assertEqual(blog.rename_tag(self.tid, "verão", "moda"), 1)
        self.assertEqual(blog.list_tags(self.tid), [{"name": "moda", "slug": "moda", "post_count": 2}])
        self.assertEqual(blog.remove_tag(self.tid, "moda"), 2)
        self.assertEqual(blog.list_tags(self.tid), [])
        with self.assertRaises(NotFoundError):
            blog.remove_category(self.tid, "Vazia")

    def test_slug_validation_suggests_alternatives(self):
        blog.create_post(self.tid, {"title": "Novidades"})
        result = blog.validate_slug(self.tid, "novidades")
        self.assertFalse(result["available"])
        self.assertEqual(result["suggestions"], ["novidades-1", "novidades-2", "novidades-3"])
        self.assertTrue(blog.validate_slug(self.tid, "outro")["available"])

    def test_update_slug_conflict(self):
        blog.create_post(self.tid, {"title": "Primeiro"})
        second = blog.create_post(self.tid, {"title": "Segundo"})
        with self.assertRaises(ConflictError):
            blog.update_post(second, {"slug": "primeiro"})

    def test_update_content_refreshes_excerpt(self):
        post = blog.create_post(self.tid, {"title": "Post", "content": "antigo"})
        blog.update_post(post, {"content": "novo *texto*"})
        self.assertEqual(post.excerpt, "novo texto")

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            blog.create_post(self.tid, {"title": "X", "status": "scheduled"})


class LandingTests(AppTestCase):
    SECTIONS = [
        {"id": "top", "type": "hero", "data": {"headline": "Bem-vindo"}},
        {"id": "perks", "type": "features", "data": {"features": [{"title": "Frete grátis"}]}},
        {"id": "end", "type": "cta", "visible": False, "data": {}},
    ]

    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.tid = self.tenant.id

    def test_section_validation(self):
        with self.assertRaises(ValidationError) as cm:
            landing.validate_sections([
                {"id": "a", "type": "hero", "data": {}},
                {"id": "a", "type": "carousel"},
                {"id": "b", "type": "stats", "data": {"stats": "many"}},
            ])
        problems = {d["index"]: d["errors"] for d in cm.exception.details}
        self.assertEqual(problems[0], ["data.headline is required"])
        self.assertIn("duplicate section id 'a'", problems[1])
        self.assertIn("unknown section type 'carousel'", problems[1])
        self.assertEqual(problems[2], ["data.stats must be a list"])

    def test_create_and_reorder(self):
        page = landing.create_page(self.tid, {"title": "Home", "sections": self.SECTIONS})
        self.assertEqual(page.slug, "home")
        landing.reorder_sections(page, ["end", "top", "perks"])
        self.assertEqual([s["id"] for s in page.sections], ["end", "top", "perks"])
        with self.assertRaises(ValidationError):
            landing.reorder_sections(page, ["top", "perks"])

    def test_public_serialization_hides_invisible(self):
        page = landing.create_page(self.tid, {"title": "Home", "sections": self.SECTIONS})
        public = landing.serialize(page, public=True)
        self.assertEqual([s["id"] for s in public["sections"]], ["top", "perks"])

    def test_explicit_slug_conflict(self):
        landing.create_page(self.tid, {"title": "Home"})
        with self.assertRaises(ConflictError):
            landing.create_page(self.tid, {"title": "Outra", "slug": "home"})

    def test_device_type(self):
        self.assertEqual(landing.device_type("Mozilla/5.0 (iPad; CPU OS 17_0)"), "tablet")
        self.assertEqual(landing.device_type("Mozilla/5.0 (Linux; Android 14) Mobile Safari"), "mobile")
        self.assertEqual(landing.device_type("Mozilla/5.0 (Linux; Android 14) Safari"), "tablet")
        self.assertEqual(landing.device_type("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)"), "mobile")
        self.assertEqual(landing.device_type("Mozilla/5.0 (X11; Linux x86_64)"), "desktop")
        self.assertEqual(landing.device_type(None), "desktop")

    def test_analytics(self):
        page = landing.create_page(self.tid, {"title": "Home", "is_published": True})
        now = datetime(2026, 3, 10, 12, 0)
        landing.record_view(page, session_id="s1", referrer="https://google.com", now=datetime(2026, 3, 9, 8, 0))
        landing.record_view(page, session_id="s1", user_agent="iPhone", now=datetime(2026, 3, 9, 9, 0))
        landing.record_view(page, session_id="s2", referrer="https://google.com", now=datetime(2026, 3, 10, 9, 0))
        landing.record_view(page, session_id="s3", now=datetime(2025, 12, 1))
        db.session.commit()

        stats = landing.analytics(page, 30, now=now)
        self.assertEqual(stats["total_views"], 3)
        self.assertEqual(stats["unique_sessions"], 2)
        self.assertEqual(stats["by_device"], {"desktop": 2, "mobile": 1})
        self.assertEqual(stats["by_day"], [
            {"date": "2026-03-09", "views": 2},
            {"date": "2026-03-10", "views": 1},
        ])
        self.assertEqual(stats["top_referrers"], [{"referrer": "https://google.com", "views": 2}])

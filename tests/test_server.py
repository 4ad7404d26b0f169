import copy
import http.client
import json
import shutil
import sqlite3
import tempfile
import threading
import unittest
from pathlib import Path
from unittest import mock

import requests

from cardkit.client import CardClient
from cardkit.config import DEFAULT_CONFIG
from cardkit.screenshot import ScreenshotError
from cardkit.server import make_server
from cardkit.views import SqliteViewStore

FAKE_PNG = b"\x89PNG\r\n\x1a\nfake"


class BrokenStore:
    def get(self, slug):
        raise sqlite3.OperationalError("database is locked")

    def incr(self, slug):
        raise sqlite3.OperationalError("database is locked")


class ServerTestCase(unittest.TestCase):
    """Runs a real server on an ephemeral port for each test class."""

    @classmethod
    def setUpClass(cls):
        cls.tmp = Path(tempfile.mkdtemp())
        templates = cls.tmp / "card-templates"
        templates.mkdir()
        (templates / "ipo.html").write_text("<h1>{{ company.name }}</h1>{{{ body }}}", encoding="utf-8")
        css = cls.tmp / "universal-card.css"
        css.write_text(".shot-canvas h1 { font-size: 40px; }", encoding="utf-8")

        config = copy.deepcopy(DEFAULT_CONFIG)
        config["templates_dir"] = str(templates)
        config["universal_css"] = str(css)
        config["views_db"] = str(cls.tmp / "views.db")

        cls.store = SqliteViewStore(cls.tmp / "views.db")
        cls.server = make_server(config, "127.0.0.1", 0, store=cls.store)
        cls.thread = threading.Thread(target=cls.server.serve_forever, daemon=True)
        cls.thread.start()
        host, port = cls.server.server_address[:2]
        cls.base = f"http://{host}:{port}"

    @classmethod
    def tearDownClass(cls):
        cls.server.shutdown()
        cls.server.server_close()
        cls.store.close()
        shutil.rmtree(cls.tmp)

    def url(self, path):
        return f"{self.base}{path}"


class TestViewsApi(ServerTestCase):
    """Tests for /api/views/{slug}."""

    def test_get_unknown_slug(self):
        """GET returns 0 for a slug never counted."""
        resp = requests.get(self.url("/api/views/never-seen"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"views": 0})

    def test_post_increments_by_one(self):
        """POST increments the counter by exactly 1."""
        self.assertEqual(requests.post(self.url("/api/views/hello-world")).json(), {"views": 1})
        self.assertEqual(requests.post(self.url("/api/views/hello-world")).json(), {"views": 2})
        self.assertEqual(requests.get(self.url("/api/views/hello-world")).json(), {"views": 2})

    def test_slug_is_url_decoded(self):
        """Percent-encoded slugs are decoded before counting."""
        requests.post(self.url("/api/views/%E4%B8%AD%E6%96%87"))
        self.assertEqual(self.store.get("中文"), 1)

    def test_missing_slug(self):
        """An empty slug is a 400."""
        resp = requests.post(self.url("/api/views/"))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Slug is required"})

    def test_store_failure(self):
        """Store errors become 500 with a message."""
        api = self.server.api
        original = api._store
        api._store = BrokenStore()
        try:
            resp = requests.get(self.url("/api/views/x"))
            self.assertEqual(resp.status_code, 500)
            self.assertEqual(resp.json(), {"error": "Failed to fetch views"})
            resp = requests.post(self.url("/api/views/x"))
            self.assertEqual(resp.status_code, 500)
            self.assertEqual(resp.json(), {"error": "Failed to increment views"})
        finally:
            api._store = original


class TestCardApi(ServerTestCase):
    """Tests for the /api/card/* endpoints."""

    def test_markdown(self):
        """POST markdown returns converted HTML."""
        resp = requests.post(self.url("/api/card/markdown"), json={"markdown": "# Hi"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"html": "<h1>Hi</h1>"})

    def test_markdown_invalid_json(self):
        """Invalid JSON is treated as an empty body."""
        resp = requests.post(
            self.url("/api/card/markdown"),
            data="not json",
            headers={"Content-Type": "application/json"},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"html": ""})

    def test_markdown_bad_content_length(self):
        """A non-numeric Content-Length is read as an empty body."""
        host, port = self.server.server_address[:2]
        conn = http.client.HTTPConnection(host, port, timeout=10)
        try:
            conn.putrequest("POST", "/api/card/markdown")
            conn.putheader("Content-Type", "application/json")
            conn.putheader("Content-Length", "abc")
            conn.putheader("Connection", "close")
            conn.endheaders()
            resp = conn.getresponse()
            self.assertEqual(resp.status, 200)
            self.assertEqual(json.loads(resp.read()), {"html": ""})
        finally:
            conn.close()

    def test_render(self):
        """POST render returns inline-styled HTML."""
        resp = requests.post(self.url("/api/card/render"), json={"markdown": "# Hi", "engine": "rich"})
        self.assertEqual(resp.status_code, 200)
        html = resp.json()["html"]
        self.assertTrue(html.startswith("<section"))
        self.assertIn("Hi", html)

    def test_render_unknown_engine(self):
        resp = requests.post(self.url("/api/card/render"), json={"markdown": "x", "engine": "pandoc"})
        self.assertEqual(resp.status_code, 400)

    def test_schema(self):
        """POST schema returns rendered HTML."""
        schema = {"body": {"elements": [{"tag": "markdown", "content": "价格 ${p}"}]}}
        resp = requests.post(self.url("/api/card/schema"), json={"schema": schema, "variables": {"p": "9.9"}})
        self.assertEqual(resp.status_code, 200)
        self.assertIn("价格 9.9", resp.json()["html"])

    def test_schema_invalid(self):
        resp = requests.post(self.url("/api/card/schema"), json={"schema": {"body": {}}})
        self.assertEqual(resp.status_code, 400)

    def test_schema_malformed_parts(self):
        """Malformed nested parts and non-string themes are a 400, not a 500."""
        schema = {"header": {"title": "IPO"}, "body": {"elements": []}}
        resp = requests.post(self.url("/api/card/schema"), json={"schema": schema})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("header.title", resp.json()["error"])

        schema = {"body": {"elements": []}}
        resp = requests.post(self.url("/api/card/schema"), json={"schema": schema, "theme": ["modern-dark"]})
        self.assertEqual(resp.status_code, 400)

    def test_template(self):
        """GET template returns the raw template file."""
        resp = requests.get(self.url("/api/card/template"), params={"name": "ipo"})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["Content-Type"].startswith("text/html"))
        self.assertEqual(resp.text, "<h1>{{ company.name }}</h1>{{{ body }}}")

    def test_template_default_name(self):
        """Without a name the default template is served."""
        resp = requests.get(self.url("/api/card/template"))
        self.assertEqual(resp.status_code, 200)

    def test_unknown_template_404(self):
        """Unknown template names return 404."""
        resp = requests.get(self.url("/api/card/template"), params={"name": "missing"})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.text, "Not found")

    def test_template_list(self):
        resp = requests.get(self.url("/api/card/templates"))
        self.assertEqual(resp.json(), {"templates": ["ipo"]})

    def test_unknown_route(self):
        self.assertEqual(requests.get(self.url("/api/nope")).status_code, 404)
        self.assertEqual(requests.post(self.url("/api/nope")).status_code, 404)

    def test_options_cors(self):
        """Preflight requests get CORS headers."""
        resp = requests.options(self.url("/api/card/markdown"))
        self.assertEqual(resp.status_code, 204)
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "*")

    def test_healthz(self):
        self.assertEqual(requests.get(self.url("/healthz")).json(), {"ok": True})


class TestScreenshotApi(ServerTestCase):
    """Tests for /api/card/screenshot with the browser patched out."""

    def test_post_html(self):
        """POST html returns PNG bytes with no-store caching."""
        with mock.patch("cardkit.screenshot.capture_html", return_value=FAKE_PNG) as capture:
            resp = requests.post(self.url("/api/card/screenshot"), json={"html": "<p>card</p>", "css": ".x{}"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.content, FAKE_PNG)
        self.assertEqual(resp.headers["Content-Type"], "image/png")
        self.assertEqual(resp.headers["Cache-Control"], "no-store")
        document, options = capture.call_args[0][:2]
        self.assertIn("<p>card</p>", document)
        self.assertIn(".x{}", document)
        self.assertIn(".shot-canvas h1 { font-size: 40px; }", document)
        self.assertEqual((options.width, options.height, options.scale), (1080, 1440, 2))

    def test_post_markdown_jpeg(self):
        """Markdown is converted and jpeg is honored."""
        with mock.patch("cardkit.screenshot.capture_html", return_value=b"jpg") as capture:
            resp = requests.post(
                self.url("/api/card/screenshot"),
                json={"markdown": "# Title", "format": "jpeg", "width": 600, "height": 800, "padding": 99},
            )
        self.assertEqual(resp.headers["Content-Type"], "image/jpeg")
        document, options = capture.call_args[0][:2]
        self.assertIn("<h1>Title</h1>", document)
        self.assertEqual((options.width, options.height, options.padding), (600, 800, 48))

    def test_post_template(self):
        """Templates are rendered with data before capture."""
        with mock.patch("cardkit.screenshot.capture_html", return_value=FAKE_PNG) as capture:
            requests.post(
                self.url("/api/card/screenshot"),
                json={"template": "ipo", "data": {"company": {"name": "A&B"}, "body": "<i>x</i>"}},
            )
        document = capture.call_args[0][0]
        self.assertIn("<h1>A&amp;B</h1><i>x</i>", document)

    def test_post_html_wins_over_markdown(self):
        """html has priority over markdown."""
        with mock.patch("cardkit.screenshot.capture_html", return_value=FAKE_PNG) as capture:
            requests.post(self.url("/api/card/screenshot"), json={"html": "<b>raw</b>", "markdown": "# md"})
        document = capture.call_args[0][0]
        self.assertIn("<b>raw</b>", document)
        self.assertNotIn("<h1>md</h1>", document)

    def test_post_missing_template(self):
        """Unknown templates are a 400."""
        with mock.patch("cardkit.screenshot.capture_html") as capture:
            resp = requests.post(self.url("/api/card/screenshot"), json={"template": "missing"})
        self.assertEqual(resp.status_code, 400)
        self.assertTrue(resp.text.startswith("Template not found or failed to render"))
        capture.assert_not_called()

    def test_post_schema(self):
        """A schema-only body is rendered into the knowledge card before capture."""
        schema = {"body": {"elements": [{"tag": "markdown", "content": "价格 ${p}"}]}}
        with mock.patch("cardkit.screenshot.capture_html", return_value=FAKE_PNG) as capture:
            resp = requests.post(
                self.url("/api/card/screenshot"),
                json={"schema": schema, "theme": "modern-dark", "variables": {"p": "9.9"}},
            )
        self.assertEqual(resp.status_code, 200)
        document = capture.call_args[0][0]
        self.assertIn('class="knowledge-card"', document)
        self.assertIn("价格 9.9", document)

    def test_post_markdown_wins_over_schema(self):
        """markdown has priority over schema."""
        schema = {"body": {"elements": [{"tag": "markdown", "content": "from schema"}]}}
        with mock.patch("cardkit.screenshot.capture_html", return_value=FAKE_PNG) as capture:
            requests.post(self.url("/api/card/screenshot"), json={"markdown": "# md", "schema": schema})
        document = capture.call_args[0][0]
        self.assertIn("<h1>md</h1>", document)
        self.assertNotIn("knowledge-card", document)

    def test_post_invalid_schema(self):
        """Invalid schemas are a 400 and the browser is never started."""
        bad_schemas = [
            {"body": {}},
            {"header": {"title": "IPO"}, "body": {"elements": []}},
        ]
        for schema in bad_schemas:
            with self.subTest(schema=schema):
                with mock.patch("cardkit.screenshot.capture_html") as capture:
                    resp = requests.post(self.url("/api/card/screenshot"), json={"schema": schema})
                self.assertEqual(resp.status_code, 400)
                self.assertTrue(resp.text.startswith("Invalid schema"))
                capture.assert_not_called()

    def test_post_capture_failure(self):
        """Browser failures are a 500 with the message."""
        with mock.patch("cardkit.screenshot.capture_html", side_effect=ScreenshotError("boom")):
            resp = requests.post(self.url("/api/card/screenshot"), json={"html": "<p>x</p>"})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.text, "Screenshot error: boom")

    def test_get_page(self):
        """GET screenshots a site page resolved against the Host header."""
        with mock.patch("cardkit.screenshot.capture_url", return_value=FAKE_PNG) as capture:
            resp = requests.get(self.url("/api/card/screenshot"), params={"path": "/card/live", "scale": 1})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers["Cache-Control"], "public, max-age=60")
        url, options = capture.call_args[0][:2]
        self.assertEqual(url, f"{self.base}/card/live")
        self.assertEqual(options.scale, 1)

    def test_get_default_path(self):
        """Without path the configured default page is used."""
        with mock.patch("cardkit.screenshot.capture_url", return_value=FAKE_PNG) as capture:
            requests.get(self.url("/api/card/screenshot"))
        self.assertEqual(capture.call_args[0][0], f"{self.base}/card/ipo")


class TestCardClient(ServerTestCase):
    """Tests for the requests-based API client."""

    def setUp(self):
        self.client = CardClient(self.base, timeout=10)

    def test_views(self):
        self.assertEqual(self.client.views("client-post"), 0)
        self.assertEqual(self.client.hit("client-post"), 1)
        self.assertEqual(self.client.views("client-post"), 1)

    def test_markdown(self):
        self.assertEqual(self.client.markdown("- a\n- b"), "<ul><li>a</li><li>b</li></ul>")

    def test_template_missing_raises(self):
        with self.assertRaises(requests.HTTPError):
            self.client.template("missing")

    def test_screenshot(self):
        with mock.patch("cardkit.screenshot.capture_html", return_value=FAKE_PNG):
            self.assertEqual(self.client.screenshot(html="<p>x</p>"), FAKE_PNG)


if __name__ == "__main__":
    unittest.main()

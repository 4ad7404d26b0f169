"""
HTTP API 服务

路由:
  GET  /api/views/{slug}        → {"views": n}
  POST /api/views/{slug}        → 计数 +1，返回 {"views": n}
  POST /api/card/markdown       → {"markdown": "..."} → {"html": "..."}
  POST /api/card/render         → {"markdown": "...", "engine": "lite|rich"} → 内联 CSS 的 {"html"}
  POST /api/card/schema         → {"schema": {...}, "theme"?, "variables"?} → {"html"}
  GET  /api/card/screenshot     → 截取站点页面（?path=/card/ipo&width=&height=&scale=&format=）
  POST /api/card/screenshot     → 截取提交的 html / markdown / template / schema
  GET  /api/card/template       → ?name=ipo，返回模板原文
  GET  /api/card/templates      → {"templates": [...]}
  GET  /healthz                 → {"ok": true}

使用:
  python -m cardkit serve --port 3000
"""

import json
import logging
import re
import sqlite3
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, unquote, urljoin, urlsplit

import redis

from . import __version__, render, screenshot
from .markdown_lite import markdown_to_html
from .schema import SchemaError, render_schema
from .templates import DEFAULT_TEMPLATE, TemplateNotFound, TemplateStore
from .views import open_store

log = logging.getLogger("cardkit.server")

VIEWS_ROUTE = re.compile(r"^/api/views/(?P<slug>[^/]*)/?$")
STORE_ERRORS = (redis.RedisError, sqlite3.Error, OSError)


class CardAPI:
    """请求处理共享的状态：配置、浏览量存储、模板目录、通用 CSS"""

    def __init__(self, config: dict, store=None):
        self.config = config
        self.templates = TemplateStore(config["templates_dir"])
        self._store = store
        self._store_lock = threading.Lock()
        self._universal_css = None

    @property
    def store(self):
        if self._store is None:
            with self._store_lock:
                if self._store is None:
                    self._store = open_store(self.config)
        return self._store

    def universal_css(self) -> str:
        if self._universal_css is None:
            path = Path(self.config["universal_css"])
            try:
                self._universal_css = path.read_text(encoding="utf-8")
            except OSError:
                log.warning(f"通用卡片 CSS 不存在: {path}")
                self._universal_css = ""
        return self._universal_css

    @property
    def shot_defaults(self) -> dict:
        return self.config.get("screenshot", {})

    def close(self):
        if self._store is not None and hasattr(self._store, "close"):
            self._store.close()


class CardRequestHandler(BaseHTTPRequestHandler):
    server_version = f"cardkit/{__version__}"

    @property
    def api(self) -> CardAPI:
        return self.server.api

    # ── 响应助手 ──────────────────────────────────────────

    def end_headers(self):
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        super().end_headers()

    def _send(self, status: int, body: bytes, content_type: str, headers: dict = None):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        self.wfile.write(body)

    def _send_json(self, status: int, payload: dict):
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self._send(status, body, "application/json; charset=utf-8")

    def _send_text(self, status: int, text: str, content_type: str = "text/plain; charset=utf-8"):
        self._send(status, text.encode("utf-8"), content_type)

    def _read_json(self) -> dict:
        """读取 JSON body，Content-Length 非法或解析失败都按空对象处理"""
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = 0
        raw = self.rfile.read(length) if length > 0 else b""
        if not raw:
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def log_message(self, format, *args):
        log.info(f"[HTTP] {self.address_string()} {format % args}")

    # ── 分发 ──────────────────────────────────────────────

    def do_OPTIONS(self):
        self.send_response(HTTPStatus.NO_CONTENT)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self):
        parts = urlsplit(self.path)
        query = {k: v[-1] for k, v in parse_qs(parts.query).items()}
        path = parts.path

        match = VIEWS_ROUTE.match(path)
        if match:
            return self.get_views(unquote(match.group("slug")))
        if path == "/api/card/screenshot":
            return self.get_screenshot(query)
        if path == "/api/card/template":
            return self.get_template(query)
        if path == "/api/card/templates":
            return self._send_json(HTTPStatus.OK, {"templates": self.api.templates.names()})
        if path == "/healthz":
            return self._send_json(HTTPStatus.OK, {"ok": True})
        self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not found"})

    def do_POST(self):
        path = urlsplit(self.path).path
        body = self._read_json()

        match = VIEWS_ROUTE.match(path)
        if match:
            return self.post_views(unquote(match.group("slug")))
        if path == "/api/card/markdown":
            return self.post_markdown(body)
        if path == "/api/card/render":
            return self.post_render(body)
        if path == "/api/card/schema":
            return self.post_schema(body)
        if path == "/api/card/screenshot":
            return self.post_screenshot(body)
        self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not found"})

    # ── 浏览量 ────────────────────────────────────────────

    def get_views(self, slug: str):
        if not slug:
            return self._send_json(HTTPStatus.BAD_REQUEST, {"error": "Slug is required"})
        try:
            views = self.api.store.get(slug)
        except STORE_ERRORS as e:
            log.error(f"Error fetching views: {e}")
            return self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "Failed to fetch views"})
        self._send_json(HTTPStatus.OK, {"views": views})

    def post_views(self, slug: str):
        if not slug:
            return self._send_json(HTTPStatus.BAD_REQUEST, {"error": "Slug is required"})
        try:
            views = self.api.store.incr(slug)
        except STORE_ERRORS as e:
            log.error(f"Error incrementing views: {e}")
            return self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "Failed to increment views"})
        self._send_json(HTTPStatus.OK, {"views": views})

    # ── Markdown / 渲染 ──────────────────────────────────

    def post_markdown(self, body: dict):
        html = markdown_to_html(str(body.get("markdown") or ""))
        self._send_json(HTTPStatus.OK, {"html": html})

    def post_render(self, body: dict):
        engine = str(body.get("engine") or "lite")
        if engine not in render.ENGINES:
            return self._send_json(HTTPStatus.BAD_REQUEST, {"error": f"Unknown engine: {engine}"})
        css = self.api.universal_css() or render.FALLBACK_CSS
        html = render.render(str(body.get("markdown") or ""), css, engine)
        self._send_json(HTTPStatus.OK, {"html": html})

    def post_schema(self, body: dict):
        try:
            html = render_schema(body.get("schema"), body.get("theme"), body.get("variables"))
        except SchemaError as e:
            return self._send_json(HTTPStatus.BAD_REQUEST, {"error": str(e)})
        self._send_json(HTTPStatus.OK, {"html": html})

    # ── 模板 ──────────────────────────────────────────────

    def get_template(self, query: dict):
        try:
            html = self.api.templates.load(query.get("name") or DEFAULT_TEMPLATE)
        except TemplateNotFound:
            return self._send_text(HTTPStatus.NOT_FOUND, "Not found")
        self._send_text(HTTPStatus.OK, html, "text/html; charset=utf-8")

    # ── 截图 ──────────────────────────────────────────────

    def _site_base(self) -> str:
        site_url = self.api.config.get("site_url")
        if site_url:
            return site_url
        proto = self.headers.get("X-Forwarded-Proto") or "http"
        host = self.headers.get("Host") or "localhost:3000"
        return f"{proto}://{host}"

    def _send_image(self, data: bytes, options: screenshot.ShotOptions, cache_control: str):
        self._send(HTTPStatus.OK, data, options.content_type, {"Cache-Control": cache_control})

    def get_screenshot(self, query: dict):
        defaults = self.api.shot_defaults
        options = screenshot.ShotOptions.from_params(query, defaults)
        target = urljoin(self._site_base(), query.get("path") or defaults.get("default_path", "/"))
        try:
            data = screenshot.capture_url(target, options, defaults.get("timeout", 30000))
        except screenshot.ScreenshotError as e:
            log.error(f"Screenshot error: {target} ({e})")
            return self._send_text(HTTPStatus.INTERNAL_SERVER_ERROR, f"Screenshot error: {e}")
        self._send_image(data, options, "public, max-age=60")

    def _card_body(self, body: dict) -> str:
        """按优先级取卡片内容：html > markdown > template > schema"""
        html = str(body.get("html") or "")
        if not html and body.get("markdown"):
            html = markdown_to_html(str(body["markdown"]))
        if not html and body.get("template"):
            data = body.get("data") if isinstance(body.get("data"), dict) else {}
            html = self.api.templates.render(body["template"], data)
        if not html and body.get("schema"):
            html = render_schema(body["schema"], body.get("theme"), body.get("variables"))
        return html

    def post_screenshot(self, body: dict):
        defaults = self.api.shot_defaults
        options = screenshot.ShotOptions.from_params(body, defaults)
        try:
            card_html = self._card_body(body)
        except TemplateNotFound as e:
            return self._send_text(
                HTTPStatus.BAD_REQUEST, f"Template not found or failed to render: {e}"
            )
        except SchemaError as e:
            return self._send_text(HTTPStatus.BAD_REQUEST, f"Invalid schema: {e}")

        document = screenshot.build_document(
            card_html, str(body.get("css") or ""), self.api.universal_css(), options
        )
        try:
            data = screenshot.capture_html(document, options, defaults.get("timeout", 30000))
        except screenshot.ScreenshotError as e:
            log.error(f"Screenshot error: {e}")
            return self._send_text(HTTPStatus.INTERNAL_SERVER_ERROR, f"Screenshot error: {e}")
        self._send_image(data, options, "no-store")


def make_server(config: dict, host: str = None, port: int = None, store=None) -> ThreadingHTTPServer:
    server_cfg = config.get("server", {})
    address = (host or server_cfg.get("host", "127.0.0.1"),
               int(port if port is not None else server_cfg.get("port", 3000)))
    server = ThreadingHTTPServer(address, CardRequestHandler)
    server.daemon_threads = True
    server.api = CardAPI(config, store=store)
    return server


def serve(config: dict, host: str = None, port: int = None):
    server = make_server(config, host, port)
    bound_host, bound_port = server.server_address[:2]
    log.info(f"cardkit server: http://{bound_host}:{bound_port}")
    log.info(f"templates: {Path(config['templates_dir']).resolve()}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        log.info("Server stopped.")
    finally:
        server.server_close()
        server.api.close()

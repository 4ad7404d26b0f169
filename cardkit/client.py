"""cardkit HTTP API 客户端（requests）"""

import logging
from urllib.parse import quote

import requests

log = logging.getLogger("cardkit.client")

DEFAULT_SERVER = "http://127.0.0.1:3000"


class CardClient:
    def __init__(self, base_url: str = DEFAULT_SERVER, timeout: float = 60):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        resp = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        resp.raise_for_status()
        return resp

    def views(self, slug: str) -> int:
        return self._request("GET", f"/api/views/{quote(slug, safe='')}").json()["views"]

    def hit(self, slug: str) -> int:
        return self._request("POST", f"/api/views/{quote(slug, safe='')}").json()["views"]

    def markdown(self, md_text: str) -> str:
        return self._request("POST", "/api/card/markdown", json={"markdown": md_text}).json()["html"]

    def schema(self, schema: dict, theme: str = None, variables: dict = None) -> str:
        payload = {"schema": schema, "theme": theme, "variables": variables}
        return self._request("POST", "/api/card/schema", json=payload).json()["html"]

    def template(self, name: str) -> str:
        return self._request("GET", "/api/card/template", params={"name": name}).text

    def screenshot(self, **fields) -> bytes:
        """POST /api/card/screenshot，字段同服务端（html/markdown/template/data/width/...）"""
        resp = self._request("POST", "/api/card/screenshot", json=fields)
        log.info(f"screenshot {resp.headers.get('Content-Type')} {len(resp.content) // 1024}KB")
        return resp.content

"""
无头浏览器截图

用 Playwright 启动 chromium，把卡片 HTML 渲染成 PNG / JPEG。
每次截图独立启动浏览器，截完即关；整页内容放在 .shot-canvas 容器里，
容器尺寸就是卡片尺寸，截图只截这个容器。
"""

import logging
import math
from dataclasses import dataclass

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

log = logging.getLogger("cardkit.screenshot")

CANVAS_SELECTOR = ".shot-canvas"
LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]
MAX_PADDING = 48

WAIT_FONTS_JS = """async () => {
  if (document.fonts && document.fonts.ready) {
    await document.fonts.ready
  }
}"""


class ScreenshotError(Exception):
    """浏览器启动、加载或截图失败"""


def _number(value, default):
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number) or number == 0:
        return default
    return number


@dataclass
class ShotOptions:
    width: int = 1080
    height: int = 1440
    scale: float = 2
    format: str = "png"
    padding: int = 24
    quality: int = 92

    @classmethod
    def from_params(cls, params: dict, defaults: dict = None) -> "ShotOptions":
        """从请求参数构造，非法值回落到默认值。"""
        defaults = defaults or {}
        base = cls(
            width=int(defaults.get("width", cls.width)),
            height=int(defaults.get("height", cls.height)),
            scale=defaults.get("scale", cls.scale),
            format=str(defaults.get("format", cls.format)),
            padding=int(defaults.get("padding", cls.padding)),
            quality=int(defaults.get("jpeg_quality", cls.quality)),
        )
        fmt = str(params.get("format") or base.format).lower()
        padding = _number(params.get("padding"), base.padding)
        return cls(
            width=int(_number(params.get("width"), base.width)),
            height=int(_number(params.get("height"), base.height)),
            scale=_number(params.get("scale"), base.scale),
            format="jpeg" if fmt in ("jpeg", "jpg") else "png",
            padding=int(max(0, min(MAX_PADDING, padding))),
            quality=base.quality,
        )

    @property
    def content_type(self) -> str:
        return content_type(self.format)

    def screenshot_kwargs(self) -> dict:
        kwargs = {"type": self.format}
        if self.format == "jpeg":
            kwargs["quality"] = self.quality
        return kwargs


def content_type(fmt: str) -> str:
    return "image/jpeg" if fmt == "jpeg" else "image/png"


def build_document(body_html: str, css: str = "", universal_css: str = "",
                   options: ShotOptions = None) -> str:
    """把卡片片段包成完整 HTML 文档（.shot-canvas 即卡片画布）"""
    opts = options or ShotOptions()
    return f"""<!doctype html>
<html>
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <style>
      html, body {{ margin: 0; padding: 0; background: #fff; }}
      {universal_css or ''}
      {css or ''}
    </style>
  </head>
  <body>
    <div class="shot-canvas" style="
      width: {opts.width}px; height: {opts.height}px; box-sizing: border-box;
      padding: {opts.padding}px; background: #fff; border-radius: 24px; overflow: hidden;
      display: flex; align-items: stretch; justify-content: stretch;
    ">
      <div style="width: 100%; height: 100%;">{body_html or ''}</div>
    </div>
  </body>
</html>"""


def _capture(load_page, options: ShotOptions) -> bytes:
    with sync_playwright() as p:
        browser = p.chromium.launch(args=LAUNCH_ARGS)
        try:
            context = browser.new_context(
                viewport={"width": options.width, "height": options.height},
                device_scale_factor=options.scale,
            )
            page = context.new_page()
            load_page(page)
            try:
                page.evaluate(WAIT_FONTS_JS)
            except PlaywrightError as e:
                log.debug(f"等待字体失败，继续截图: {e}")

            element = page.query_selector(CANVAS_SELECTOR)
            target = element or page
            return target.screenshot(**options.screenshot_kwargs())
        finally:
            browser.close()


def capture_html(document: str, options: ShotOptions = None, timeout: int = 30000) -> bytes:
    """渲染完整 HTML 文档并截图，返回图片字节"""
    opts = options or ShotOptions()
    log.info(f"截图 HTML {opts.width}x{opts.height}@{opts.scale} {opts.format}")
    try:
        return _capture(
            lambda page: page.set_content(document, wait_until="networkidle", timeout=timeout),
            opts,
        )
    except PlaywrightError as e:
        raise ScreenshotError(str(e)) from e


def capture_url(url: str, options: ShotOptions = None, timeout: int = 30000) -> bytes:
    """打开 URL 并截图（页面里有 .shot-canvas 就只截画布）"""
    opts = options or ShotOptions()
    log.info(f"截图 {url} {opts.width}x{opts.height}@{opts.scale} {opts.format}")
    try:
        return _capture(
            lambda page: page.goto(url, wait_until="networkidle", timeout=timeout),
            opts,
        )
    except PlaywrightError as e:
        raise ScreenshotError(str(e)) from e

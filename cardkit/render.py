"""
Markdown → 带内联 CSS 的 HTML

卡片导出用：把预览内容连同 universal-card.css 一起内联，
得到可以直接粘贴到其他编辑器、不依赖外部样式表的 HTML 片段。

流程:
  1. Markdown → HTML（lite: 正则版；rich: python-markdown）
  2. 用 universal-card.css 内联化所有样式（premailer）
  3. 输出 <section> 片段
"""

import logging
import re
from pathlib import Path

import markdown
from premailer import Premailer

from .markdown_lite import markdown_to_html

log = logging.getLogger("cardkit.render")

FALLBACK_CSS = "section { font-size: 16px; line-height: 1.8; color: #3f3f3f; }"

ENGINES = ("lite", "rich")

MARKDOWN_EXTENSIONS = [
    "markdown.extensions.tables",
    "markdown.extensions.fenced_code",
    "markdown.extensions.nl2br",
    "markdown.extensions.sane_lists",
]


def load_css(css_path=None) -> str:
    """加载 CSS 文件，不存在时用最小样式"""
    if css_path is None or not Path(css_path).exists():
        log.warning(f"CSS not found at {css_path}, using minimal styles")
        return FALLBACK_CSS
    return Path(css_path).read_text(encoding="utf-8")


def markdown_to_rich_html(md_text: str) -> str:
    """Markdown → raw HTML（python-markdown，不含 CSS）"""
    return markdown.markdown(md_text or "", extensions=MARKDOWN_EXTENSIONS, output_format="html5")


def to_html(md_text: str, engine: str = "lite") -> str:
    if engine not in ENGINES:
        raise ValueError(f"unknown engine: {engine} (expected one of {', '.join(ENGINES)})")
    if engine == "rich":
        return markdown_to_rich_html(md_text)
    return markdown_to_html(md_text)


EXPORT_DOCUMENT = (
    '<html><head><meta charset="utf-8"><style>{css}</style></head>'
    "<body><section>{body}</section></body></html>"
)

_EXPORT_BODY = re.compile(r"<body[^>]*>\s*(.*?)\s*</body>", re.DOTALL | re.IGNORECASE)


def inline_css(html: str, css_text: str = FALLBACK_CSS, keep_classes: bool = False) -> str:
    """把 css_text 的规则写进各元素的 style 属性，返回 <section> 片段

    卡片内容里可能嵌套 <section>，所以取整个 body，而不是第一对 section 标签。
    导出时不访问网络，class 默认去掉。
    """
    document = EXPORT_DOCUMENT.format(css=css_text or "", body=html or "")
    inliner = Premailer(
        document,
        remove_classes=not keep_classes,
        strip_important=True,
        keep_style_tags=False,
        disable_validation=True,
        allow_network=False,
        cssutils_logging_level=logging.CRITICAL,
    )
    out = inliner.transform()
    match = _EXPORT_BODY.search(out)
    return match.group(1) if match else out


def render(md_text: str, css_text: str = None, engine: str = "lite") -> str:
    """完整渲染流程: Markdown → 内联CSS的HTML"""
    return inline_css(to_html(md_text, engine), css_text if css_text is not None else FALLBACK_CSS)

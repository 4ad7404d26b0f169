"""
卡片 HTML 模板

模板是 templates_dir 下的 <name>.html 文件，支持两种占位符：
  {{{ path }}}  原样插入（先替换）
  {{ path }}    HTML 转义后插入

path 支持点号和下标：company.name、rows[0].income

值按浏览器端 String() 的规则转文本：True → true，3.0 → 3，
[1, 2] → 1,2，对象 → [object Object]，None → 空串
"""

import logging
import math
import re
from pathlib import Path

from .markdown_lite import escape_html

log = logging.getLogger("cardkit.templates")

DEFAULT_TEMPLATE = "ipo"

_RAW_SLOT = re.compile(r"\{\{\{\s*([^}]+?)\s*\}\}\}")
_ESCAPED_SLOT = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")


class TemplateNotFound(Exception):
    """模板不存在或读取失败"""


def sanitize_name(name) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9_-]", "", str(name or ""))
    return cleaned or DEFAULT_TEMPLATE


def get_deep(data, path: str):
    if not path:
        return None
    normalized = re.sub(r"\[(\d+)\]", r".\1", path)
    node = data
    for key in normalized.split("."):
        if node is None:
            return None
        if isinstance(node, (list, tuple)):
            try:
                node = node[int(key)]
            except (ValueError, IndexError):
                return None
        elif isinstance(node, dict):
            node = node.get(key)
        else:
            return None
    return node


def _to_text(value) -> str:
    """按浏览器端 String(value) 的写法转文本，模板在前后端渲染结果一致"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join(_to_text(item) for item in value)
    if isinstance(value, dict):
        return "[object Object]"
    return str(value)


def render_template(source: str, data: dict) -> str:
    if not source:
        return ""
    data = data or {}
    out = _RAW_SLOT.sub(lambda m: _to_text(get_deep(data, m.group(1).strip())), source)
    out = _ESCAPED_SLOT.sub(lambda m: escape_html(_to_text(get_deep(data, m.group(1).strip()))), out)
    return out


class TemplateStore:
    def __init__(self, root):
        self.root = Path(root)

    def path_for(self, name) -> Path:
        return self.root / f"{sanitize_name(name)}.html"

    def load(self, name) -> str:
        path = self.path_for(name)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            log.warning(f"模板读取失败: {path} ({e})")
            raise TemplateNotFound(f"{path.name}: {e}") from e

    def names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob("*.html"))

    def render(self, name, data: dict) -> str:
        return render_template(self.load(name), data)

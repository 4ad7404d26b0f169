"""
知识卡片 Schema → 静态 HTML

Schema 结构（与飞书卡片类似）：
  {
    "schema": "2.0",
    "header": {"title": {...}, "subtitle": {...}, "text_tag_list": [...]},
    "body": {"direction": "vertical", "elements": [...]}
  }

元素类型：column_set / column / markdown / table / hr，未知 tag 直接忽略。
输出全部为内联样式，可直接交给 screenshot 截图。
"""

import re

from .markdown_lite import escape_html

THEMES = {
    "default-blue": {
        "name": "经典蓝 (笔记)",
        "background": "#ffffff",
        "background_pattern": (
            "linear-gradient(#e5e7eb 1px, transparent 1px), "
            "linear-gradient(90deg, #e5e7eb 1px, transparent 1px)"
        ),
        "font_family": '"KaiTi", "STKaiti", "楷体", serif',
        "colors": {
            "primary": "#3b82f6",
            "secondary": "#eff6ff",
            "text": "#1f2937",
            "highlight": "#fef08a",
            "accent": "#2563eb",
        },
    },
    "modern-dark": {
        "name": "极客黑 (暗色)",
        "background": "#111827",
        "background_pattern": "radial-gradient(#374151 1px, transparent 1px)",
        "font_family": "ui-sans-serif, system-ui, sans-serif",
        "colors": {
            "primary": "#8b5cf6",
            "secondary": "#111827",
            "text": "#f3f4f6",
            "highlight": "#4c1d95",
            "accent": "#a78bfa",
        },
    },
    "retro-poster": {
        "name": "复古海报",
        "background": "#f0e6d2",
        "background_pattern": None,
        "font_family": '"Songti SC", "SimSun", serif',
        "colors": {
            "primary": "#c2410c",
            "secondary": "#f0e6d2",
            "text": "#2c2c2c",
            "highlight": "#fbbf24",
            "accent": "#9a3412",
        },
    },
}
DEFAULT_THEME = "default-blue"

ALIGN_MAP = {"left": "flex-start", "center": "center", "right": "flex-end"}
TEXT_ALIGN_MAP = {"left": "left", "center": "center", "right": "right"}
VERTICAL_ALIGN_MAP = {"top": "flex-start", "center": "center", "bottom": "flex-end"}
BACKGROUND_PALETTE = {
    "blue-50": "#e0f2fe",
    "grey": "#f8fafc",
    "bg-white": "#ffffff",
    "blue-100": "#dbeafe",
}
TEXT_SIZE_MAP = {"small": 14, "normal": 16, "large": 20}
ROW_PADDING_MAP = {"low": "8px 12px", "normal": "12px 12px", "high": "16px 12px"}

_PLACEHOLDER = re.compile(r"\$\{(\w+)\}")


class SchemaError(ValueError):
    """Schema 结构不合法或主题不存在"""


def normalize_background(value) -> str:
    if not value or not isinstance(value, str):
        return "transparent"
    return BACKGROUND_PALETTE.get(value, value)


def lookup(table: dict, value, default):
    """按字符串取映射表，非字符串（含 list / dict）一律取默认值"""
    return table.get(value, default) if isinstance(value, str) else default


def as_mapping(value, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SchemaError(f"{where} must be an object")
    return value


def as_list(value, where: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise SchemaError(f"{where} must be a list")
    return value


def as_text(value) -> str:
    return "" if value is None else str(value)


def style_attr(styles: dict) -> str:
    """{"font-size": "16px", "margin": None} → ' style="font-size:16px"'，None 值跳过"""
    parts = [f"{k}:{v}" for k, v in styles.items() if v is not None and v != ""]
    if not parts:
        return ""
    return f' style="{escape_html(";".join(parts))}"'


def fill_variables(text: str, variables: dict) -> str:
    """替换 ${name} 占位符，未提供的保持原样。"""
    text = as_text(text)
    if not variables:
        return text
    return _PLACEHOLDER.sub(
        lambda m: str(variables[m.group(1)]) if m.group(1) in variables else m.group(0),
        text,
    )


class SchemaRenderer:
    def __init__(self, theme: str = DEFAULT_THEME, variables: dict = None):
        if not isinstance(theme, str) or theme not in THEMES:
            raise SchemaError(f"unknown theme: {theme!r}")
        self.theme = THEMES[theme]
        self.variables = as_mapping(variables, "variables")

    # ── 入口 ──────────────────────────────────────────────

    def render(self, schema) -> str:
        body = self._validate(schema)
        colors = self.theme["colors"]
        header_html = self.render_header(schema["header"]) if schema.get("header") else ""
        direction = "row" if body.get("direction") == "horizontal" else "column"
        elements = "".join(
            self.render_element(el, f"element-{i}") for i, el in enumerate(body["elements"])
        )
        outer = style_attr({
            "width": "100%",
            "box-sizing": "border-box",
            "border-radius": "32px",
            "background-color": self.theme["background"],
            "background-image": self.theme["background_pattern"],
            "background-size": "24px 24px" if self.theme["background_pattern"] else None,
            "font-family": self.theme["font_family"],
            "color": colors["text"],
        })
        inner = style_attr({
            "padding": "32px",
            "display": "flex",
            "flex-direction": "column",
            "gap": "20px",
        })
        body_style = style_attr({
            "display": "flex",
            "flex-direction": direction,
            "gap": body.get("vertical_spacing") or "20px",
        })
        return (
            f'<div class="knowledge-card"{outer}><div{inner}>'
            f"{header_html}<div{body_style}>{elements}</div></div></div>"
        )

    def _validate(self, schema) -> dict:
        if not isinstance(schema, dict):
            raise SchemaError("schema must be an object")
        body = schema.get("body")
        if not isinstance(body, dict) or not isinstance(body.get("elements"), list):
            raise SchemaError("schema.body.elements must be a list")
        header = schema.get("header")
        if header is not None and not isinstance(header, dict):
            raise SchemaError("schema.header must be an object")
        return body

    # ── 头部 ──────────────────────────────────────────────

    def render_header(self, header: dict) -> str:
        parts = []
        title = as_mapping(header.get("title"), "header.title")
        if title:
            style = style_attr({
                "font-size": "30px",
                "line-height": "1.25",
                "font-weight": "600",
                "color": self.theme["colors"]["primary"],
            })
            parts.append(f"<div{style}>{fill_variables(title.get('content'), self.variables)}</div>")
        subtitle = as_mapping(header.get("subtitle"), "header.subtitle")
        if subtitle:
            style = style_attr({"font-size": "14px", "color": "#6b7280"})
            parts.append(f"<div{style}>{fill_variables(subtitle.get('content'), self.variables)}</div>")
        tags = as_list(header.get("text_tag_list"), "header.text_tag_list")
        if tags:
            chips = []
            for tag in tags:
                tag = as_mapping(tag, "header.text_tag_list[]")
                color = tag.get("color")
                style = style_attr({
                    "display": "inline-flex",
                    "align-items": "center",
                    "border-radius": "9999px",
                    "border": f"1px solid {color or '#fde68a'}",
                    "padding": "4px 12px",
                    "font-size": "10px",
                    "font-weight": "600",
                    "letter-spacing": "0.1em",
                    "text-transform": "uppercase",
                    "color": color or "#92400e",
                    "background-color": tag.get("background_color") or "rgba(248, 113, 113, 0.12)",
                })
                text = as_mapping(tag.get("text"), "text_tag.text").get("content")
                chips.append(f"<span{style}>{escape_html(as_text(text))}</span>")
            wrap = style_attr({"display": "flex", "flex-wrap": "wrap", "gap": "8px"})
            parts.append(f"<div{wrap}>{''.join(chips)}</div>")

        padding = header.get("padding")
        style = style_attr({
            "display": "flex",
            "flex-direction": "column",
            "gap": "8px",
            "padding": padding,
            "border-bottom": "1px solid rgba(148, 163, 184, 0.4)" if padding else None,
        })
        return f"<div{style}>{''.join(parts)}</div>"

    # ── 元素 ──────────────────────────────────────────────

    def render_element(self, element, key: str) -> str:
        if not isinstance(element, dict):
            return ""
        tag = element.get("tag")
        if tag == "column_set":
            return self.render_column_set(element, key)
        if tag == "column":
            return self.render_column(element, key)
        if tag == "markdown":
            return self.render_markdown(element, key)
        if tag == "table":
            return self.render_table(element, key)
        if tag == "hr":
            return self.render_hr(element, key)
        return ""

    def _id_attr(self, element: dict, key: str) -> str:
        return f' data-element-id="{escape_html(element.get("element_id") or key)}"'

    def render_markdown(self, element: dict, key: str) -> str:
        content = fill_variables(element.get("content"), self.variables)
        html = content.replace("\n", "<br/>")
        style = style_attr({
            "width": "100%",
            "text-align": lookup(TEXT_ALIGN_MAP, element.get("text_align"), "left"),
            "color": element.get("color") or "#0f172a",
            "font-size": f"{lookup(TEXT_SIZE_MAP, element.get('text_size'), 16)}px",
            "margin": element.get("margin"),
            "padding": element.get("padding"),
        })
        return f"<div{self._id_attr(element, key)}{style}>{html}</div>"

    def render_table(self, element: dict, key: str) -> str:
        header_style = as_mapping(element.get("header_style"), "table.header_style")
        header_bg = normalize_background(header_style.get("background_style"))
        row_padding = lookup(ROW_PADDING_MAP, element.get("row_height"), ROW_PADDING_MAP["normal"])
        columns = [c for c in as_list(element.get("columns"), "table.columns") if isinstance(c, dict)]
        rows = as_list(element.get("rows"), "table.rows")

        head = []
        for col in columns:
            style = style_attr({
                "text-align": lookup(TEXT_ALIGN_MAP, col.get("horizontal_align"), "left"),
                "background-color": header_bg,
                "padding": "10px 14px",
                "font-size": "12px",
                "letter-spacing": "0.2em",
                "color": "#4b5563",
                "font-weight": "600" if header_style.get("bold") else "500",
            })
            head.append(f"<th{style}>{escape_html(as_text(col.get('display_name')))}</th>")

        body = []
        for index, row in enumerate(rows):
            cells = []
            for col in columns:
                style = style_attr({
                    "text-align": lookup(TEXT_ALIGN_MAP, col.get("horizontal_align"), "left"),
                    "padding": row_padding,
                    "font-size": "14px",
                    "color": "#374151",
                })
                name = col.get("name")
                value = row.get(name) if isinstance(row, dict) and isinstance(name, str) else None
                cells.append(f"<td{style}>{escape_html(fill_variables(value, self.variables))}</td>")
            row_bg = "#ffffff" if index % 2 == 0 else "#f8fafc"
            body.append(f'<tr style="background-color:{row_bg}">{"".join(cells)}</tr>')

        wrap = style_attr({
            "width": "100%",
            "overflow": "hidden",
            "border-radius": "24px",
            "border": "1px solid #e5e7eb",
            "background-color": "#ffffff",
            "margin": element.get("margin"),
            "padding": element.get("padding") or "0px",
        })
        return (
            f"<div{self._id_attr(element, key)}{wrap}>"
            f'<table style="width:100%;border-collapse:collapse">'
            f"<thead><tr>{''.join(head)}</tr></thead>"
            f"<tbody>{''.join(body)}</tbody></table></div>"
        )

    def render_hr(self, element: dict, key: str) -> str:
        style = style_attr({
            "width": "100%",
            "border-top": "1px solid rgba(229, 231, 235, 0.6)",
            "margin": element.get("margin"),
        })
        return f"<div{self._id_attr(element, key)}{style}></div>"

    def render_column(self, element: dict, key: str) -> str:
        auto = element.get("width") == "auto"
        style = style_attr({
            "display": "flex",
            "flex-direction": "row" if element.get("direction") == "horizontal" else "column",
            "flex": "0 0 auto" if auto else str(element.get("weight") or 1),
            "min-width": "140px" if auto else None,
            "border-radius": "16px",
            "background-color": normalize_background(element.get("background_style")),
            "padding": element.get("padding"),
            "margin": element.get("margin"),
            "gap": element.get("vertical_spacing"),
            "justify-content": lookup(VERTICAL_ALIGN_MAP, element.get("vertical_align"), "flex-start"),
            "align-items": lookup(ALIGN_MAP, element.get("horizontal_align"), "flex-start"),
        })
        children = "".join(
            self.render_element(child, f"{key}-child-{i}")
            for i, child in enumerate(as_list(element.get("elements"), "column.elements"))
        )
        return f"<div{self._id_attr(element, key)}{style}>{children}</div>"

    def render_column_set(self, element: dict, key: str) -> str:
        style = style_attr({
            "display": "flex",
            "flex-wrap": "wrap",
            "align-items": "stretch",
            "justify-content": lookup(ALIGN_MAP, element.get("horizontal_align"), "flex-start"),
            "gap": element.get("horizontal_spacing") or "12px",
            "margin": element.get("margin"),
            "padding": element.get("padding"),
        })
        columns = "".join(
            self.render_column(col, f"{key}-col-{i}")
            for i, col in enumerate(as_list(element.get("columns"), "column_set.columns"))
            if isinstance(col, dict)
        )
        return f"<div{self._id_attr(element, key)}{style}>{columns}</div>"


def render_schema(schema, theme: str = DEFAULT_THEME, variables: dict = None) -> str:
    return SchemaRenderer(theme or DEFAULT_THEME, variables).render(schema)

"""
轻量 Markdown → HTML（正则替换版）

只用于卡片预览，覆盖常用语法：GFM 表格、围栏代码块、标题、引用、
有序/无序列表、分割线、行内代码/加粗/斜体、图片、链接、段落。

没有语法树，不支持嵌套；列表和标题冲突等问题是已知的。
需要完整渲染时用 render.markdown_to_rich_html（python-markdown）。
"""

import re

BLOCK_TAGS = r"h\d|ul|ol|pre|blockquote|hr|table"

_TABLE_SEP = re.compile(r"^(\s*\|)?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)+(\|\s*)?$")
_FENCED = re.compile(r"```([\w-]+)?\n([\s\S]*?)\n```")
_HEADINGS = [
    (re.compile(r"^######\s+(.+)$", re.M), r"<h6>\1</h6>"),
    (re.compile(r"^#####\s+(.+)$", re.M), r"<h5>\1</h5>"),
    (re.compile(r"^####\s+(.+)$", re.M), r"<h4>\1</h4>"),
    (re.compile(r"^###\s+(.+)$", re.M), r"<h3>\1</h3>"),
    (re.compile(r"^##\s+(.+)$", re.M), r"<h2>\1</h2>"),
    (re.compile(r"^#\s+(.+)$", re.M), r"<h1>\1</h1>"),
]
_IMAGE = re.compile(r'!\[([^\]]*)\]\(([^)\s]+)(?:\s+"([^"]+)")?\)')
_LINK = re.compile(r'\[([^\]]+)\]\(([^)\s]+)(?:\s+"([^"]+)")?\)')


def escape_html(text) -> str:
    return (
        str(text if text is not None else "")
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#39;")
    )


# ── 表格 ──────────────────────────────────────────────────

def _is_table_sep(line: str) -> bool:
    return bool(_TABLE_SEP.match(line))


def _split_cells(line: str) -> list[str]:
    line = re.sub(r"^\s*\|", "", line)
    line = re.sub(r"\|\s*$", "", line)
    return [cell.strip() for cell in line.split("|")]


def _cell_align(spec: str) -> str:
    if spec.startswith(":") and spec.endswith(":"):
        return "center"
    if spec.endswith(":"):
        return "right"
    return "left"


def convert_tables(md: str) -> str:
    """把 GFM 表格替换成 <table>，其余行原样保留。"""
    lines = md.split("\n")
    out = []
    i = 0
    while i < len(lines):
        header = lines[i]
        sep = lines[i + 1] if i + 1 < len(lines) else ""
        if header and sep and "|" in header and _is_table_sep(sep):
            headers = _split_cells(header)
            aligns = [_cell_align(c) for c in _split_cells(sep)]
            i += 2
            rows = []
            while i < len(lines):
                row = lines[i]
                if not row.strip() or "|" not in row or _is_table_sep(row):
                    break
                rows.append(_split_cells(row))
                i += 1

            parts = ["<table>\n<thead><tr>"]
            for idx, cell in enumerate(headers):
                align = aligns[idx] if idx < len(aligns) else "left"
                parts.append(f'<th style="text-align:{align}">{escape_html(cell)}</th>')
            parts.append("</tr></thead>\n<tbody>")
            for row in rows:
                parts.append("<tr>")
                for idx, cell in enumerate(row):
                    align = aligns[idx] if idx < len(aligns) else "left"
                    parts.append(f'<td style="text-align:{align}">{escape_html(cell)}</td>')
                parts.append("</tr>")
            parts.append("</tbody>\n</table>")
            out.append("".join(parts))
            continue
        out.append(lines[i])
        i += 1
    return "\n".join(out)


# ── 行内 ──────────────────────────────────────────────────

def _title_attr(title) -> str:
    return f' title="{escape_html(title)}"' if title else ""


def _image(m: re.Match) -> str:
    alt, src, title = m.group(1), m.group(2), m.group(3)
    return f'<img src="{escape_html(src)}" alt="{escape_html(alt)}"{_title_attr(title)} />'


def _link(m: re.Match) -> str:
    text, href, title = m.group(1), m.group(2), m.group(3)
    return f'<a href="{escape_html(href)}"{_title_attr(title)}>{text}</a>'


def _fenced(m: re.Match) -> str:
    lang, code = m.group(1), m.group(2)
    cls = f' class="language-{lang}"' if lang else ""
    return f"<pre><code{cls}>{escape_html(code)}</code></pre>"


# ── 段落 ──────────────────────────────────────────────────

def _wrap_paragraph(block: str) -> str:
    trimmed = block.strip()
    if re.match(rf"^</(?:{BLOCK_TAGS})>", trimmed, re.I):
        return block
    if re.match(rf"^<(?:{BLOCK_TAGS})", trimmed, re.I):
        return block
    # 已经包含块级标签的原样保留
    if re.search(rf"</(?:{BLOCK_TAGS})>", block, re.I):
        return block
    content = " ".join(line.strip() for line in block.split("\n"))
    if not content:
        return ""
    return f"<p>{content}</p>"


def markdown_to_html(md: str) -> str:
    """Markdown 字符串 → HTML 字符串。"""
    if not md:
        return ""

    md = re.sub(r"\r\n?", "\n", md)
    md = convert_tables(md)
    md = _FENCED.sub(_fenced, md)

    for pattern, repl in _HEADINGS:
        md = pattern.sub(repl, md)

    md = re.sub(r"^>\s?(.+)$", r"<blockquote>\1</blockquote>", md, flags=re.M)

    md = re.sub(r"^(\d+)\.\s+(.+)$", r'<ol start="\1"><li>\2</li></ol>', md, flags=re.M)
    md = re.sub(r'</ol>\n<ol start="\d+">', "", md)

    md = re.sub(r"^[-*]\s+(.+)$", r"<ul><li>\1</li></ul>", md, flags=re.M)
    md = re.sub(r"</ul>\n<ul>", "", md)

    md = re.sub(r"^---$", "<hr/>", md, flags=re.M)

    md = re.sub(r"`([^`]+)`", lambda m: f"<code>{escape_html(m.group(1))}</code>", md)
    md = re.sub(r"\*\*([^*]+)\*\*", r"<strong>\1</strong>", md)
    md = re.sub(r"__([^_]+)__", r"<strong>\1</strong>", md)
    md = re.sub(r"\*([^*]+)\*", r"<em>\1</em>", md)
    md = re.sub(r"_([^_]+)_", r"<em>\1</em>", md)
    md = _IMAGE.sub(_image, md)
    md = _LINK.sub(_link, md)

    blocks = re.split(r"\n\n+", md)
    return "\n".join(_wrap_paragraph(b) for b in blocks)

from __future__ import annotations

import re
from html import unescape
from typing import Dict, List, Optional, Set

import markdown

from .cleanup import strip_tags

FENCE_LINE_RE = re.compile(r"^\s*(?:```|~~~)")
TABLE_SEPARATOR_RE = re.compile(r"^\|?\s*[:\-]+(?:\s*\|\s*[:\-]+)*\s*\|?$")
BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
PARAGRAPH_PIPE_TABLE_RE = re.compile(
    r"<p(?:\s[^>]*)?>(\s*\|[^<]+?\|\s*(?:(?:<br\s*/?>|\n)\s*\|[^<]+?\|\s*)+)\s*</p>",
    re.IGNORECASE,
)
CONSECUTIVE_PIPE_PARAGRAPHS_RE = re.compile(r"(?:<p(?:\s[^>]*)?>\s*\|[^<]+\|\s*</p>\s*){2,}", re.IGNORECASE)
PIPE_PARAGRAPH_RE = re.compile(r"<p(?:\s[^>]*)?>\s*(\|[^<]+\|)\s*</p>", re.IGNORECASE)

FAQ_QUESTION_PATTERNS = (
    re.compile(r"<p[^>]*>\s*<(strong|b)(?:\s[^>]*)?>\s*Q[:.]\s+([^<]+)</(strong|b)>\s*</p>", re.IGNORECASE),
    re.compile(r"<(strong|b)(?:\s[^>]*)?>\s*Q[:.]\s+([^<]+)</(strong|b)>", re.IGNORECASE),
)
STRONG_RE = re.compile(r"<strong(?:\s[^>]*)?>(.*?)</strong>", re.IGNORECASE | re.DOTALL)
BOLD_RE = re.compile(r"<b(?:\s[^>]*)?>(.*?)</b>", re.IGNORECASE | re.DOTALL)

EMBED_PATTERNS = (
    re.compile(r"<iframe[^>]*>(?:.*?</iframe>)?", re.IGNORECASE | re.DOTALL),
    re.compile(r"<embed[^>]*/?>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<object[^>]*>.*?</object>", re.IGNORECASE | re.DOTALL),
)

TABLE_CLASS = "ai-gradient-table"
TABLE_STYLE_ID = "ai-table-styles"

P_STYLE = "margin-top: 1.5em; margin-bottom: 1.5em; line-height: 1.75;"
FIRST_P_STYLE = "margin-top: 0; margin-bottom: 1.5em; line-height: 1.75;"
ELEMENT_STYLES: Dict[str, str] = {
    "p": P_STYLE,
    "h2": "margin-top: 2em; margin-bottom: 1em; font-weight: 700;",
    "h3": "margin-top: 1.75em; margin-bottom: 0.875em; font-weight: 700;",
    "h4": "margin-top: 1.5em; margin-bottom: 0.75em; font-weight: 700;",
    "h5": "margin-top: 1.5em; margin-bottom: 0.75em; font-weight: 700;",
    "h6": "margin-top: 1.5em; margin-bottom: 0.75em; font-weight: 700;",
    "table": (
        "margin-top: 2.5rem; margin-bottom: 2.5rem; width: 100%; border-collapse: separate; "
        "border-spacing: 0; background: #ffffff; border-radius: 22px; overflow: hidden; "
        "box-shadow: 0 18px 40px rgba(15, 23, 42, 0.12); font-size: 15px; "
        "border: 1px solid rgba(226, 232, 240, 0.9);"
    ),
    "thead": "background: linear-gradient(120deg, #5561ff 0%, #8c4bff 55%, #b44bff 100%);",
    "th": (
        "color: #f8fafc; font-weight: 600; text-align: left; padding: 18px 26px; font-size: 0.8rem; "
        "text-transform: uppercase; letter-spacing: 0.08em; border: none;"
    ),
    "td": (
        "padding: 20px 26px; color: #0f172a; line-height: 1.6; border: none; font-weight: 500; "
        "border-bottom: 1px solid rgba(226, 232, 240, 0.9);"
    ),
    "tr": "transition: transform 0.15s ease, box-shadow 0.15s ease;",
}
TABLE_STYLE_BLOCK = (
    f'<style id="{TABLE_STYLE_ID}">'
    f".{TABLE_CLASS} tbody tr:nth-child(even){{background:#f8fafc;}}"
    f".{TABLE_CLASS} tbody tr:hover{{background:#eef2ff;}}"
    f".{TABLE_CLASS} tbody tr:last-child td{{border-bottom:none;}}"
    "</style>"
)
STYLE_BLOCK_RE = re.compile(rf'<style id="{TABLE_STYLE_ID}">.*?</style>\s*', re.IGNORECASE | re.DOTALL)

HTML_BLOCK_RE = re.compile(r"<(?:p|h[1-6]|div|article|section)\b", re.IGNORECASE)
MD_HEADING_LINE_RE = re.compile(r"^#{1,6}[ \t]+\S", re.MULTILINE)
HEADING_RE = re.compile(r"<h([23])(\s[^>]*)?>(.*?)</h\1>", re.IGNORECASE | re.DOTALL)
ID_ATTR_RE = re.compile(r"""\bid\s*=\s*["']([^"']*)["']""", re.IGNORECASE)


def _is_pipe_row(line: str) -> bool:
    stripped = line.strip()
    return len(stripped) >= 2 and stripped.startswith("|") and stripped.endswith("|")


def _parse_table_rows(rows: List[str]) -> List[List[str]]:
    parsed: List[List[str]] = []
    for row in rows:
        row = row.strip()
        if not row or TABLE_SEPARATOR_RE.match(row):
            continue
        cells = [cell.strip() for cell in row.split("|")]
        if cells and cells[0] == "":
            cells.pop(0)
        if cells and cells[-1] == "":
            cells.pop()
        if cells:
            parsed.append(cells)
    return parsed


def _build_table(rows: List[List[str]]) -> Optional[str]:
    if len(rows) < 2 or not rows[0]:
        return None
    headers = rows[0]
    parts = ["<table>", "<thead>", "<tr>"]
    parts.extend(f"<th>{header}</th>" for header in headers)
    parts.extend(["</tr>", "</thead>", "<tbody>"])
    for row in rows[1:]:
        parts.append("<tr>")
        parts.extend(f"<td>{row[index] if index < len(row) else ''}</td>" for index in range(len(headers)))
        parts.append("</tr>")
    parts.extend(["</tbody>", "</table>"])
    return "\n".join(parts)


def _pipe_rows_to_table(rows: List[str]) -> Optional[str]:
    return _build_table(_parse_table_rows([row for row in rows if _is_pipe_row(row)]))


def convert_markdown_tables_to_html(text: str) -> str:
    """Turn contiguous ``| a | b |`` line blocks into HTML tables.

    Blocks that do not yield a header plus at least one data row stay as they are,
    and so do pipe rows inside fenced code blocks.
    """
    if not text or "|" not in text:
        return text or ""

    lines = text.split("\n")
    output: List[str] = []
    index = 0
    in_fence = False
    while index < len(lines):
        if FENCE_LINE_RE.match(lines[index]):
            in_fence = not in_fence
        if in_fence or not _is_pipe_row(lines[index]):
            output.append(lines[index])
            index += 1
            continue
        end = index
        while end < len(lines) and _is_pipe_row(lines[end]):
            end += 1
        block = lines[index:end]
        table = _pipe_rows_to_table(block) if len(block) >= 2 else None
        if table is None:
            output.extend(block)
        else:
            if output and output[-1].strip():
                output.append("")
            output.append(table)
            if end < len(lines) and lines[end].strip():
                output.append("")
        index = end
    return "\n".join(output)


def convert_html_pipe_tables_to_html(html: str) -> str:
    if not html or "|" not in html:
        return html or ""

    def paragraph_replacer(match: re.Match[str]) -> str:
        rows = BR_RE.sub("\n", match.group(1)).split("\n")
        return _pipe_rows_to_table(rows) or match.group(0)

    def consecutive_replacer(match: re.Match[str]) -> str:
        rows = [row.strip() for row in PIPE_PARAGRAPH_RE.findall(match.group(0))]
        if len(rows) < 2:
            return match.group(0)
        table = _pipe_rows_to_table(rows)
        return table + "\n" if table else match.group(0)

    html = PARAGRAPH_PIPE_TABLE_RE.sub(paragraph_replacer, html)
    return CONSECUTIVE_PIPE_PARAGRAPHS_RE.sub(consecutive_replacer, html)


def remove_excessive_bold(html: str) -> str:
    """Unwrap ``<strong>``/``<b>`` except on FAQ "Q:" question lines."""
    if not html:
        return html or ""

    protected: List[str] = []

    def protect(match: re.Match[str]) -> str:
        protected.append(match.group(0))
        return f"__FAQ_QUESTION_{len(protected) - 1}__"

    for pattern in FAQ_QUESTION_PATTERNS:
        html = pattern.sub(protect, html)

    previous = None
    while previous != html:
        previous = html
        html = STRONG_RE.sub(r"\1", html)
        html = BOLD_RE.sub(r"\1", html)

    for index, question in enumerate(protected):
        html = html.replace(f"__FAQ_QUESTION_{index}__", question, 1)
    return html


def _ensure_table_class(html: str) -> str:
    def replacer(match: re.Match[str]) -> str:
        attrs = match.group(1) or ""
        if re.search(r"\bclass\s*=", attrs, flags=re.IGNORECASE):
            if re.search(rf"\b{TABLE_CLASS}\b", attrs):
                return match.group(0)
            attrs = re.sub(
                r'class\s*=\s*"([^"]*)"',
                lambda found: 'class="%s"' % " ".join(found.group(1).split() + [TABLE_CLASS]),
                attrs,
                count=1,
                flags=re.IGNORECASE,
            )
            return f"<table{attrs}>"
        return f'<table class="{TABLE_CLASS}"{attrs}>'

    return re.sub(r"<table(\s[^>]*)?>", replacer, html, flags=re.IGNORECASE)


def _ensure_style_block(html: str) -> str:
    if not re.search(r"<table\b", html, flags=re.IGNORECASE):
        return html
    return TABLE_STYLE_BLOCK + "\n" + STYLE_BLOCK_RE.sub("", html)


def add_inline_spacing(html: str) -> str:
    if not html:
        return html or ""

    embeds: List[str] = []

    def protect(match: re.Match[str]) -> str:
        embeds.append(match.group(0))
        return f"__EMBED_PLACEHOLDER_{len(embeds) - 1}__"

    for pattern in EMBED_PATTERNS:
        html = pattern.sub(protect, html)

    for tag, style in ELEMENT_STYLES.items():
        html = re.sub(rf"<{tag}>", f'<{tag} style="{style}">', html, flags=re.IGNORECASE)
    html = re.sub(
        rf'^(\s*)<p style="{re.escape(P_STYLE)}">',
        rf'\1<p style="{FIRST_P_STYLE}">',
        html,
        count=1,
    )
    html = _ensure_table_class(html)

    for index, embed in enumerate(embeds):
        html = html.replace(f"__EMBED_PLACEHOLDER_{index}__", embed, 1)
    return _ensure_style_block(html)


def is_probably_html(text: str) -> bool:
    if not text:
        return False
    return bool(HTML_BLOCK_RE.search(text)) and not MD_HEADING_LINE_RE.search(text)


def render_markdown(text: str) -> str:
    return markdown.markdown(
        text or "",
        extensions=["extra", "sane_lists"],
        output_format="html5",
    )


def slugify(text: str) -> str:
    cleaned = unescape(strip_tags(text)).lower()
    cleaned = re.sub(r"[^a-z0-9]+", "-", cleaned).strip("-")
    return cleaned or "section"


def add_heading_anchors(html: str) -> str:
    if not html:
        return html or ""

    used: Set[str] = set(ID_ATTR_RE.findall(html))

    def replacer(match: re.Match[str]) -> str:
        level, attrs, inner = match.group(1), match.group(2) or "", match.group(3)
        if ID_ATTR_RE.search(attrs):
            return match.group(0)
        base = slugify(inner)
        slug = base
        suffix = 2
        while slug in used:
            slug = f"{base}-{suffix}"
            suffix += 1
        used.add(slug)
        return f'<h{level} id="{slug}"{attrs}>{inner}</h{level}>'

    return HEADING_RE.sub(replacer, html)

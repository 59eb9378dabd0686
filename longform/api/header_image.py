from __future__ import annotations

import re
from html import escape
from typing import Optional, Tuple

from bs4 import BeautifulSoup

from .models import HeaderImage

HEADER_IMAGE_CLASS = "ai-header-image"
DEFAULT_ALT_TEXT = "Featured article image"

MARKDOWN_IMAGE_RE = re.compile(r"""!\[[^\]]*?\]\(\s*<?([^)\s>]+)>?(?:\s+(?:"[^"]*"|'[^']*'))?\s*\)""")
HTML_IMAGE_RE = re.compile(r"""<img[^>]+src=["']([^"']+)["'][^>]*>""", re.IGNORECASE)
FIRST_H1_RE = re.compile(r"<h1(?:\s[^>]*)?>.*?</h1>", re.IGNORECASE | re.DOTALL)

FIGURE_STYLE = (
    "margin: 0 0 2.5rem 0; width: 100%; border-radius: 28px; overflow: hidden; "
    "box-shadow: 0 25px 45px rgba(15, 23, 42, 0.18); "
    "background: linear-gradient(120deg, rgba(79, 70, 229, 0.08), rgba(236, 72, 153, 0.06));"
)
IMG_STYLE = "display: block; width: 100%; height: auto; max-height: 520px; object-fit: cover;"


def sanitize_image_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    trimmed = url.strip()
    if not trimmed or not re.match(r"^https?://", trimmed, flags=re.IGNORECASE):
        return None
    return trimmed.replace('"', "&quot;")


def _first_image_src(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, "lxml")
    image = soup.find("img", src=True)
    if image is None:
        return None
    return str(image.get("src") or "").strip() or None


def extract_header_image_candidate(content: str) -> Tuple[str, Optional[str]]:
    """Remove the first Markdown or HTML image from raw content and return its URL."""
    if not content:
        return content or "", None
    for pattern in (MARKDOWN_IMAGE_RE, HTML_IMAGE_RE):
        match = pattern.search(content)
        if match and match.group(1).strip():
            url = match.group(1).strip()
            return content[: match.start()] + content[match.end():], url
    return content, None


def build_header_figure(image: HeaderImage) -> str:
    return (
        f'<figure class="{HEADER_IMAGE_CLASS}" style="{FIGURE_STYLE}">\n'
        f'  <img src="{image.url}" alt="{image.alt_text}" style="{IMG_STYLE}" loading="lazy" decoding="async" />\n'
        "</figure>"
    )


def insert_header_image(
    html: str,
    candidate_url: Optional[str],
    alt_text: Optional[str] = None,
    fallback_to_existing: bool = False,
) -> str:
    html = html or ""
    if HEADER_IMAGE_CLASS in html:
        return html

    url = sanitize_image_url(candidate_url)
    if not url and fallback_to_existing and "<img" in html.lower():
        url = sanitize_image_url(_first_image_src(html))
    if not url:
        return html

    image = HeaderImage(url=url, alt_text=escape((alt_text or "").strip() or DEFAULT_ALT_TEXT, quote=True))
    figure = build_header_figure(image)

    match = FIRST_H1_RE.search(html)
    if match:
        return html[: match.end()] + "\n" + figure + "\n" + html[match.end():]
    return figure + "\n" + html

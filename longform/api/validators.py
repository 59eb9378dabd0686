from __future__ import annotations

import re
from typing import List

from bs4 import BeautifulSoup

from .settings import INTERNAL_LINK_PREFIX

MIN_H2_SECTIONS = 4
MIN_ARTICLE_WORDS = 2000
FAQ_HEADING_RE = re.compile(r"^\s*(faq|frequently asked questions|common questions)\b", re.IGNORECASE)


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def count_hyperlinks(html: str) -> int:
    return len(_soup(html).find_all("a", href=True))


def count_internal_links(html: str) -> int:
    soup = _soup(html)
    return len(
        [
            a
            for a in soup.find_all("a", href=True)
            if "internal-link" in (a.get("class") or []) or str(a.get("href")).startswith(INTERNAL_LINK_PREFIX)
        ]
    )


def count_h2(html: str) -> int:
    return len(_soup(html).find_all("h2"))


def count_h3(html: str) -> int:
    return len(_soup(html).find_all("h3"))


def has_table(html: str) -> bool:
    return _soup(html).find("table") is not None


def has_faq(html: str) -> bool:
    soup = _soup(html)
    for heading in soup.find_all(["h2", "h3"]):
        if FAQ_HEADING_RE.match(heading.get_text(" ")):
            return True
    return False


def word_count_from_html(html: str) -> int:
    soup = _soup(html)
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text(" ")
    words = re.findall(r"\b\w+\b", text)
    return len(words)


def validate_article_structure(
    html: str,
    *,
    min_h2: int = MIN_H2_SECTIONS,
    min_words: int = MIN_ARTICLE_WORDS,
) -> List[str]:
    """Return warning codes for a finished article; an empty list means it looks complete."""
    warnings: List[str] = []
    h2_count = count_h2(html)
    if h2_count < min_h2:
        warnings.append(f"h2_count_low:{h2_count}")
    if not has_table(html):
        warnings.append("table_missing")
    if not has_faq(html):
        warnings.append("faq_missing")
    word_count = word_count_from_html(html)
    if word_count < min_words:
        warnings.append(f"word_count_low:{word_count}")
    return warnings

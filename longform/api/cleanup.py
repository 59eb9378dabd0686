from __future__ import annotations

import re
from html import unescape
from typing import List, Optional, Tuple

TITLE_LABEL = r"(?:(?:Meta|SEO)\s+)?Title"
META_LABEL = r"Meta\s+Description"
ANY_LABEL = rf"(?:{TITLE_LABEL}|{META_LABEL})"

_EMPHASIS_OPEN = r"(?:<(?:strong|b|em)(?:\s[^>]*)?>\s*)?"
_EMPHASIS_CLOSE = r"(?:\s*</(?:strong|b|em)>)?"
_MD_EMPHASIS = r"(?:\*\*|__|\*|_)?"

_FLAGS = re.IGNORECASE | re.DOTALL


def _paragraph_label(label: str) -> str:
    return rf"<p(?:\s[^>]*)?>\s*{_EMPHASIS_OPEN}{label}\s*:{_EMPHASIS_CLOSE}(?:(?!</p>).)*</p>"


def _line_label(label: str) -> str:
    return rf"^[ \t]*{_MD_EMPHASIS}{label}{_MD_EMPHASIS}[ \t]*:{_MD_EMPHASIS}[^\n]*(?:\n|$)"


PAIRED_PARAGRAPH_RE = re.compile(
    _paragraph_label(TITLE_LABEL) + r"\s*" + _paragraph_label(META_LABEL) + r"\s*",
    _FLAGS,
)
PAIRED_LINE_RE = re.compile(
    _line_label(TITLE_LABEL) + r"(?:[ \t]*\n)*" + _line_label(META_LABEL),
    re.IGNORECASE | re.MULTILINE,
)
LABEL_PARAGRAPH_RE = re.compile(_paragraph_label(ANY_LABEL) + r"\s*", _FLAGS)
LABEL_LINE_RE = re.compile(_line_label(ANY_LABEL), re.IGNORECASE | re.MULTILINE)
HTML_HEADING_LABEL_RE = re.compile(
    rf"(<h([1-6])(?:\s[^>]*)?>\s*){_EMPHASIS_OPEN}{TITLE_LABEL}\s*:{_EMPHASIS_CLOSE}\s*",
    re.IGNORECASE,
)
MD_HEADING_LABEL_RE = re.compile(
    rf"^(#{{1,6}}[ \t]+){_MD_EMPHASIS}{TITLE_LABEL}{_MD_EMPHASIS}[ \t]*:{_MD_EMPHASIS}[ \t]*",
    re.IGNORECASE | re.MULTILINE,
)
EMPTY_PARAGRAPH_RE = re.compile(r"<p(?:\s[^>]*)?>(?:\s|&nbsp;|<br\s*/?>)*</p>", re.IGNORECASE)

LEADING_H1_RE = re.compile(r"<h1(?:\s[^>]*)?>(.*?)</h1>", _FLAGS)
LEADING_MD_H1_RE = re.compile(r"#[ \t]+([^\n]+)(?:\n|$)")
LEADING_PARAGRAPH_RE = re.compile(r"<p(?:\s[^>]*)?>((?:(?!</p>).)*)</p>[ \t]*\n?", _FLAGS)
H1_RE = re.compile(r"<h1(?:\s[^>]*)?>(.*?)</h1>[ \t]*\n?", _FLAGS)
MD_H1_RE = re.compile(r"^#[ \t]+([^\n]+?)[ \t#]*(?:\n|$)", re.MULTILINE)
MID_SENTENCE_STOP_RE = re.compile(r"[.!?]\s+\S")
TITLE_LINE_MAX_CHARS = 150

IMAGE_PLACEHOLDER_RE = re.compile(r"\[Image:\s*([^\]]+)\]", re.IGNORECASE)
TABLE_PLACEHOLDER_RE = re.compile(r"\[Table:\s*([^\]]+)\]", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:html|markdown|md)?\s*", "", cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r"\s*```$", "", cleaned)
    return cleaned.strip()


def strip_tags(html: str) -> str:
    return re.sub(r"<[^>]+>", " ", html or "")


def normalize_title(text: str) -> str:
    cleaned = unescape(strip_tags(text))
    cleaned = re.sub(r"[*_`]+", "", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned.strip().lower()


def remove_scaffold_labels(text: str) -> str:
    """Drop leaked "Title:" / "Meta Description:" scaffolding.

    Paired label blocks go first so an individual pass never leaves half of a pair
    behind; empty paragraphs and blank-line runs left over are removed last.
    """
    if not text:
        return text or ""

    cleaned = PAIRED_PARAGRAPH_RE.sub("", text)
    cleaned = PAIRED_LINE_RE.sub("", cleaned)

    cleaned = HTML_HEADING_LABEL_RE.sub(r"\1", cleaned)
    cleaned = MD_HEADING_LABEL_RE.sub(r"\1", cleaned)
    cleaned = LABEL_PARAGRAPH_RE.sub("", cleaned)
    cleaned = LABEL_LINE_RE.sub("", cleaned)

    cleaned = EMPTY_PARAGRAPH_RE.sub("", cleaned)
    cleaned = re.sub(r"\n[ \t]*(?:\n[ \t]*)+\n", "\n\n", cleaned)
    return cleaned.strip()


def _title_like(line: str) -> bool:
    raw = line.strip()
    if not raw or raw.startswith(("#", "<h2", "<h3", "<h4", "<h5", "<h6", "<table", "<ul", "<ol", "<img", "<iframe", "!", "|", ">", "-", "*")):
        return False
    stripped = re.sub(r"\s+", " ", unescape(strip_tags(raw))).strip()
    if not stripped or not stripped[0].isalnum():
        return False
    if len(stripped) > TITLE_LINE_MAX_CHARS:
        return False
    if MID_SENTENCE_STOP_RE.search(stripped) or stripped.endswith((".", "?", "!")):
        return False
    return True


def _find_leading_title(text: str) -> Optional[Tuple[str, int, int]]:
    working = (text or "").replace("\ufeff", "")
    start = len(working) - len(working.lstrip())
    head = working[start:]
    if not head:
        return None

    match = LEADING_H1_RE.match(head)
    if match:
        return match.group(1), start, start + match.end()

    match = LEADING_MD_H1_RE.match(head)
    if match:
        title = re.sub(r"[ \t#]+$", "", match.group(1))
        return title, start, start + match.end()

    match = LEADING_PARAGRAPH_RE.match(head)
    if match:
        if _title_like(match.group(0)):
            return match.group(1), start, start + match.end()
        return None

    line_end = head.find("\n")
    line = head if line_end < 0 else head[:line_end]
    if _title_like(line):
        end = start + (len(head) if line_end < 0 else line_end + 1)
        return line, start, end
    return None


def extract_leading_title(text: str) -> Optional[str]:
    found = _find_leading_title(text)
    if not found:
        return None
    title = re.sub(r"\s+", " ", unescape(strip_tags(found[0]))).strip()
    title = re.sub(r"^[*_]+|[*_]+$", "", title).strip()
    return title or None


def remove_duplicate_titles(text: str, known_title: Optional[str] = None) -> str:
    """Remove the opening title and every later ``<h1>`` / ``# h1`` repeating it."""
    if not text:
        return text or ""

    working = text.replace("\ufeff", "")
    targets: List[str] = []
    found = _find_leading_title(working)
    if found:
        targets.append(normalize_title(found[0]))
        working = working[: found[1]] + working[found[2]:]
    if known_title:
        targets.append(normalize_title(known_title))
    targets = [target for target in targets if target]
    if not targets:
        return working.strip()

    def drop_if_title(match: re.Match[str]) -> str:
        return "" if normalize_title(match.group(1)) in targets else match.group(0)

    working = H1_RE.sub(drop_if_title, working)
    working = MD_H1_RE.sub(drop_if_title, working)
    return working.strip()


def process_content_placeholders(text: str, image_urls: List[str]) -> str:
    pool = iter(image_urls or [])

    def image_replacer(match: re.Match[str]) -> str:
        url = next(pool, None)
        if url is None:
            return ""
        alt = match.group(1).strip() or "Article image"
        return f"\n\n![{alt}]({url})\n\n"

    processed = IMAGE_PLACEHOLDER_RE.sub(image_replacer, text or "")
    return TABLE_PLACEHOLDER_RE.sub("", processed)

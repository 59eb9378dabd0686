from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from .models import AnchorCandidate, LinkInsertion, LinkResult, RelatedItem
from .related import RelatedProvider, coerce_related_items
from .settings import INTERNAL_LINK_PREFIX, MAX_INTERNAL_LINKS, RELATED_ITEMS_LIMIT

logger = logging.getLogger("longform.linker")

STOPWORDS = {"the", "a", "an", "in", "on", "at", "to", "for", "of", "with", "by"}
PROTECTED_TAGS = ("iframe", "object", "style", "script")
POSSESSIVE_RE = re.compile(r"['’]s$", re.IGNORECASE)

LINK_STYLE = (
    "font-weight: 700; color: #1d4ed8; text-decoration: underline; text-decoration-thickness: 2.5px; "
    "text-underline-offset: 3px; background-color: rgba(37, 99, 235, 0.12); padding: 3px 7px; "
    "border-radius: 5px; border: 1.5px solid rgba(37, 99, 235, 0.3);"
)


def _clean_token(token: str) -> Tuple[str, bool]:
    """Return the token without punctuation or a trailing possessive, and whether it had one."""
    stripped = token.strip("\"'“”‘’.,!?;:()[]")
    possessive = bool(POSSESSIVE_RE.search(stripped))
    if possessive:
        stripped = POSSESSIVE_RE.sub("", stripped)
    return re.sub(r"[^\w]", "", stripped), possessive


def _is_important(word: str) -> bool:
    return len(word) > 4 or (len(word) >= 3 and word[:1].isupper())


def derive_anchor_candidates(item: RelatedItem) -> List[AnchorCandidate]:
    tokens = [_clean_token(token) for token in item.title.split()]
    phrases: List[str] = []

    def add(phrase: str) -> None:
        if phrase and phrase.lower() not in (existing.lower() for existing in phrases):
            phrases.append(phrase)

    for word, possessive in tokens:
        if len(word) >= 5 and word[:1].isupper() and word.lower() not in STOPWORDS:
            add(word)
            if possessive:
                add(f"{word}'s")

    for (first, _), (second, _) in zip(tokens, tokens[1:]):
        if _is_important(first) and _is_important(second):
            add(f"{first} {second}")

    for word, _possessive in tokens:
        if len(word) >= 5 and not any(word.lower() in phrase.lower() for phrase in phrases):
            add(word)

    candidates = [
        AnchorCandidate(
            phrase=phrase,
            title=item.title,
            slug=item.slug,
            rank_score=len(phrase),
            capitalized=phrase[:1].isupper(),
        )
        for phrase in phrases
    ]
    # sorted() is stable, so equal ranks keep discovery order
    return sorted(candidates, key=lambda candidate: (not candidate.capitalized, -candidate.rank_score))


def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    words = [re.escape(word) for word in phrase.split()]
    return re.compile(r"\b" + r"\s+".join(words) + r"(?:['’]s)?\b", re.IGNORECASE)


def _inside(lower: str, index: int, opener: str, closer: str) -> bool:
    return lower.rfind(opener, 0, index) > lower.rfind(closer, 0, index)


def _is_linkable_position(lower: str, index: int) -> bool:
    if lower.rfind("<", 0, index) > lower.rfind(">", 0, index):
        return False
    last_anchor = max(lower.rfind("<a ", 0, index), lower.rfind("<a>", 0, index))
    if last_anchor > lower.rfind("</a>", 0, index):
        return False
    for tag in PROTECTED_TAGS:
        if _inside(lower, index, f"<{tag}", f"</{tag}>"):
            return False
    return True


def find_linkable_match(html: str, phrase: str) -> Optional[re.Match[str]]:
    lower = html.lower()
    for match in _phrase_pattern(phrase).finditer(html):
        if _is_linkable_position(lower, match.start()):
            return match
    return None


def build_internal_link(url: str, text: str) -> str:
    return (
        f'<a href="{url}" class="internal-link" data-link-type="auto-generated" '
        f'style="{LINK_STYLE}">{text}</a>'
    )


def link_internal_content(
    body_html: str,
    source: str,
    provider: Optional[RelatedProvider],
    max_links: int = MAX_INTERNAL_LINKS,
    related_limit: int = RELATED_ITEMS_LIMIT,
) -> LinkResult:
    """Wrap first eligible phrase matches from related titles in internal links.

    At most one link per related item and ``max_links`` per document. Provider
    failures leave the content untouched.
    """
    result = LinkResult(linked_content=body_html or "")
    if not body_html or provider is None or max_links <= 0:
        return result

    try:
        items = coerce_related_items(provider(source, related_limit))
    except Exception as exc:
        logger.warning("longform.linker.related_unavailable source=%s error=%s", source, exc)
        return result
    if not items:
        logger.info("longform.linker.no_related source=%s", source)
        return result

    source_slug = re.sub(r"[^a-z0-9]+", "-", (source or "").lower()).strip("-")
    html = body_html
    for item in items[:related_limit]:
        if result.links_added >= max_links:
            break
        if item.slug == source_slug:
            continue
        url = f"{INTERNAL_LINK_PREFIX}{item.slug}/"
        for candidate in derive_anchor_candidates(item):
            match = find_linkable_match(html, candidate.phrase)
            if match is None:
                continue
            html = html[: match.start()] + build_internal_link(url, match.group(0)) + html[match.end():]
            result.insertions.append(
                LinkInsertion(phrase=match.group(0), url=url, offset=match.start(), slug=item.slug)
            )
            result.links_added += 1
            logger.info("longform.linker.linked phrase=%s slug=%s", match.group(0), item.slug)
            break

    result.linked_content = html
    return result

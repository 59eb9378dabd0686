from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import requests
from pydantic import ValidationError

from .models import RelatedItem
from .settings import DEFAULT_HTTP_RETRIES, DEFAULT_TIMEOUT_SECONDS, RELATED_ITEMS_LIMIT

logger = logging.getLogger("longform.related")

RelatedProvider = Callable[[str, int], List[RelatedItem]]

POSTS_PER_PAGE = 50
MIN_SIMILARITY = 0.1
BRAND_BOOST = 1.5
_PUNCTUATION = re.compile(r"['\".,!?;:]")


class RelatedContentUnavailable(RuntimeError):
    pass


def _clean_word(word: str) -> str:
    return _PUNCTUATION.sub("", word)


def _long_words(title: str) -> List[str]:
    return [word for word in (_clean_word(raw).lower() for raw in title.split()) if len(word) > 4]


def _capitalized_words(title: str, min_length: int) -> List[str]:
    words = (_clean_word(raw) for raw in title.split())
    return [word.lower() for word in words if len(word) >= min_length and word[:1].isupper()]


def coerce_related_items(raw_items: Iterable[Union[RelatedItem, Dict[str, Any]]]) -> List[RelatedItem]:
    items: List[RelatedItem] = []
    for raw in raw_items or []:
        if isinstance(raw, RelatedItem):
            items.append(raw)
            continue
        try:
            items.append(RelatedItem.model_validate(raw))
        except ValidationError:
            logger.debug("longform.related.skip_invalid item=%s", raw)
    return items


def rank_related_posts(
    source_title: str,
    posts: Iterable[Union[RelatedItem, Dict[str, Any]]],
    limit: int = RELATED_ITEMS_LIMIT,
) -> List[RelatedItem]:
    """Order posts by keyword overlap with ``source_title``.

    Keywords are words longer than four characters plus capitalized words of five
    or more. A shared capitalized (brand-like) word boosts the score by half, capped
    at 1.0. Posts scoring 0.1 or less are dropped.
    """
    source_title = source_title or ""
    brand_words = _capitalized_words(source_title, 5)
    keywords = list(dict.fromkeys(_long_words(source_title) + brand_words))
    if not keywords:
        return []

    scored = []
    for item in coerce_related_items(posts):
        post_words = _long_words(item.title)
        post_capitalized = _capitalized_words(item.title, 3)
        shared = [keyword for keyword in keywords if keyword in post_words or keyword in post_capitalized]
        similarity = len(shared) / max(len(keywords), len(post_words))
        if any(word in post_capitalized for word in brand_words):
            similarity = min(similarity * BRAND_BOOST, 1.0)
        if similarity > MIN_SIMILARITY:
            scored.append((similarity, item))

    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [item for _score, item in scored[: max(0, limit)]]


class StaticRelatedContent:
    """Provider over an inline list, consumed in the order given."""

    def __init__(self, items: Iterable[Union[RelatedItem, Dict[str, Any]]]) -> None:
        self.items = coerce_related_items(items)

    def __call__(self, source: str, limit: int) -> List[RelatedItem]:
        return self.items[: max(0, limit)]


class WordPressRelatedContent:
    """Fetches published posts from a WordPress REST API and ranks them by title."""

    def __init__(
        self,
        api_url: str,
        *,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        retries: int = DEFAULT_HTTP_RETRIES,
        session: Optional[requests.Session] = None,
    ) -> None:
        base = (api_url or "").strip().rstrip("/")
        if base.endswith("/wp-json"):
            base = base[: -len("/wp-json")]
        self.api_url = base
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.session = session

    @property
    def posts_url(self) -> str:
        return f"{self.api_url}/wp-json/wp/v2/posts"

    def fetch_posts(self) -> List[RelatedItem]:
        if not self.api_url:
            raise RelatedContentUnavailable("WordPress API URL is not configured.")
        if self.session is not None:
            return self._fetch_with(self.session)
        with requests.Session() as session:
            session.headers.update({"User-Agent": "longform-service/1.0", "Accept": "application/json"})
            return self._fetch_with(session)

    def _fetch_with(self, session: requests.Session) -> List[RelatedItem]:
        attempts = max(1, self.retries)
        last_error: Optional[str] = None
        for attempt in range(1, attempts + 1):
            try:
                response = session.get(
                    self.posts_url,
                    params={"per_page": POSTS_PER_PAGE},
                    timeout=self.timeout_seconds,
                )
                if response.status_code >= 400:
                    last_error = f"http_{response.status_code}"
                else:
                    payload = response.json()
                    if not isinstance(payload, list):
                        raise RelatedContentUnavailable("WordPress returned an unexpected payload.")
                    return coerce_related_items(_post_fields(post) for post in payload if isinstance(post, dict))
            except (requests.RequestException, ValueError) as exc:
                last_error = str(exc)
            if attempt < attempts:
                time.sleep(0.4 * attempt)

        logger.warning("longform.related.fetch_failed url=%s error=%s", self.posts_url, last_error)
        raise RelatedContentUnavailable(f"Could not fetch posts: {last_error}")

    def __call__(self, source: str, limit: int) -> List[RelatedItem]:
        posts = self.fetch_posts()
        source_slug = re.sub(r"[^a-z0-9]+", "-", (source or "").lower()).strip("-")
        candidates = [post for post in posts if post.slug != source_slug]
        source_title = source.replace("-", " ") if source and " " not in source else source
        related = rank_related_posts(source_title, candidates, limit)
        logger.info("longform.related.ranked source=%s fetched=%s related=%s", source, len(posts), len(related))
        return related


def _post_fields(post: Dict[str, Any]) -> Dict[str, Any]:
    title = post.get("title")
    if isinstance(title, dict):
        title = title.get("rendered")
    return {"title": title or "", "slug": post.get("slug") or ""}

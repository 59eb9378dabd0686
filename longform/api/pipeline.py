from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional

from .cleanup import (
    extract_leading_title,
    process_content_placeholders,
    remove_duplicate_titles,
    remove_scaffold_labels,
    strip_code_fences,
)
from .header_image import HEADER_IMAGE_CLASS, extract_header_image_candidate, insert_header_image
from .linker import link_internal_content
from .llm import ModelClient
from .models import PHASE_ORDER, ArticleRequest, AssembledArticle
from .normalizer import (
    add_heading_anchors,
    add_inline_spacing,
    convert_html_pipe_tables_to_html,
    convert_markdown_tables_to_html,
    is_probably_html,
    remove_excessive_bold,
    render_markdown,
)
from .orchestrator import CancelToken, PhaseOrchestrator, ProgressFn, RetryPolicy
from .related import RelatedProvider, WordPressRelatedContent
from .settings import MAX_INTERNAL_LINKS, RELATED_ITEMS_LIMIT, PipelineSettings
from .validators import validate_article_structure, word_count_from_html

logger = logging.getLogger("longform.pipeline")

OUTLINE_TITLE_RE = re.compile(r"^\s*(?:[*_]{0,2})(?:Title)(?:[*_]{0,2})\s*:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
OUTLINE_H1_RE = re.compile(r"^#[ \t]+(.+)$", re.MULTILINE)


def _apply(step: str, func: Callable[[str], str], value: str, warnings: List[str]) -> str:
    try:
        return func(value)
    except Exception:
        logger.exception("longform.assemble.step_failed step=%s", step)
        warnings.append(f"{step}_failed")
        return value


def _render_body(content: str) -> str:
    if is_probably_html(content):
        return content
    return render_markdown(convert_markdown_tables_to_html(content))


def assemble_article_html(
    raw: str,
    *,
    title: Optional[str] = None,
    hero_image_url: Optional[str] = None,
    image_urls: Optional[List[str]] = None,
    related_provider: Optional[RelatedProvider] = None,
    source: str = "",
    heading_anchors: bool = False,
    max_links: int = MAX_INTERNAL_LINKS,
    related_limit: int = RELATED_ITEMS_LIMIT,
) -> AssembledArticle:
    """Turn generated Markdown/HTML into publishable article HTML.

    Steps run in a fixed order: placeholders, hero extraction, scaffold labels,
    duplicate titles, Markdown rendering, pipe-table repair, bold stripping, inline
    spacing, header image, internal links. A failing step is skipped with a warning.
    """
    warnings: List[str] = []

    content = strip_code_fences(raw)
    content = _apply("placeholders", lambda text: process_content_placeholders(text, image_urls or []), content, warnings)
    content, candidate_url = extract_header_image_candidate(content)
    content = _apply("scaffold_labels", remove_scaffold_labels, content, warnings)

    resolved_title = (title or "").strip() or (extract_leading_title(content) or "")
    content = _apply("duplicate_titles", lambda text: remove_duplicate_titles(text, known_title=title), content, warnings)

    html = _apply("markdown", _render_body, content, warnings)
    html = _apply("pipe_tables", convert_html_pipe_tables_to_html, html, warnings)
    html = _apply("bold", remove_excessive_bold, html, warnings)
    html = _apply("spacing", add_inline_spacing, html, warnings)
    if heading_anchors:
        html = _apply("heading_anchors", add_heading_anchors, html, warnings)
    html = _apply(
        "header_image",
        lambda text: insert_header_image(
            text,
            hero_image_url or candidate_url,
            resolved_title,
            fallback_to_existing=True,
        ),
        html,
        warnings,
    )
    if HEADER_IMAGE_CLASS not in html:
        warnings.append("header_image_missing")

    links_added = 0
    if related_provider is not None:
        result = link_internal_content(
            html,
            source or resolved_title,
            related_provider,
            max_links=max_links,
            related_limit=related_limit,
        )
        html = result.linked_content
        links_added = result.links_added
        if not links_added:
            warnings.append("internal_links_none")

    return AssembledArticle(html=html, title=resolved_title, links_added=links_added, warnings=warnings)


def title_from_outline(outline: str) -> Optional[str]:
    cleaned = strip_code_fences(outline)
    if not cleaned:
        return None
    for pattern in (OUTLINE_TITLE_RE, OUTLINE_H1_RE):
        match = pattern.search(cleaned)
        if match:
            title = re.sub(r"^[*_\"]+|[*_\"]+$", "", match.group(1).strip()).strip()
            if title:
                return title
    return extract_leading_title(cleaned)


def _resolve_related_provider(
    request: ArticleRequest,
    related_provider: Optional[RelatedProvider],
    settings: PipelineSettings,
    warnings: List[str],
) -> Optional[RelatedProvider]:
    if not (request.link_content and settings.link_content):
        return None
    if related_provider is not None:
        return related_provider
    if settings.wordpress_api_url:
        return WordPressRelatedContent(
            settings.wordpress_api_url,
            timeout_seconds=settings.http_timeout_seconds,
            retries=settings.http_retries,
        )
    warnings.append("related_content_unconfigured")
    return None


def run_article_pipeline(
    request: ArticleRequest,
    *,
    client: Optional[Any] = None,
    related_provider: Optional[RelatedProvider] = None,
    settings: Optional[PipelineSettings] = None,
    on_progress: Optional[ProgressFn] = None,
    cancel_token: Optional[CancelToken] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Dict[str, Any]:
    settings = settings or PipelineSettings.from_env()
    cancel_token = cancel_token or CancelToken(deadline_seconds=settings.deadline_seconds)
    warnings: List[str] = []
    debug: Dict[str, Any] = {"timings_ms": {}}

    if client is None:
        client = ModelClient.from_env(
            timeout_seconds=settings.http_timeout_seconds,
            temperature=settings.temperature,
        )
    complete = client.complete if hasattr(client, "complete") else client
    models = list(request.models) if "models" in request.model_fields_set else list(settings.models)

    orchestrator = PhaseOrchestrator(
        complete,
        models=models,
        policy=RetryPolicy.from_settings(settings),
        sleep=sleep,
        cancel_token=cancel_token,
        on_progress=on_progress,
    )

    phase_start = time.time()
    logger.info("longform.pipeline.start topic=%s models=%s", request.topic, models)
    document = orchestrator.generate(request)
    debug["timings_ms"]["generation"] = int((time.time() - phase_start) * 1000)
    debug["models"] = {result.phase: result.model for result in document.phases}

    cancel_token.raise_if_cancelled()
    if on_progress is not None:
        on_progress(len(PHASE_ORDER), "Assembling article", 90)

    phase_start = time.time()
    title = title_from_outline(document.outline) or request.topic
    provider = _resolve_related_provider(request, related_provider, settings, warnings)
    assembled = assemble_article_html(
        document.content,
        title=title,
        hero_image_url=request.hero_image_url,
        image_urls=request.image_urls,
        related_provider=provider,
        source=request.source_slug or title,
        heading_anchors=request.heading_anchors,
        max_links=settings.max_links,
        related_limit=settings.related_limit,
    )
    warnings.extend(assembled.warnings)
    warnings.extend(validate_article_structure(assembled.html))
    debug["timings_ms"]["assembly"] = int((time.time() - phase_start) * 1000)

    word_count = word_count_from_html(assembled.html)
    logger.info(
        "longform.pipeline.done title=%s words=%s links=%s warnings=%s",
        assembled.title,
        word_count,
        assembled.links_added,
        len(warnings),
    )
    if on_progress is not None:
        on_progress(len(PHASE_ORDER) + 1, "Complete", 100)

    return {
        "ok": True,
        "title": assembled.title,
        "html": assembled.html,
        "links_added": assembled.links_added,
        "word_count": word_count,
        "phases": {result.phase: result.word_count for result in document.phases},
        "warnings": warnings,
        "debug": debug,
    }

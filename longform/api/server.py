"""
Longform Article Service

Run locally:
python -m uvicorn longform.api.server:app --host 0.0.0.0 --port 8000 --reload

Request example (JSON) for POST /generate:
{
  "topic": "email marketing automation",
  "instructions": "Focus on small e-commerce teams",
  "image_urls": ["https://cdn.example.com/a.jpg"],
  "business_name": "Acme Growth",
  "website_url": "https://acme.example.com"
}
"""

from __future__ import annotations

import json
import logging
import os
import queue
import threading
import time
from dataclasses import asdict
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse
from starlette.concurrency import run_in_threadpool

from .linker import link_internal_content
from .llm import LLMConfigError, ModelClient
from .models import ArticleRequest, ErrorResponse, FormatRequest, LinkRequest
from .orchestrator import CancelToken, GenerationCancelled, GenerationFailure
from .pipeline import assemble_article_html, run_article_pipeline
from .related import RelatedProvider, StaticRelatedContent, WordPressRelatedContent
from .settings import PipelineSettings, resolve_llm_api_key

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("longform")

STREAM_IDLE_TIMEOUT_SECONDS = 300
STREAM_POLL_SECONDS = 1.0

app = FastAPI(title="Longform Service")

cors_origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def get_settings() -> PipelineSettings:
    return PipelineSettings.from_env()


def get_model_client(settings: PipelineSettings = Depends(get_settings)) -> Any:
    try:
        return ModelClient.from_env(
            timeout_seconds=settings.http_timeout_seconds,
            temperature=settings.temperature,
        )
    except LLMConfigError as exc:
        raise HTTPException(status_code=503, detail="llm_not_configured") from exc


def get_related_provider(settings: PipelineSettings = Depends(get_settings)) -> Optional[RelatedProvider]:
    if not settings.wordpress_api_url:
        return None
    return WordPressRelatedContent(
        settings.wordpress_api_url,
        timeout_seconds=settings.http_timeout_seconds,
        retries=settings.http_retries,
    )


def _failure_response(exc: GenerationFailure) -> JSONResponse:
    logger.warning("longform.pipeline_failed phase=%s error=%s", exc.phase, str(exc))
    response = ErrorResponse(
        error="pipeline_failed",
        details={"message": str(exc), "phase": exc.phase, "errors": exc.errors},
    )
    return JSONResponse(status_code=422, content=response.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = json.loads(json.dumps(exc.errors(), default=str))
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error="validation_error", details={"errors": errors}).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    payload = ErrorResponse(error=str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=payload.model_dump())


@app.exception_handler(Exception)
async def unhandled_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.exception("longform.unhandled_error")
    payload = ErrorResponse(error="internal_error")
    return JSONResponse(status_code=500, content=payload.model_dump())


@app.get("/health")
async def health() -> JSONResponse:
    llm_ready = bool(resolve_llm_api_key())
    related_ready = bool(os.getenv("WORDPRESS_API_URL", "").strip())
    payload = {"ok": llm_ready, "llm_ready": llm_ready, "related_ready": related_ready}
    return JSONResponse(status_code=200 if llm_ready else 503, content=payload)


@app.post("/generate")
async def generate(
    payload: ArticleRequest,
    settings: PipelineSettings = Depends(get_settings),
    client: Any = Depends(get_model_client),
    related_provider: Optional[RelatedProvider] = Depends(get_related_provider),
) -> JSONResponse:
    try:
        result = await run_in_threadpool(
            run_article_pipeline,
            payload,
            client=client,
            related_provider=related_provider,
            settings=settings,
        )
    except GenerationFailure as exc:
        return _failure_response(exc)
    except GenerationCancelled as exc:
        logger.warning("longform.pipeline_cancelled error=%s", str(exc))
        response = ErrorResponse(error="generation_cancelled", details={"message": str(exc)})
        return JSONResponse(status_code=504, content=response.model_dump())

    return JSONResponse(status_code=200, content=result)


@app.post("/generate-stream")
async def generate_stream(
    request: Request,
    payload: ArticleRequest,
    settings: PipelineSettings = Depends(get_settings),
    client: Any = Depends(get_model_client),
    related_provider: Optional[RelatedProvider] = Depends(get_related_provider),
) -> EventSourceResponse:
    """SSE endpoint that streams phase progress events, then the final result."""
    progress_queue: queue.Queue = queue.Queue()
    cancel_token = CancelToken(deadline_seconds=settings.deadline_seconds)

    def on_progress(phase: int, label: str, percent: int) -> None:
        progress_queue.put({"event": "progress", "phase": phase, "label": label, "percent": percent})

    def run_pipeline() -> None:
        try:
            result = run_article_pipeline(
                payload,
                client=client,
                related_provider=related_provider,
                settings=settings,
                on_progress=on_progress,
                cancel_token=cancel_token,
            )
            progress_queue.put({"event": "complete", "data": result})
        except GenerationFailure as exc:
            logger.warning("longform.pipeline_failed phase=%s error=%s", exc.phase, str(exc))
            progress_queue.put({"event": "error", "error": str(exc), "phase": exc.phase, "errors": exc.errors})
        except GenerationCancelled as exc:
            logger.info("longform.stream.cancelled reason=%s", str(exc))
            progress_queue.put({"event": "error", "error": "generation_cancelled"})
        except Exception:
            logger.exception("longform.stream.unhandled_error")
            progress_queue.put({"event": "error", "error": "internal_error"})

    thread = threading.Thread(target=run_pipeline, daemon=True)
    thread.start()

    async def event_generator():
        idle_since = time.monotonic()
        try:
            while True:
                try:
                    msg = await run_in_threadpool(progress_queue.get, True, STREAM_POLL_SECONDS)
                except queue.Empty:
                    if await request.is_disconnected():
                        break
                    if time.monotonic() - idle_since > STREAM_IDLE_TIMEOUT_SECONDS:
                        break
                    continue
                idle_since = time.monotonic()
                event_type = msg.pop("event", "message")
                yield {"event": event_type, "data": json.dumps(msg)}
                if event_type in ("complete", "error"):
                    break
        finally:
            if thread.is_alive():
                cancel_token.cancel()

    return EventSourceResponse(event_generator())


@app.post("/format")
async def format_content(
    payload: FormatRequest,
    settings: PipelineSettings = Depends(get_settings),
    related_provider: Optional[RelatedProvider] = Depends(get_related_provider),
) -> JSONResponse:
    provider = StaticRelatedContent(payload.related) if payload.related else related_provider
    assembled = await run_in_threadpool(
        assemble_article_html,
        payload.content,
        title=payload.title,
        hero_image_url=payload.hero_image_url,
        image_urls=payload.image_urls,
        related_provider=provider,
        source=payload.source_slug or payload.title or "",
        heading_anchors=payload.heading_anchors,
        max_links=settings.max_links,
        related_limit=settings.related_limit,
    )
    content: Dict[str, Any] = {
        "ok": True,
        "title": assembled.title,
        "html": assembled.html,
        "links_added": assembled.links_added,
        "warnings": assembled.warnings,
    }
    return JSONResponse(status_code=200, content=content)


@app.post("/link")
async def link(payload: LinkRequest, settings: PipelineSettings = Depends(get_settings)) -> JSONResponse:
    result = link_internal_content(
        payload.body_html,
        payload.source,
        StaticRelatedContent(payload.related),
        max_links=settings.max_links,
        related_limit=settings.related_limit,
    )
    content = {
        "ok": True,
        "linked_content": result.linked_content,
        "links_added": result.links_added,
        "insertions": [asdict(insertion) for insertion in result.insertions],
    }
    return JSONResponse(status_code=200, content=content)

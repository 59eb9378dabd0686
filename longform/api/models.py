from __future__ import annotations

import re
from dataclasses import dataclass, field
from html import unescape
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .settings import DEFAULT_MODELS

PHASE_OUTLINE = "outline"
PHASE_BODY_1 = "body_1"
PHASE_BODY_2 = "body_2"
PHASE_FINAL = "final"
PHASE_ORDER = (PHASE_OUTLINE, PHASE_BODY_1, PHASE_BODY_2, PHASE_FINAL)

SLUG_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9/_%-]*$")


class VideoRef(BaseModel):
    id: str
    title: str = ""
    url: str = ""

    @field_validator("id", "title", "url", mode="before")
    @classmethod
    def _trim(cls, value: Any) -> str:
        return str(value or "").strip()


class GenerationRequest(BaseModel):
    topic: str
    instructions: str = ""
    image_urls: List[str] = Field(default_factory=list)
    videos: List[VideoRef] = Field(default_factory=list)
    models: List[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    business_name: str = "our company"
    website_url: str = ""

    @field_validator("topic")
    @classmethod
    def _require_topic(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("topic must not be empty")
        return cleaned

    @field_validator("instructions", "website_url", mode="before")
    @classmethod
    def _trim_text(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("business_name", mode="before")
    @classmethod
    def _default_business(cls, value: Any) -> str:
        cleaned = str(value or "").strip()
        return cleaned or "our company"

    @field_validator("image_urls", mode="before")
    @classmethod
    def _clean_image_urls(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        cleaned = [str(item).strip() for item in value if str(item or "").strip()]
        return [url for url in cleaned if url.lower().startswith(("http://", "https://"))]

    @field_validator("models", mode="before")
    @classmethod
    def _clean_models(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return list(DEFAULT_MODELS)
        cleaned = [str(item).strip() for item in value if str(item or "").strip()]
        return cleaned or list(DEFAULT_MODELS)


class ArticleRequest(GenerationRequest):
    hero_image_url: Optional[str] = None
    source_slug: Optional[str] = None
    link_content: bool = True
    heading_anchors: bool = False

    @field_validator("hero_image_url", "source_slug")
    @classmethod
    def _trim_optional(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        cleaned = value.strip()
        return cleaned or None


class RelatedItem(BaseModel):
    title: str
    slug: str

    @field_validator("title", mode="before")
    @classmethod
    def _decode_title(cls, value: Any) -> str:
        return unescape(str(value or "")).strip()

    @field_validator("slug", mode="before")
    @classmethod
    def _clean_slug(cls, value: Any) -> str:
        cleaned = str(value or "").strip().strip("/")
        if not cleaned:
            raise ValueError("slug must not be empty")
        if not SLUG_RE.match(cleaned):
            raise ValueError("slug contains characters not allowed in a URL path")
        return cleaned


class FormatRequest(BaseModel):
    content: str
    title: Optional[str] = None
    hero_image_url: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)
    source_slug: Optional[str] = None
    related: List[RelatedItem] = Field(default_factory=list)
    heading_anchors: bool = False


class LinkRequest(BaseModel):
    body_html: str
    source: str = ""
    related: List[RelatedItem] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    details: Optional[Dict[str, Any]] = None
    warnings: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class PhaseSpec:
    name: str
    prompt: str
    token_budget: int


@dataclass(frozen=True)
class PhaseResult:
    phase: str
    raw_text: str
    word_count: int
    model: str = ""


@dataclass
class Document:
    topic: str
    phases: List[PhaseResult] = field(default_factory=list)

    @property
    def outline(self) -> str:
        for result in self.phases:
            if result.phase == PHASE_OUTLINE:
                return result.raw_text
        return ""

    @property
    def body_phases(self) -> List[PhaseResult]:
        return [result for result in self.phases if result.phase != PHASE_OUTLINE]

    @property
    def content(self) -> str:
        return "\n\n".join(result.raw_text for result in self.body_phases)

    @property
    def word_count(self) -> int:
        return sum(result.word_count for result in self.body_phases)


@dataclass(frozen=True)
class AnchorCandidate:
    phrase: str
    title: str
    slug: str
    rank_score: int
    capitalized: bool = False


@dataclass(frozen=True)
class LinkInsertion:
    phrase: str
    url: str
    offset: int
    slug: str


@dataclass
class LinkResult:
    linked_content: str
    links_added: int = 0
    insertions: List[LinkInsertion] = field(default_factory=list)


@dataclass(frozen=True)
class HeaderImage:
    url: str
    alt_text: str


@dataclass
class AssembledArticle:
    html: str
    title: str = ""
    links_added: int = 0
    warnings: List[str] = field(default_factory=list)

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

DEFAULT_MODELS: Tuple[str, ...] = (
    "claude-sonnet-4-20250514",
    "claude-sonnet-4-5-20250929",
)
DEFAULT_LLM_BASE_URL = "https://api.anthropic.com/v1"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT_SECONDS = 120
DEFAULT_HTTP_RETRIES = 2

MAX_TRIES_PER_MODEL = 3
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 30.0
PHASE_COOLDOWN_SECONDS = 15.0

OUTLINE_TOKEN_BUDGET = 3000
BODY_TOKEN_BUDGET = 5000
FINAL_TOKEN_BUDGET = 8000

MAX_INTERNAL_LINKS = 3
RELATED_ITEMS_LIMIT = 3
INTERNAL_LINK_PREFIX = "/blog/"


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError:
        return default


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        return float(raw)
    except ValueError:
        return default


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name, "true" if default else "false").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _read_list_env(name: str, default: Tuple[str, ...]) -> List[str]:
    raw = os.getenv(name, "")
    values = [item.strip() for item in raw.split(",") if item.strip()]
    return values or list(default)


def resolve_llm_api_key() -> str:
    return (
        os.getenv("LONGFORM_LLM_API_KEY", "").strip()
        or os.getenv("ANTHROPIC_API_KEY", "").strip()
        or os.getenv("OPENAI_API_KEY", "").strip()
    )


def resolve_llm_base_url() -> str:
    explicit = os.getenv("LONGFORM_LLM_BASE_URL", "").strip()
    if explicit:
        return explicit
    if os.getenv("OPENAI_API_KEY", "").strip() and not os.getenv("ANTHROPIC_API_KEY", "").strip():
        return "https://api.openai.com/v1"
    return DEFAULT_LLM_BASE_URL


@dataclass
class PipelineSettings:
    """Runtime knobs for one generation run, usually built from the environment."""

    models: List[str] = field(default_factory=lambda: list(DEFAULT_MODELS))
    max_tries_per_model: int = MAX_TRIES_PER_MODEL
    backoff_base_seconds: float = BACKOFF_BASE_SECONDS
    backoff_max_seconds: float = BACKOFF_MAX_SECONDS
    cooldown_seconds: float = PHASE_COOLDOWN_SECONDS
    http_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    http_retries: int = DEFAULT_HTTP_RETRIES
    deadline_seconds: Optional[float] = None
    max_links: int = MAX_INTERNAL_LINKS
    related_limit: int = RELATED_ITEMS_LIMIT
    temperature: float = DEFAULT_TEMPERATURE
    wordpress_api_url: str = ""
    link_content: bool = True

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        deadline = _read_float_env("LONGFORM_DEADLINE_SECONDS", 0.0)
        return cls(
            models=_read_list_env("LONGFORM_MODELS", DEFAULT_MODELS),
            max_tries_per_model=max(1, _read_int_env("LONGFORM_MAX_TRIES", MAX_TRIES_PER_MODEL)),
            backoff_base_seconds=_read_float_env("LONGFORM_BACKOFF_BASE_SECONDS", BACKOFF_BASE_SECONDS),
            backoff_max_seconds=_read_float_env("LONGFORM_BACKOFF_MAX_SECONDS", BACKOFF_MAX_SECONDS),
            cooldown_seconds=_read_float_env("LONGFORM_COOLDOWN_SECONDS", PHASE_COOLDOWN_SECONDS),
            http_timeout_seconds=_read_int_env("LONGFORM_HTTP_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            http_retries=_read_int_env("LONGFORM_HTTP_RETRIES", DEFAULT_HTTP_RETRIES),
            deadline_seconds=deadline if deadline > 0 else None,
            max_links=_read_int_env("LONGFORM_MAX_LINKS", MAX_INTERNAL_LINKS),
            related_limit=_read_int_env("LONGFORM_RELATED_LIMIT", RELATED_ITEMS_LIMIT),
            temperature=_read_float_env("LONGFORM_TEMPERATURE", DEFAULT_TEMPERATURE),
            wordpress_api_url=os.getenv("WORDPRESS_API_URL", "").strip(),
            link_content=_read_bool_env("LONGFORM_LINK_CONTENT", True),
        )

from __future__ import annotations

import logging
from typing import Optional

import requests

from .settings import (
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT_SECONDS,
    resolve_llm_api_key,
    resolve_llm_base_url,
)

logger = logging.getLogger("longform.llm")

USER_INSTRUCTION = "Generate the content as specified in the system prompt."


class LLMConfigError(RuntimeError):
    pass


class ProviderError(RuntimeError):
    """A single failed completion attempt against one model."""

    kind = "provider_error"

    def __init__(self, message: str, *, model: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.model = model
        self.status_code = status_code


class ModelUnavailable(ProviderError):
    kind = "model_unavailable"


class RateLimited(ProviderError):
    kind = "rate_limited"


class TransientProviderError(ProviderError):
    kind = "transient"


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:400] or response.reason or "Unknown error"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])[:400]
    if isinstance(error, str) and error:
        return error[:400]
    return response.reason or "Unknown error"


def _raise_for_status(response: requests.Response, model: str) -> None:
    status = response.status_code
    if status < 400:
        return
    message = f"LLM HTTP {status}: {_error_message(response)}"
    if status == 404:
        raise ModelUnavailable(message, model=model, status_code=status)
    if status == 429:
        raise RateLimited(message, model=model, status_code=status)
    raise TransientProviderError(message, model=model, status_code=status)


def _post(url: str, *, headers: dict, payload: dict, model: str, timeout_seconds: int) -> dict:
    try:
        response = requests.post(url, headers=headers, json=payload, timeout=timeout_seconds)
    except requests.RequestException as exc:
        raise TransientProviderError(f"LLM request failed: {exc}", model=model) from exc

    _raise_for_status(response, model)

    try:
        body = response.json()
    except ValueError as exc:
        raise TransientProviderError("LLM returned non-JSON response.", model=model) from exc
    if not isinstance(body, dict):
        raise TransientProviderError("LLM returned unexpected payload.", model=model)
    return body


def _call_anthropic(
    *,
    prompt: str,
    api_key: str,
    base_url: str,
    model: str,
    timeout_seconds: int,
    max_tokens: int,
    temperature: float,
) -> str:
    url = base_url.rstrip("/") + "/messages"
    headers = {
        "x-api-key": api_key,
        "anthropic-version": "2023-06-01",
        "Content-Type": "application/json",
    }
    payload = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "system": prompt,
        "messages": [{"role": "user", "content": USER_INSTRUCTION}],
    }
    body = _post(url, headers=headers, payload=payload, model=model, timeout_seconds=timeout_seconds)

    content_blocks = body.get("content")
    if isinstance(content_blocks, list):
        texts = []
        for block in content_blocks:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                if isinstance(text, str) and text.strip():
                    texts.append(text.strip())
        if texts:
            return "\n".join(texts)
    raise TransientProviderError("LLM response missing content.", model=model)


def _call_openai(
    *,
    prompt: str,
    api_key: str,
    base_url: str,
    model: str,
    timeout_seconds: int,
    max_tokens: int,
    temperature: float,
) -> str:
    url = base_url.rstrip("/") + "/chat/completions"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    payload = {
        "model": model,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "messages": [
            {"role": "system", "content": prompt},
            {"role": "user", "content": USER_INSTRUCTION},
        ],
    }
    body = _post(url, headers=headers, payload=payload, model=model, timeout_seconds=timeout_seconds)

    content: Optional[str] = None
    choices = body.get("choices")
    if isinstance(choices, list) and choices:
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if isinstance(message, dict):
            content = message.get("content")
    if not content or not str(content).strip():
        raise TransientProviderError("LLM response missing content.", model=model)
    return str(content).strip()


class ModelClient:
    """Completes one prompt against one named model over HTTP.

    Anthropic's Messages API is used when the base URL or model name points at it,
    otherwise an OpenAI-compatible ``/chat/completions`` endpoint. Failures are
    raised as ``ModelUnavailable`` (404), ``RateLimited`` (429) or
    ``TransientProviderError`` so the orchestrator can pick a retry strategy.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        if not api_key:
            raise LLMConfigError("Missing LLM API key.")
        self.api_key = api_key
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature

    @classmethod
    def from_env(
        cls,
        *,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> "ModelClient":
        return cls(
            api_key=resolve_llm_api_key(),
            base_url=resolve_llm_base_url(),
            timeout_seconds=timeout_seconds,
            temperature=temperature,
        )

    def _uses_anthropic(self, model: str) -> bool:
        return "anthropic" in (self.base_url or "").lower() or model.strip().lower().startswith("claude")

    def complete(self, prompt: str, token_budget: int, model: str) -> str:
        call = _call_anthropic if self._uses_anthropic(model) else _call_openai
        logger.debug("longform.llm.request model=%s max_tokens=%s", model, token_budget)
        return call(
            prompt=prompt,
            api_key=self.api_key,
            base_url=self.base_url,
            model=model,
            timeout_seconds=self.timeout_seconds,
            max_tokens=token_budget,
            temperature=self.temperature,
        )

    __call__ = complete

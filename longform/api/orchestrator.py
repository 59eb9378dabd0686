from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .llm import ModelUnavailable, ProviderError
from .models import (
    PHASE_BODY_1,
    PHASE_BODY_2,
    PHASE_FINAL,
    PHASE_ORDER,
    PHASE_OUTLINE,
    Document,
    GenerationRequest,
    PhaseResult,
)
from .prompts import build_phase_spec
from .settings import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_MAX_SECONDS,
    DEFAULT_MODELS,
    MAX_TRIES_PER_MODEL,
    PHASE_COOLDOWN_SECONDS,
    PipelineSettings,
)

CompleteFn = Callable[[str, int, str], str]
ProgressFn = Callable[[int, str, int], None]

PHASE_LABELS = {
    PHASE_OUTLINE: "Generating outline",
    PHASE_BODY_1: "Writing introduction and sections 1-4",
    PHASE_BODY_2: "Writing sections 5-8",
    PHASE_FINAL: "Writing final sections, FAQ and conclusion",
}
GENERATION_PERCENT_SPAN = 80


class GenerationFailure(RuntimeError):
    """Every candidate model failed for a phase; carries the per-attempt error log."""

    def __init__(self, message: str, *, phase: str = "", errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.phase = phase
        self.errors = list(errors or [])


class GenerationCancelled(RuntimeError):
    pass


class PhaseTransitionError(RuntimeError):
    pass


class PhaseState(enum.Enum):
    PENDING = "pending"
    OUTLINE = PHASE_OUTLINE
    BODY_1 = PHASE_BODY_1
    BODY_2 = PHASE_BODY_2
    FINAL = PHASE_FINAL
    ASSEMBLED = "assembled"
    FAILED = "failed"


_TRANSITIONS = {
    PhaseState.PENDING: {PhaseState.OUTLINE},
    PhaseState.OUTLINE: {PhaseState.BODY_1},
    PhaseState.BODY_1: {PhaseState.BODY_2},
    PhaseState.BODY_2: {PhaseState.FINAL},
    PhaseState.FINAL: {PhaseState.ASSEMBLED},
    PhaseState.ASSEMBLED: set(),
    PhaseState.FAILED: set(),
}
_TERMINAL = {PhaseState.ASSEMBLED, PhaseState.FAILED}


class PhaseRun:
    """State of a single ``generate`` call; phases only move forward."""

    def __init__(self) -> None:
        self.state = PhaseState.PENDING
        self.history: List[PhaseState] = [PhaseState.PENDING]

    def advance(self, target: PhaseState) -> None:
        if target is PhaseState.FAILED:
            if self.state in _TERMINAL:
                raise PhaseTransitionError(f"cannot fail from terminal state {self.state.value}")
        elif target not in _TRANSITIONS[self.state]:
            raise PhaseTransitionError(f"illegal transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def fail(self) -> None:
        if self.state not in _TERMINAL:
            self.advance(PhaseState.FAILED)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = MAX_TRIES_PER_MODEL
    backoff_base_seconds: float = BACKOFF_BASE_SECONDS
    backoff_max_seconds: float = BACKOFF_MAX_SECONDS
    cooldown_seconds: float = PHASE_COOLDOWN_SECONDS

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.max_tries_per_model),
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
            cooldown_seconds=settings.cooldown_seconds,
        )

    def backoff_seconds(self, attempt: int) -> float:
        # attempt is 1 for the first retry
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)


class CancelToken:
    """Cancellation flag plus optional deadline; ``sleep`` wakes early on cancel."""

    def __init__(self, *, deadline_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._event = threading.Event()
        self._clock = clock
        self.deadline: Optional[float] = None
        if deadline_seconds is not None:
            self.deadline = clock() + deadline_seconds

    def cancel(self) -> None:
        self._event.set()

    def _remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - self._clock()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        remaining = self._remaining()
        return remaining is not None and remaining <= 0

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled("generation cancelled")
        remaining = self._remaining()
        if remaining is not None and remaining <= 0:
            raise GenerationCancelled("generation deadline exceeded")

    def sleep(self, seconds: float) -> None:
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        remaining = self._remaining()
        timeout = seconds if remaining is None else min(seconds, max(remaining, 0.0))
        self._event.wait(timeout)
        self.raise_if_cancelled()


class PhaseOrchestrator:
    """Runs the outline, body and final phases in order with model fallback.

    ``complete(prompt, token_budget, model)`` is the provider call. Rate limits
    retry the same model with exponential backoff, 404s drop the model at once,
    and anything else retries up to ``policy.max_attempts`` before moving on.
    A fixed cooldown separates consecutive phases.
    """

    def __init__(
        self,
        complete: CompleteFn,
        *,
        models: Optional[Sequence[str]] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], None]] = None,
        cancel_token: Optional[CancelToken] = None,
        logger: Optional[logging.Logger] = None,
        on_progress: Optional[ProgressFn] = None,
    ) -> None:
        self.complete = complete
        self.models = list(models or [])
        self.policy = policy or RetryPolicy()
        self.cancel_token = cancel_token or CancelToken()
        self.sleep = sleep or self.cancel_token.sleep
        self.logger = logger or logging.getLogger("longform.orchestrator")
        self.on_progress = on_progress

    def _wait(self, seconds: float) -> None:
        self.cancel_token.raise_if_cancelled()
        if seconds > 0:
            self.sleep(seconds)
        self.cancel_token.raise_if_cancelled()

    def _progress(self, index: int, label: str, percent: int) -> None:
        if self.on_progress is not None:
            self.on_progress(index, label, percent)

    def call_model(
        self,
        prompt: str,
        token_budget: int,
        phase: str = "",
        models: Optional[Sequence[str]] = None,
    ) -> Tuple[str, str]:
        """Returns ``(text, model)`` from the first candidate that succeeds."""
        candidates = list(models or self.models or DEFAULT_MODELS)
        errors: List[Dict[str, Any]] = []
        max_attempts = self.policy.max_attempts

        for model in candidates:
            for attempt in range(max_attempts):
                if attempt > 0:
                    delay = self.policy.backoff_seconds(attempt)
                    self.logger.warning(
                        "longform.llm_retry phase=%s model=%s attempt=%s/%s sleep=%.1fs",
                        phase,
                        model,
                        attempt + 1,
                        max_attempts,
                        delay,
                    )
                    self._wait(delay)
                self.cancel_token.raise_if_cancelled()

                try:
                    text = self.complete(prompt, token_budget, model)
                except GenerationCancelled:
                    raise
                except ModelUnavailable as exc:
                    errors.append(_error_entry(model, attempt, exc))
                    self.logger.error("longform.model_unavailable phase=%s model=%s error=%s", phase, model, exc)
                    break
                except ProviderError as exc:
                    errors.append(_error_entry(model, attempt, exc))
                    self.logger.warning(
                        "longform.model_error phase=%s model=%s kind=%s error=%s", phase, model, exc.kind, exc
                    )
                except Exception as exc:
                    errors.append(_error_entry(model, attempt, exc))
                    self.logger.warning("longform.model_exception phase=%s model=%s error=%s", phase, model, exc)
                else:
                    self.logger.info("longform.model_success phase=%s model=%s attempt=%s", phase, model, attempt + 1)
                    return text, model

        summary = "; ".join(f"{entry['model']}: {entry['message']}" for entry in errors) or "no candidate models"
        raise GenerationFailure(
            f"All models failed for phase {phase or 'unknown'}: {summary}",
            phase=phase,
            errors=errors,
        )

    def generate(self, request: GenerationRequest) -> Document:
        run = PhaseRun()
        document = Document(topic=request.topic)
        candidates = self.models or list(request.models)
        outline: Optional[str] = None
        total = len(PHASE_ORDER)

        try:
            for index, phase in enumerate(PHASE_ORDER):
                if index > 0:
                    self._wait(self.policy.cooldown_seconds)
                run.advance(PhaseState(phase))
                spec = build_phase_spec(phase, request, outline)
                self._progress(index, PHASE_LABELS[phase], int(index * GENERATION_PERCENT_SPAN / total))
                self.logger.info("longform.phase.start phase=%s budget=%s", phase, spec.token_budget)

                started = time.time()
                text, model = self.call_model(spec.prompt, spec.token_budget, phase=phase, models=candidates)
                result = PhaseResult(phase=phase, raw_text=text, word_count=len(text.split()), model=model)
                document.phases.append(result)
                if phase == PHASE_OUTLINE:
                    outline = text
                self.logger.info(
                    "longform.phase.done phase=%s model=%s words=%s elapsed_ms=%s",
                    phase,
                    model,
                    result.word_count,
                    int((time.time() - started) * 1000),
                )
            run.advance(PhaseState.ASSEMBLED)
        except (GenerationFailure, GenerationCancelled):
            run.fail()
            raise

        self._progress(total, "Generation complete", GENERATION_PERCENT_SPAN)
        self.logger.info("longform.generation.done topic=%s words=%s", request.topic, document.word_count)
        return document


def _error_entry(model: str, attempt: int, exc: Exception) -> Dict[str, Any]:
    return {
        "model": model,
        "attempt": attempt + 1,
        "kind": getattr(exc, "kind", "exception"),
        "status_code": getattr(exc, "status_code", None),
        "message": str(exc),
    }

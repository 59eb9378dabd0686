import pytest

from longform.api.llm import ModelUnavailable, RateLimited, TransientProviderError
from longform.api.models import PHASE_ORDER, GenerationRequest
from longform.api.orchestrator import (
    CancelToken,
    GenerationCancelled,
    GenerationFailure,
    PhaseOrchestrator,
    PhaseRun,
    PhaseState,
    PhaseTransitionError,
    RetryPolicy,
)


class ScriptedModel:
    """Replays queued outcomes per model; an Exception instance is raised."""

    def __init__(self, script=None, default="generated text"):
        self.script = {model: list(outcomes) for model, outcomes in (script or {}).items()}
        self.default = default
        self.calls = []

    def __call__(self, prompt, token_budget, model):
        self.calls.append((model, token_budget, prompt))
        queue = self.script.get(model)
        outcome = queue.pop(0) if queue else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.delays = []
        self.on_sleep = on_sleep

    def __call__(self, seconds):
        self.delays.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep()


def _request(**overrides):
    payload = {"topic": "email marketing automation", "business_name": "Acme Growth"}
    payload.update(overrides)
    return GenerationRequest(**payload)


def test_generate_runs_phases_in_order_with_budgets():
    model = ScriptedModel()
    sleep = RecordingSleep()
    orchestrator = PhaseOrchestrator(model, models=["m1"], sleep=sleep)

    document = orchestrator.generate(_request())

    assert [result.phase for result in document.phases] == list(PHASE_ORDER)
    assert [budget for _model, budget, _prompt in model.calls] == [3000, 5000, 5000, 8000]
    assert all(result.model == "m1" for result in document.phases)


def test_later_phases_receive_outline():
    model = ScriptedModel({"m1": ["OUTLINE-MARKER", "BODY-ONE-MARKER", "BODY-TWO-MARKER", "FINAL-MARKER"]})
    orchestrator = PhaseOrchestrator(model, models=["m1"], sleep=RecordingSleep())

    document = orchestrator.generate(_request())

    prompts = [prompt for _model, _budget, prompt in model.calls]
    assert "OUTLINE-MARKER" not in prompts[0]
    assert all("OUTLINE-MARKER" in prompt for prompt in prompts[1:])
    assert document.outline == "OUTLINE-MARKER"
    assert "BODY-ONE-MARKER" not in prompts[2]
    assert not any(marker in prompts[3] for marker in ("BODY-ONE-MARKER", "BODY-TWO-MARKER"))
    assert document.content == "BODY-ONE-MARKER\n\nBODY-TWO-MARKER\n\nFINAL-MARKER"


def test_cooldown_only_between_phases():
    sleep = RecordingSleep()
    orchestrator = PhaseOrchestrator(ScriptedModel(), models=["m1"], sleep=sleep)

    orchestrator.generate(_request())

    assert sleep.delays == [15.0, 15.0, 15.0]


def test_progress_reports_each_phase():
    events = []
    orchestrator = PhaseOrchestrator(
        ScriptedModel(),
        models=["m1"],
        sleep=RecordingSleep(),
        on_progress=lambda index, label, percent: events.append((index, percent)),
    )

    orchestrator.generate(_request())

    assert events == [(0, 0), (1, 20), (2, 40), (3, 60), (4, 80)]


def test_model_unavailable_falls_back_without_retry():
    model = ScriptedModel({"primary": [ModelUnavailable("LLM HTTP 404: not found", status_code=404)]})
    sleep = RecordingSleep()
    orchestrator = PhaseOrchestrator(model, models=["primary", "backup"], sleep=sleep)

    text, used = orchestrator.call_model("prompt", 100, phase="outline")

    assert (text, used) == ("generated text", "backup")
    assert [call[0] for call in model.calls] == ["primary", "backup"]
    assert sleep.delays == []


def test_rate_limit_retries_same_model_with_backoff():
    limited = RateLimited("LLM HTTP 429: slow down", status_code=429)
    model = ScriptedModel({"primary": [limited, limited, "finally"]})
    sleep = RecordingSleep()
    orchestrator = PhaseOrchestrator(model, models=["primary", "backup"], sleep=sleep)

    text, used = orchestrator.call_model("prompt", 100, phase="body_1")

    assert (text, used) == ("finally", "primary")
    assert sleep.delays == [2.0, 4.0]
    assert [call[0] for call in model.calls] == ["primary"] * 3


def test_backoff_is_capped():
    policy = RetryPolicy(backoff_base_seconds=1.0, backoff_max_seconds=5.0)
    assert policy.backoff_seconds(1) == 2.0
    assert policy.backoff_seconds(2) == 4.0
    assert policy.backoff_seconds(3) == 5.0


def test_exhausted_models_raise_generation_failure():
    failure = TransientProviderError("LLM HTTP 500: boom", status_code=500)
    model = ScriptedModel({"m1": [failure] * 3, "m2": [failure] * 3})
    sleep = RecordingSleep()
    orchestrator = PhaseOrchestrator(model, models=["m1", "m2"], sleep=sleep)

    with pytest.raises(GenerationFailure) as excinfo:
        orchestrator.generate(_request())

    assert excinfo.value.phase == "outline"
    assert len(excinfo.value.errors) == 6
    assert {entry["model"] for entry in excinfo.value.errors} == {"m1", "m2"}
    assert excinfo.value.errors[0]["status_code"] == 500
    assert "All models failed for phase outline" in str(excinfo.value)
    assert sleep.delays == [2.0, 4.0, 2.0, 4.0]


def test_unexpected_exception_is_recorded_and_retried():
    model = ScriptedModel({"m1": [ValueError("bad payload"), "ok"]})
    orchestrator = PhaseOrchestrator(model, models=["m1"], sleep=RecordingSleep())

    assert orchestrator.call_model("prompt", 100) == ("ok", "m1")


def test_cancellation_stops_retries():
    token = CancelToken()

    def cancel_then_fail(prompt, token_budget, model):
        token.cancel()
        raise RateLimited("LLM HTTP 429", status_code=429)

    sleep = RecordingSleep()
    orchestrator = PhaseOrchestrator(cancel_then_fail, models=["m1", "m2"], sleep=sleep, cancel_token=token)

    with pytest.raises(GenerationCancelled):
        orchestrator.call_model("prompt", 100)
    assert sleep.delays == []


def test_cancellation_during_cooldown_aborts_generate():
    token = CancelToken()
    model = ScriptedModel()
    sleep = RecordingSleep(on_sleep=token.cancel)
    orchestrator = PhaseOrchestrator(model, models=["m1"], sleep=sleep, cancel_token=token)

    with pytest.raises(GenerationCancelled):
        orchestrator.generate(_request())
    assert len(model.calls) == 1


def test_cancel_token_deadline():
    now = [100.0]
    token = CancelToken(deadline_seconds=10, clock=lambda: now[0])
    token.raise_if_cancelled()
    assert token.cancelled is False

    now[0] = 111.0
    assert token.cancelled is True
    with pytest.raises(GenerationCancelled, match="deadline"):
        token.raise_if_cancelled()


def test_phase_run_rejects_illegal_transitions():
    run = PhaseRun()
    run.advance(PhaseState.OUTLINE)
    with pytest.raises(PhaseTransitionError):
        run.advance(PhaseState.FINAL)

    run.advance(PhaseState.BODY_1)
    run.fail()
    assert run.state is PhaseState.FAILED
    with pytest.raises(PhaseTransitionError):
        run.advance(PhaseState.BODY_2)
    assert run.history == [PhaseState.PENDING, PhaseState.OUTLINE, PhaseState.BODY_1, PhaseState.FAILED]

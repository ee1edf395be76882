"""
Tests for the single-flight inference coordinator.
"""
import threading

import pytest

from tagger.cancellation import CancellationToken
from tagger.coordinator import InferenceCoordinator, InferenceRequest
from tagger.engine import GenerationConfig
from tagger.errors import (
    AlreadyRunningError,
    GenerationError,
    InferenceCancelled,
    LoadError,
)
from tagger.prompt import PromptBuilder, get_template
from tests.conftest import ThreadCall


@pytest.fixture
def request_(image):
    return InferenceRequest(prompt=PromptBuilder().build(image, get_template("v2")))


def test_infer_returns_raw_text_and_telemetry(coordinator, engine, request_):
    result = coordinator.infer(request_)

    assert result.text == "Green Cotton Pant"
    assert result.token_count == 3
    assert result.load_seconds >= 0
    assert result.generation_seconds >= 0
    assert not result.stopped_by_limit
    assert engine.seeds == [result.seed]
    assert engine.prompts == [request_.prompt]
    assert not coordinator.is_running


def test_model_is_loaded_once_across_requests(coordinator, engine, request_):
    coordinator.infer(request_)
    coordinator.infer(request_)
    assert engine.load_calls == 1
    assert engine.generate_calls == 2


def test_stops_at_max_tokens(session, engine, request_):
    engine.endless = True
    coordinator = InferenceCoordinator(session, GenerationConfig(max_tokens=5))

    result = coordinator.infer(request_)

    assert result.token_count == 5
    assert result.stopped_by_limit
    assert result.text.split() == ["tok0", "tok1", "tok2", "tok3", "tok4"]


def test_second_request_is_rejected_while_running(coordinator, engine, request_):
    engine.gate = threading.Event()
    first = ThreadCall(coordinator.infer, request_)
    assert engine.generation_started.wait(timeout=5)
    assert coordinator.is_running

    with pytest.raises(AlreadyRunningError):
        coordinator.infer(request_)
    assert engine.generate_calls == 1

    engine.gate.set()
    first.join()
    assert first.error is None
    assert first.result.text == "Green Cotton Pant"
    assert not coordinator.is_running

    # The slot is free again
    assert coordinator.infer(request_).text == "Green Cotton Pant"
    assert engine.generate_calls == 2


def test_cancellation_mid_generation_releases_the_guard(coordinator, engine, request_):
    engine.gate = threading.Event()
    token = CancellationToken()
    first = ThreadCall(coordinator.infer, request_, token)
    assert engine.generation_started.wait(timeout=5)

    token.cancel()
    engine.gate.set()
    first.join()

    assert isinstance(first.error, InferenceCancelled)
    assert not coordinator.is_running
    assert engine.clear_calls == 1

    assert coordinator.infer(request_).text == "Green Cotton Pant"


def test_cancelled_token_stops_before_generation(coordinator, engine, request_):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(InferenceCancelled):
        coordinator.infer(request_, token)

    assert engine.load_calls == 1
    assert engine.generate_calls == 0
    assert engine.prompts == []
    assert engine.clear_calls == 1
    assert not coordinator.is_running


def test_load_error_propagates_and_releases_the_guard(coordinator, engine, request_):
    engine.load_error = RuntimeError("weights missing")

    with pytest.raises(LoadError):
        coordinator.infer(request_)

    assert not coordinator.is_running
    assert engine.clear_calls == 0

    engine.load_error = None
    assert coordinator.infer(request_).text == "Green Cotton Pant"


def test_generation_error_keeps_the_loaded_model(coordinator, session, engine, request_):
    engine.generate_error = RuntimeError("engine crashed")

    with pytest.raises(GenerationError) as excinfo:
        coordinator.infer(request_)

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert session.is_loaded
    assert not coordinator.is_running
    assert engine.clear_calls == 1

    engine.generate_error = None
    coordinator.infer(request_)
    assert engine.load_calls == 1


def test_preprocessing_error_is_a_generation_error(coordinator, engine, request_):
    engine.prepare_error = ValueError("malformed image")

    with pytest.raises(GenerationError):
        coordinator.infer(request_)

    assert engine.generate_calls == 0
    assert not coordinator.is_running


def test_clear_cache_runs_after_every_call(coordinator, engine, request_):
    coordinator.infer(request_)
    coordinator.infer(request_)
    assert engine.clear_calls == 2


def test_seed_is_derived_from_the_clock(coordinator, engine, request_):
    result = coordinator.infer(request_)
    assert isinstance(result.seed, int) and result.seed > 0


def test_reset_mid_generation_unloads_after_it_finishes(coordinator, session, engine, request_):
    engine.gate = threading.Event()
    first = ThreadCall(coordinator.infer, request_)
    assert engine.generation_started.wait(timeout=5)

    session.reset()
    assert not session.is_loaded
    assert engine.unload_calls == 0

    engine.gate.set()
    first.join()

    assert first.error is None
    assert first.result.text == "Green Cotton Pant"
    assert engine.unloaded_while_generating == [False]
    assert engine.clear_calls == 1

    coordinator.infer(request_)
    assert engine.load_calls == 2

"""
End-to-end tests for the TaggingService facade.
"""
import threading
import pytest

from tagger.cancellation import CancellationToken
from tagger.coordinator import InferenceCoordinator
from tagger.engine import GenerationConfig
from tagger.errors import LoadError, TaggingError, TaggingErrorKind
from tagger.normalizer import NO_CLOTHING
from tagger.prompt import get_template
from tagger.service import (
    ANALYSIS_FAILED_MESSAGE,
    BUSY_MESSAGE,
    NO_CLOTHING_MESSAGE,
    AlertKind,
    TaggingService,
    alert_for_error,
    alert_for_tag,
)
from tagger.session import ModelSession
from tests.conftest import FakeEngine, ThreadCall


def test_tags_clothing(service, image):
    assert service.tag(image) == "green cotton pant"
    assert alert_for_tag("green cotton pant") is None


def test_sentinel_answer_is_a_successful_no_clothing(service, engine, image):
    engine.output = "null"

    tag = service.tag(image)

    assert tag is NO_CLOTHING
    alert = alert_for_tag(tag)
    assert alert.kind is AlertKind.WARNING
    assert alert.message == NO_CLOTHING_MESSAGE


def test_template_drives_sentinel_and_word_limit(coordinator, engine, image):
    service = TaggingService(coordinator, get_template("v1"))

    engine.output = "Red Cotton Striped Summer Shirt"
    assert service.tag(image) == "red cotton striped"

    engine.output = "nil"
    assert service.tag(image) is NO_CLOTHING


def test_prompt_carries_template_instructions(service, engine, image):
    service.tag(image)

    prompt = engine.prompts[0]
    assert prompt.system_turn.text == service.template.system_instruction
    assert prompt.user_turn.text == service.template.user_instruction
    assert prompt.image is image


def test_concurrent_tag_maps_to_busy(service, engine, image):
    engine.gate = threading.Event()
    first = ThreadCall(service.tag, image)
    assert engine.generation_started.wait(timeout=5)
    assert service.is_processing

    with pytest.raises(TaggingError) as excinfo:
        service.tag(image)

    error = excinfo.value
    assert error.kind is TaggingErrorKind.BUSY
    assert not error.is_failure
    assert alert_for_error(error).kind is AlertKind.WARNING
    assert alert_for_error(error).message == BUSY_MESSAGE

    engine.gate.set()
    assert first.join().result == "green cotton pant"
    assert not service.is_processing


def test_load_failure(service, engine, image):
    engine.load_error = RuntimeError("weights missing")

    with pytest.raises(TaggingError) as excinfo:
        service.tag(image)

    error = excinfo.value
    assert error.kind is TaggingErrorKind.LOAD_FAILED
    assert error.is_failure
    assert error.message == ANALYSIS_FAILED_MESSAGE
    assert isinstance(error.__cause__, LoadError)
    alert = alert_for_error(error)
    assert alert.kind is AlertKind.ERROR
    assert alert.message == ANALYSIS_FAILED_MESSAGE


def test_generation_failure(service, engine, image):
    engine.generate_error = RuntimeError("engine crashed")

    with pytest.raises(TaggingError) as excinfo:
        service.tag(image)

    assert excinfo.value.kind is TaggingErrorKind.GENERATION_FAILED
    assert excinfo.value.message == ANALYSIS_FAILED_MESSAGE
    assert service.model_loaded


def test_cancellation_is_silent(service, image):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(TaggingError) as excinfo:
        service.tag(image, cancel_token=token)

    assert excinfo.value.kind is TaggingErrorKind.CANCELLED
    assert not excinfo.value.is_failure
    assert alert_for_error(excinfo.value) is None


def test_cancel_then_retag_immediately(service, engine, image):
    engine.gate = threading.Event()
    token = CancellationToken()
    first = ThreadCall(service.tag, image, token)
    assert engine.generation_started.wait(timeout=5)

    token.cancel()
    engine.gate.set()
    first.join()
    assert first.error.kind is TaggingErrorKind.CANCELLED

    assert service.tag(image) == "green cotton pant"


def test_warm_up_loads_the_model(service, engine):
    assert not service.model_loaded
    load_seconds = service.warm_up()

    assert service.model_loaded
    assert load_seconds >= 0
    assert engine.load_calls == 1


def test_warm_up_failure(service, engine):
    engine.load_error = OSError("download interrupted")

    with pytest.raises(TaggingError) as excinfo:
        service.warm_up()

    assert excinfo.value.kind is TaggingErrorKind.LOAD_FAILED


def test_reset_drops_the_model(service, engine, image):
    service.tag(image)
    service.reset()

    assert not service.model_loaded
    assert engine.unload_calls == 1

    service.tag(image)
    assert engine.load_calls == 2


def test_end_to_end_with_token_limit(image):
    engine = FakeEngine(output="Charcoal Wool Blend Winter Overcoat With Belt")
    coordinator = InferenceCoordinator(ModelSession(engine), GenerationConfig(max_tokens=3))
    service = TaggingService(coordinator, get_template("v2"))

    assert service.tag(image) == "charcoal wool blend"

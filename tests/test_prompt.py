"""
Tests for prompt templates, the prompt builder and InferenceRequest.
"""
import dataclasses

import pytest

from tagger.coordinator import InferenceRequest
from tagger.prompt import (
    DEFAULT_USER_INSTRUCTION,
    ImagePart,
    PromptBuilder,
    PromptTemplate,
    TextPart,
    available_templates,
    get_template,
)


def test_builds_system_turn_then_user_turn(image):
    template = get_template("v2")
    prompt = PromptBuilder().build(image, template)

    assert [turn.role for turn in prompt.turns] == ["system", "user"]
    assert prompt.system_turn.text == template.system_instruction
    user_parts = prompt.user_turn.parts
    assert isinstance(user_parts[0], ImagePart)
    assert user_parts[0].image is image
    assert user_parts[1] == TextPart(template.user_instruction)


def test_empty_system_instruction_omits_system_turn(image):
    template = PromptTemplate("t", "", "Name the garment.", "nil", 3)
    prompt = PromptBuilder().build(image, template)

    assert [turn.role for turn in prompt.turns] == ["user"]
    assert prompt.system_turn is None


def test_empty_user_instruction_falls_back_to_default(image):
    template = PromptTemplate("t", "", "   ", "nil", 3)
    prompt = PromptBuilder().build(image, template)

    assert prompt.image is image
    assert prompt.user_turn.text == DEFAULT_USER_INSTRUCTION


def test_build_is_deterministic_and_leaves_template_untouched(image):
    template = get_template("v1")
    before = dataclasses.asdict(template)
    builder = PromptBuilder()

    assert builder.build(image, template) == builder.build(image, template)
    assert dataclasses.asdict(template) == before


def test_builtin_templates():
    assert available_templates() == ("v1", "v2", "v3")
    v1, v2, v3 = (get_template(v) for v in available_templates())
    assert (v1.sentinel, v1.max_words) == ("nil", 3)
    assert (v2.sentinel, v2.max_words) == ("null", 4)
    assert (v3.sentinel, v3.max_words) == ("null", 4)
    for template in (v1, v2, v3):
        assert template.sentinel in template.system_instruction


def test_unknown_template_raises():
    with pytest.raises(KeyError, match="v9"):
        get_template("v9")


def test_inference_request_exposes_prompt_fields(image):
    template = get_template("v1")
    request = InferenceRequest(prompt=PromptBuilder().build(image, template))

    assert request.image is image
    assert request.prompt_text == template.user_instruction
    assert request.system_prompt == template.system_instruction
    with pytest.raises(dataclasses.FrozenInstanceError):
        request.prompt = None


def test_inference_request_without_system_prompt(image):
    template = PromptTemplate("t", "", "Name it.", "nil", 3)
    request = InferenceRequest(prompt=PromptBuilder().build(image, template))
    assert request.system_prompt is None

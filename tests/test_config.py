"""
Tests for the Config dataclass and its CLOSET_ environment overrides.
"""
import pytest
import torch

from config import Config
from tagger.engines import create_engine
from tagger.engines.llama import LlamaCppEngine


def test_defaults():
    config = Config(device="cpu")

    assert config.engine_backend == "llama_cpp"
    assert config.server_url == "http://127.0.0.1:8000"
    assert config.torch_dtype is torch.float16

    generation = config.generation_config()
    assert generation.temperature == 0.6
    assert generation.max_tokens == 800
    assert generation.resize_target == (1024, 1024)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CLOSET_SERVER_PORT", "9100")
    monkeypatch.setenv("CLOSET_MAX_TOKENS", "64")
    monkeypatch.setenv("CLOSET_TEMPERATURE", "0")
    monkeypatch.setenv("CLOSET_RESIZE_ENABLED", "false")
    monkeypatch.setenv("CLOSET_TORCH_DTYPE_STR", "bfloat16")

    config = Config()

    assert config.server_port == 9100
    assert config.server_url.endswith(":9100")
    assert config.torch_dtype is torch.bfloat16
    generation = config.generation_config()
    assert generation.max_tokens == 64
    assert generation.temperature == 0.0
    assert generation.resize_target is None


def test_prompt_template_defaults_to_builtin():
    template = Config().prompt_template()
    assert template.version == "v2"
    assert template.sentinel == "null"


def test_prompt_template_overrides(monkeypatch):
    monkeypatch.setenv("CLOSET_TEMPLATE_VERSION", "v1")
    monkeypatch.setenv("CLOSET_MAX_WORDS", "2")
    monkeypatch.setenv("CLOSET_SENTINEL", "none")

    template = Config().prompt_template()

    assert template.version == "v1+custom"
    assert template.max_words == 2
    assert template.sentinel == "none"


def test_unknown_template_version(monkeypatch):
    monkeypatch.setenv("CLOSET_TEMPLATE_VERSION", "v42")
    with pytest.raises(KeyError):
        Config().prompt_template()


def test_create_engine_selects_backend():
    config = Config(chat_handler="llava-1-5")
    assert isinstance(create_engine(config), LlamaCppEngine)

    config.engine_backend = "onnx"
    with pytest.raises(ValueError, match="Unsupported engine backend"):
        create_engine(config)


def test_default_gguf_files_match_the_chat_handler():
    config = Config()
    assert config.chat_handler == "qwen2.5-vl"
    assert "Qwen2.5-VL" in config.llm_model_path
    assert "Qwen2.5-VL" in config.mmproj_path
    assert "Qwen2.5-VL" in config.hf_model_id

# =============================================================================
# Closet Tagger VLM - Centralized Configuration
# =============================================================================
# Provides a single Config dataclass containing all tunable parameters for
# the tagging server and client. Parameters are overridable via environment
# variables with the CLOSET_ prefix (e.g., CLOSET_MAX_TOKENS=200).
# =============================================================================

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import torch

from tagger.engine import GenerationConfig
from tagger.prompt import DEFAULT_TEMPLATE_VERSION, PromptTemplate, get_template

# Project root directory (where this file lives)
_PROJECT_ROOT = str(Path(__file__).parent.resolve())


def _detect_device() -> str:
    """
    Auto-detect the best available compute device.

    Returns:
        str: "mps" on Apple Silicon, "cuda" on NVIDIA GPUs, "cpu" as fallback.
    """
    if torch.backends.mps.is_available():
        return "mps"
    elif torch.cuda.is_available():
        return "cuda"
    return "cpu"


def _resolve_dtype(dtype_str: str) -> torch.dtype:
    """
    Convert a string dtype name to a torch.dtype.

    Args:
        dtype_str: One of "float16", "float32", "bfloat16".

    Returns:
        The corresponding torch.dtype.
    """
    dtype_map = {
        "float16": torch.float16,
        "float32": torch.float32,
        "bfloat16": torch.bfloat16,
    }
    return dtype_map.get(dtype_str, torch.float16)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """
    Centralized configuration for the Closet Tagger VLM system.

    All fields can be overridden via environment variables prefixed with CLOSET_.
    """

    # -- Networking --
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    # -- Engine selection: "llama_cpp" | "transformers" --
    engine_backend: str = "llama_cpp"

    # -- llama.cpp (GGUF LLM + multimodal projector) --
    llm_model_path: str = field(
        default_factory=lambda: os.path.join(_PROJECT_ROOT, "models", "Qwen2.5-VL-3B-Instruct-Q4_K_M.gguf")
    )
    mmproj_path: str = field(
        default_factory=lambda: os.path.join(_PROJECT_ROOT, "models", "mmproj-Qwen2.5-VL-3B-Instruct-f16.gguf")
    )
    chat_handler: str = "qwen2.5-vl"
    n_ctx: int = 4096
    n_gpu_layers: int = -1  # -1 = offload all layers to GPU

    # -- transformers --
    hf_model_id: str = "Qwen/Qwen2.5-VL-3B-Instruct"

    # -- Compute --
    device: str = field(default_factory=_detect_device)
    torch_dtype_str: str = "float16"

    # -- Generation --
    temperature: float = 0.6
    max_tokens: int = 800
    resize_width: int = 1024
    resize_height: int = 1024
    resize_enabled: bool = True

    # -- Prompt (None = use the template's own value) --
    template_version: str = DEFAULT_TEMPLATE_VERSION
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    sentinel: Optional[str] = None
    max_words: Optional[int] = None

    # -- Derived (computed post-init) --
    server_url: str = field(init=False)
    torch_dtype: torch.dtype = field(init=False)

    def __post_init__(self):
        """Apply environment variable overrides and compute derived fields."""
        self._apply_env_overrides()
        self.server_url = f"http://{self.server_host}:{self.server_port}"
        self.torch_dtype = _resolve_dtype(self.torch_dtype_str)

    def _apply_env_overrides(self):
        """
        Override config fields from environment variables.

        Looks for CLOSET_<FIELD_NAME_UPPERCASE> environment variables and
        applies them with appropriate type conversion.
        """
        field_types = {
            "server_host": str,
            "server_port": int,
            "engine_backend": str,
            "llm_model_path": str,
            "mmproj_path": str,
            "chat_handler": str,
            "n_ctx": int,
            "n_gpu_layers": int,
            "hf_model_id": str,
            "device": str,
            "torch_dtype_str": str,
            "temperature": float,
            "max_tokens": int,
            "resize_width": int,
            "resize_height": int,
            "resize_enabled": _parse_bool,
            "template_version": str,
            "system_prompt": str,
            "user_prompt": str,
            "sentinel": str,
            "max_words": int,
        }
        for field_name, field_type in field_types.items():
            env_key = f"CLOSET_{field_name.upper()}"
            env_value = os.environ.get(env_key)
            if env_value is not None:
                setattr(self, field_name, field_type(env_value))

    def generation_config(self) -> GenerationConfig:
        """Build the fixed GenerationConfig shared by every request."""
        resize_target = (
            (self.resize_width, self.resize_height) if self.resize_enabled else None
        )
        return GenerationConfig(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            resize_target=resize_target,
        )

    def prompt_template(self) -> PromptTemplate:
        """Resolve the configured template version and apply field overrides."""
        template = get_template(self.template_version)
        overrides = {
            "system_instruction": self.system_prompt,
            "user_instruction": self.user_prompt,
            "sentinel": self.sentinel,
            "max_words": self.max_words,
        }
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if overrides:
            template = replace(template, version=f"{template.version}+custom", **overrides)
        return template


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """
    Return the singleton Config instance, creating it on first call.

    Returns:
        Config: The global configuration object.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance

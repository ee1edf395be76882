# =============================================================================
# Closet Tagger VLM - Inference Engine Boundary
# =============================================================================
# The narrow interface through which the tagging core drives a neural model.
# Concrete engines (llama.cpp GGUF, HuggingFace transformers) live in
# tagger.engines; the core only ever talks to this abstraction, so weight
# loading, tokenization and tensor math stay outside of it.
#
# Generation is a synchronous generate-and-check loop: the engine calls the
# per-token callback after every produced token and stops as soon as the
# callback answers TokenSignal.STOP.  This callback is the sole mechanism for
# enforcing max_tokens and cancellation.
# =============================================================================

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from tagger.prompt import StructuredPrompt


class TokenSignal(enum.Enum):
    CONTINUE = "continue"
    STOP = "stop"


# Receives the cumulative number of generated tokens
TokenCallback = Callable[[int], TokenSignal]


@dataclass(frozen=True)
class GenerationConfig:
    """
    Sampling / stopping parameters, fixed per build.

    Attributes:
        temperature:   Sampling temperature (0.0 = greedy).
        max_tokens:    Generation stops once this many tokens were produced.
        resize_target: Optional (width, height) bounding box applied to the
                       image before it is handed to the model.
    """

    temperature: float = 0.6
    max_tokens: int = 800
    resize_target: Optional[Tuple[int, int]] = (1024, 1024)

    def __post_init__(self):
        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {self.max_tokens}")
        if self.temperature < 0:
            raise ValueError(f"temperature must be >= 0, got {self.temperature}")


@dataclass(frozen=True)
class GenerationResult:
    text: str
    token_count: int


class InferenceEngine(ABC):
    """Abstract model backend used by ModelSession and InferenceCoordinator."""

    name = "engine"

    @abstractmethod
    def load_model(self) -> Any:
        """Load the model and return an opaque handle."""
        ...

    @abstractmethod
    def prepare_input(
        self, handle: Any, prompt: StructuredPrompt, config: GenerationConfig
    ) -> Any:
        """Preprocess the image and prompt into model-ready input."""
        ...

    @abstractmethod
    def generate(
        self, prepared: Any, config: GenerationConfig, on_token: TokenCallback
    ) -> GenerationResult:
        """Run token generation, consulting on_token after every token."""
        ...

    def seed(self, handle: Any, value: int) -> None:
        """Seed the engine's pseudo-random state.  No-op by default."""

    def clear_cache(self, handle: Any) -> None:
        """Release transient generation buffers.  No-op by default."""

    def unload(self, handle: Any) -> None:
        """Drop the model and free device memory.  No-op by default."""

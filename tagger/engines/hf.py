# =============================================================================
# Closet Tagger VLM - HuggingFace transformers Engine
# =============================================================================
# Runs an image-text-to-text model (e.g. Qwen/Qwen2.5-VL-3B-Instruct) with
# transformers + PyTorch.  The per-token callback is wired in as a
# StoppingCriteria, which generate() evaluates after every new token.
# =============================================================================

import gc
import logging
from dataclasses import dataclass
from typing import Any

import torch
from transformers import (
    AutoModelForImageTextToText,
    AutoProcessor,
    StoppingCriteria,
    StoppingCriteriaList,
)

from tagger.engine import (
    GenerationConfig,
    GenerationResult,
    InferenceEngine,
    TokenCallback,
    TokenSignal,
)
from tagger.imaging import resize_image
from tagger.prompt import ImagePart, StructuredPrompt, TextPart

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformersHandle:
    model: Any
    processor: Any
    device: str


@dataclass(frozen=True)
class TransformersPreparedInput:
    handle: TransformersHandle
    inputs: Any
    prompt_length: int


class _CallbackStoppingCriteria(StoppingCriteria):
    """Ask the coordinator's callback whether to stop after each token."""

    def __init__(self, on_token: TokenCallback, prompt_length: int):
        self._on_token = on_token
        self._prompt_length = prompt_length

    def __call__(self, input_ids: torch.LongTensor, scores: torch.FloatTensor, **kwargs) -> torch.BoolTensor:
        generated = input_ids.shape[-1] - self._prompt_length
        stop = self._on_token(generated) is TokenSignal.STOP
        return torch.full((input_ids.shape[0],), stop, dtype=torch.bool, device=input_ids.device)


def _empty_device_cache(device: str) -> None:
    """Return cached allocator blocks to the accelerator."""
    if device.startswith("cuda") and torch.cuda.is_available():
        torch.cuda.empty_cache()
    elif device == "mps" and torch.backends.mps.is_available():
        torch.mps.empty_cache()


class TransformersEngine(InferenceEngine):
    """
    VLM inference via HuggingFace transformers.

    Args:
        model_id: HuggingFace model identifier.
        device:   Compute device ("mps", "cuda", "cpu").
        dtype:    Torch dtype for the model weights.
    """

    name = "transformers"

    def __init__(self, model_id: str, device: str = "cpu", dtype: torch.dtype = torch.float16):
        self._model_id = model_id
        self._device = device
        # Half precision is poorly supported on CPU
        self._dtype = torch.float32 if device == "cpu" else dtype

    def load_model(self) -> TransformersHandle:
        logger.info("Loading processor: %s", self._model_id)
        processor = AutoProcessor.from_pretrained(self._model_id)

        logger.info(
            "Loading model: %s (device=%s, dtype=%s)", self._model_id, self._device, self._dtype
        )
        model = AutoModelForImageTextToText.from_pretrained(
            self._model_id, torch_dtype=self._dtype
        ).to(self._device)
        model.eval()

        total_params = sum(p.numel() for p in model.parameters())
        logger.info("Model ready with %d parameters", total_params)
        return TransformersHandle(model=model, processor=processor, device=self._device)

    def prepare_input(
        self, handle: TransformersHandle, prompt: StructuredPrompt, config: GenerationConfig
    ) -> TransformersPreparedInput:
        messages = []
        images = []
        for turn in prompt.turns:
            content = []
            for part in turn.parts:
                if isinstance(part, ImagePart):
                    images.append(resize_image(part.image, config.resize_target))
                    content.append({"type": "image"})
                elif isinstance(part, TextPart):
                    content.append({"type": "text", "text": part.text})
            messages.append({"role": turn.role, "content": content})

        chat_text = handle.processor.apply_chat_template(messages, add_generation_prompt=True)
        inputs = handle.processor(
            images=images or None,
            text=[chat_text],
            return_tensors="pt",
            padding=True,
        ).to(handle.device)

        return TransformersPreparedInput(
            handle=handle,
            inputs=inputs,
            prompt_length=inputs["input_ids"].shape[1],
        )

    @torch.no_grad()
    def generate(
        self,
        prepared: TransformersPreparedInput,
        config: GenerationConfig,
        on_token: TokenCallback,
    ) -> GenerationResult:
        handle = prepared.handle
        kwargs = {"max_new_tokens": config.max_tokens}
        if config.temperature > 0:
            kwargs.update(do_sample=True, temperature=config.temperature)
        else:
            kwargs["do_sample"] = False

        output = handle.model.generate(
            **prepared.inputs,
            stopping_criteria=StoppingCriteriaList(
                [_CallbackStoppingCriteria(on_token, prepared.prompt_length)]
            ),
            **kwargs,
        )

        # Decode only the continuation
        gen_ids = output[:, prepared.prompt_length:]
        decoded = handle.processor.batch_decode(gen_ids, skip_special_tokens=True)
        text = (decoded[0] if decoded else "").strip()

        logger.debug("Generated %d tokens: %s", gen_ids.shape[1], text[:80])
        return GenerationResult(text=text, token_count=int(gen_ids.shape[1]))

    def seed(self, handle: TransformersHandle, value: int) -> None:
        torch.manual_seed(value)

    def clear_cache(self, handle: TransformersHandle) -> None:
        _empty_device_cache(handle.device)

    def unload(self, handle: TransformersHandle) -> None:
        gc.collect()
        _empty_device_cache(handle.device)

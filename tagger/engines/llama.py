# =============================================================================
# Closet Tagger VLM - llama.cpp Engine
# =============================================================================
# Runs a GGUF quantized VLM (language model + multimodal projector) through
# llama-cpp-python.  The image is passed to llama.cpp's multimodal chat
# handler as a base64 data URL inside an OpenAI-style chat message, and the
# answer is streamed chunk by chunk so the per-token callback can stop
# generation at max_tokens or on cancellation.
# =============================================================================

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from tagger.engine import (
    GenerationConfig,
    GenerationResult,
    InferenceEngine,
    TokenCallback,
    TokenSignal,
)
from tagger.imaging import image_to_data_url, resize_image
from tagger.prompt import ImagePart, StructuredPrompt, TextPart

logger = logging.getLogger(__name__)

# Config name -> llama_cpp.llama_chat_format handler class
_CHAT_HANDLERS: Dict[str, str] = {
    "llava-1-5": "Llava15ChatHandler",
    "llava-1-6": "Llava16ChatHandler",
    "moondream": "MoondreamChatHandler",
    "nanollava": "NanoLlavaChatHandler",
    "minicpm-v-2.6": "MiniCPMv26ChatHandler",
    "qwen2.5-vl": "Qwen25VLChatHandler",
}


@dataclass(frozen=True)
class LlamaPreparedInput:
    llm: Any
    messages: List[Dict[str, Any]]


class LlamaCppEngine(InferenceEngine):
    """
    VLM inference via llama.cpp.

    Args:
        model_path:   Path to the GGUF language model.
        mmproj_path:  Path to the GGUF multimodal projector (CLIP) file.
        chat_handler: Key of the multimodal chat handler (see _CHAT_HANDLERS).
        n_ctx:        Context window size.
        n_gpu_layers: Number of layers offloaded to the GPU (-1 = all).
    """

    name = "llama_cpp"

    def __init__(
        self,
        model_path: str,
        mmproj_path: str,
        chat_handler: str = "qwen2.5-vl",
        n_ctx: int = 4096,
        n_gpu_layers: int = -1,
    ):
        if chat_handler not in _CHAT_HANDLERS:
            raise ValueError(
                f"Unsupported chat handler '{chat_handler}'. "
                f"Supported: {list(_CHAT_HANDLERS.keys())}"
            )
        self._model_path = model_path
        self._mmproj_path = mmproj_path
        self._chat_handler = chat_handler
        self._n_ctx = n_ctx
        self._n_gpu_layers = n_gpu_layers

    def load_model(self) -> Any:
        from llama_cpp import Llama
        from llama_cpp import llama_chat_format

        handler_cls = getattr(llama_chat_format, _CHAT_HANDLERS[self._chat_handler], None)
        if handler_cls is None:
            raise RuntimeError(
                f"Installed llama-cpp-python has no {_CHAT_HANDLERS[self._chat_handler]}"
            )

        logger.info("Loading multimodal projector: %s", self._mmproj_path)
        handler = handler_cls(clip_model_path=self._mmproj_path, verbose=False)

        logger.info(
            "Loading GGUF LLM: %s (n_ctx=%d, n_gpu_layers=%d)",
            self._model_path, self._n_ctx, self._n_gpu_layers,
        )
        return Llama(
            model_path=self._model_path,
            chat_handler=handler,
            n_ctx=self._n_ctx,
            n_gpu_layers=self._n_gpu_layers,
            verbose=False,
        )

    def prepare_input(
        self, handle: Any, prompt: StructuredPrompt, config: GenerationConfig
    ) -> LlamaPreparedInput:
        messages = []
        for turn in prompt.turns:
            if turn.role == "system":
                messages.append({"role": "system", "content": turn.text})
                continue

            content = []
            for part in turn.parts:
                if isinstance(part, ImagePart):
                    image = resize_image(part.image, config.resize_target)
                    content.append(
                        {"type": "image_url", "image_url": {"url": image_to_data_url(image)}}
                    )
                elif isinstance(part, TextPart):
                    content.append({"type": "text", "text": part.text})
            messages.append({"role": turn.role, "content": content})

        return LlamaPreparedInput(llm=handle, messages=messages)

    def generate(
        self,
        prepared: LlamaPreparedInput,
        config: GenerationConfig,
        on_token: TokenCallback,
    ) -> GenerationResult:
        stream = prepared.llm.create_chat_completion(
            messages=prepared.messages,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            stream=True,
        )

        pieces = []
        count = 0
        try:
            for chunk in stream:
                delta = chunk["choices"][0].get("delta", {})
                text = delta.get("content")
                if not text:
                    continue
                pieces.append(text)
                count += 1
                if on_token(count) is TokenSignal.STOP:
                    break
        finally:
            # Closing the generator stops llama.cpp from sampling further
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        generated_text = "".join(pieces).strip()
        logger.debug("Generated %d tokens: %s", count, generated_text[:80])
        return GenerationResult(text=generated_text, token_count=count)

    def seed(self, handle: Any, value: int) -> None:
        handle.set_seed(value & 0xFFFFFFFF)

    def clear_cache(self, handle: Any) -> None:
        # Clear the KV cache and token counter between requests
        handle.reset()

    def unload(self, handle: Any) -> None:
        close = getattr(handle, "close", None)
        if close is not None:
            close()

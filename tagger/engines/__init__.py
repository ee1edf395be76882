# =============================================================================
# Closet Tagger VLM - Inference Engines
# =============================================================================
# Concrete InferenceEngine implementations.  Backends are imported lazily so
# that only the selected one's heavy dependencies get loaded.
# =============================================================================

from tagger.engine import InferenceEngine

BACKENDS = ("llama_cpp", "transformers")


def create_engine(config) -> InferenceEngine:
    """
    Build the inference engine selected by config.engine_backend.

    Args:
        config: The global Config instance.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if config.engine_backend == "llama_cpp":
        from tagger.engines.llama import LlamaCppEngine

        return LlamaCppEngine(
            model_path=config.llm_model_path,
            mmproj_path=config.mmproj_path,
            chat_handler=config.chat_handler,
            n_ctx=config.n_ctx,
            n_gpu_layers=config.n_gpu_layers,
        )

    if config.engine_backend == "transformers":
        from tagger.engines.hf import TransformersEngine

        return TransformersEngine(
            model_id=config.hf_model_id,
            device=config.device,
            dtype=config.torch_dtype,
        )

    raise ValueError(
        f"Unsupported engine backend '{config.engine_backend}'. Supported: {list(BACKENDS)}"
    )

# =============================================================================
# Closet Tagger VLM - Server Entry Point
# =============================================================================
# CLI entry point for starting the FastAPI tagging server with either the
# llama.cpp GGUF backend or the HuggingFace transformers backend.
# =============================================================================

import argparse
import logging

import uvicorn

from config import get_config
from tagger.engines import BACKENDS
from tagger.prompt import available_templates


def main():
    """Parse CLI arguments, apply overrides, and start the server."""
    parser = argparse.ArgumentParser(
        description="Closet Tagger VLM - Server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", type=str, default=None, help="Server bind address")
    parser.add_argument("--port", type=int, default=None, help="Server bind port")
    parser.add_argument("--backend", choices=BACKENDS, default=None, help="Inference engine")
    parser.add_argument("--model", type=str, default=None, help="Path to GGUF LLM model")
    parser.add_argument("--mmproj", type=str, default=None, help="Path to GGUF multimodal projector")
    parser.add_argument("--hf-model", type=str, default=None, help="HuggingFace model id")
    parser.add_argument(
        "--template", choices=available_templates(), default=None, help="Prompt template version"
    )
    parser.add_argument("--max-tokens", type=int, default=None, help="Generation token cap")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    config = get_config()

    if args.host is not None:
        config.server_host = args.host
    if args.port is not None:
        config.server_port = args.port
    if args.backend is not None:
        config.engine_backend = args.backend
    if args.model is not None:
        config.llm_model_path = args.model
    if args.mmproj is not None:
        config.mmproj_path = args.mmproj
    if args.hf_model is not None:
        config.hf_model_id = args.hf_model
    if args.template is not None:
        config.template_version = args.template
    if args.max_tokens is not None:
        config.max_tokens = args.max_tokens

    config.server_url = f"http://{config.server_host}:{config.server_port}"
    template = config.prompt_template()

    print("\n" + "=" * 60)
    print("  Closet Tagger VLM - Server")
    print("=" * 60)
    print(f"  Backend    : {config.engine_backend}")
    if config.engine_backend == "llama_cpp":
        print(f"  LLM model  : {config.llm_model_path}")
        print(f"  Projector  : {config.mmproj_path}")
        print(f"  GPU layers : {config.n_gpu_layers}")
    else:
        print(f"  HF model   : {config.hf_model_id}")
        print(f"  Device     : {config.device}")
    print(f"  Template   : {template.version} ({template.max_words} words, '{template.sentinel}')")
    print(f"  Max tokens : {config.max_tokens}")
    print(f"  Listening  : {config.server_host}:{config.server_port}")
    print("=" * 60 + "\n")

    uvicorn.run(
        "server.app:app",
        host=config.server_host,
        port=config.server_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()

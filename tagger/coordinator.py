# =============================================================================
# Closet Tagger VLM - Inference Coordinator
# =============================================================================
# Runs one generation at a time against a single ModelSession.
#
# Single-flight: a second infer() while one is in flight is rejected with
# AlreadyRunningError immediately; requests are never queued.  The running
# flag is released on every exit path, after the engine's transient cache
# has been cleared.
#
# Cancellation is cooperative.  The token is checked once the model is
# loaded, around input preprocessing, and inside the per-token callback.
# =============================================================================

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from tagger.cancellation import CancellationToken
from tagger.engine import GenerationConfig, TokenSignal
from tagger.errors import (
    AlreadyRunningError,
    GenerationError,
    InferenceCancelled,
)
from tagger.prompt import StructuredPrompt
from tagger.session import ModelSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceRequest:
    """
    One immutable inference request.

    Wraps the structured prompt and exposes the image, the user prompt text
    and the optional system prompt it was built from.
    """

    prompt: StructuredPrompt

    @property
    def image(self) -> Any:
        return self.prompt.image

    @property
    def prompt_text(self) -> str:
        return self.prompt.user_turn.text

    @property
    def system_prompt(self) -> Optional[str]:
        turn = self.prompt.system_turn
        return turn.text if turn is not None else None


@dataclass(frozen=True)
class InferenceResult:
    """
    Raw generation output plus telemetry.

    Attributes:
        text:               Raw model text.
        token_count:        Number of generated tokens.
        load_seconds:       Time spent in ensure_loaded() (~0 when cached).
        generation_seconds: Time spent preprocessing and generating.
        seed:               Seed handed to the engine.
        stopped_by_limit:   Whether generation hit max_tokens.
    """

    text: str
    token_count: int
    load_seconds: float
    generation_seconds: float
    seed: int
    stopped_by_limit: bool


class InferenceCoordinator:
    """
    Serializes generation requests against one model session.

    Args:
        session: The ModelSession owning the model handle.
        config:  Generation parameters shared by every request.
    """

    def __init__(self, session: ModelSession, config: Optional[GenerationConfig] = None):
        self._session = session
        self._engine = session.engine
        self._config = config or GenerationConfig()
        self._running = threading.Lock()

    @property
    def session(self) -> ModelSession:
        return self._session

    @property
    def config(self) -> GenerationConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        """True while a generation is in flight."""
        return self._running.locked()

    def infer(
        self,
        request: InferenceRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> InferenceResult:
        """
        Run one generation.

        Args:
            request:      The prompt to run.
            cancel_token: Optional cooperative cancellation token.

        Returns:
            InferenceResult with the raw model text and timings.

        Raises:
            AlreadyRunningError: Another generation is in flight.
            LoadError:           The model could not be loaded.
            InferenceCancelled:  The token was cancelled at a checkpoint.
            GenerationError:     The engine failed during preprocessing or
                                 generation.
        """
        if not self._running.acquire(blocking=False):
            logger.warning("Analysis already in progress, rejecting request")
            raise AlreadyRunningError("An inference is already running")

        token = cancel_token or CancellationToken()
        try:
            logger.info("Starting image analysis")

            load_start = time.perf_counter()
            with self._session.lease() as handle:
                load_seconds = time.perf_counter() - load_start
                try:
                    token.raise_if_cancelled()
                    return self._generate(handle, request, token, load_seconds)
                finally:
                    self._clear_cache(handle)

        except InferenceCancelled:
            logger.info("Analysis was cancelled")
            raise
        finally:
            self._running.release()

    def _clear_cache(self, handle: Any) -> None:
        try:
            self._engine.clear_cache(handle)
        except Exception:
            logger.exception("Failed to clear generation cache")

    def _generate(
        self,
        handle: Any,
        request: InferenceRequest,
        token: CancellationToken,
        load_seconds: float,
    ) -> InferenceResult:
        config = self._config
        limit_reached = False

        def on_token(count: int) -> TokenSignal:
            nonlocal limit_reached
            if token.is_cancelled:
                return TokenSignal.STOP
            if count >= config.max_tokens:
                limit_reached = True
                logger.debug("Reached maximum token count: %d", config.max_tokens)
                return TokenSignal.STOP
            return TokenSignal.CONTINUE

        # Not reproducible on purpose; the output is a short free-text tag
        seed = int(time.time() * 1000)
        start = time.perf_counter()
        try:
            self._engine.seed(handle, seed)

            token.raise_if_cancelled()
            logger.debug("Preparing input for inference")
            prepared = self._engine.prepare_input(handle, request.prompt, config)
            token.raise_if_cancelled()

            logger.debug("Starting token generation")
            result = self._engine.generate(prepared, config, on_token)
        except InferenceCancelled:
            raise
        except Exception as exc:
            logger.error("Generation failed: %s", exc)
            raise GenerationError(f"Generation failed: {exc}") from exc

        # Generation stopped early because of the token
        token.raise_if_cancelled()

        generation_seconds = time.perf_counter() - start
        logger.info(
            "Inference completed in %.2f seconds (%d tokens, load %.2fs)",
            generation_seconds, result.token_count, load_seconds,
        )
        return InferenceResult(
            text=result.text,
            token_count=result.token_count,
            load_seconds=load_seconds,
            generation_seconds=generation_seconds,
            seed=seed,
            stopped_by_limit=limit_reached,
        )

# =============================================================================
# Closet Tagger VLM - Model Session
# =============================================================================
# Owns the lazily loaded model handle.  The state machine is:
#
#     Idle --ensure_loaded()--> Loaded(handle) --reset()--> Idle
#
# Loading happens at most once per Idle period: concurrent first callers are
# serialized behind an exclusive initialization lock (double-checked), so
# exactly one of them runs the engine's load while the others wait and then
# receive the same handle.  Generations lease the handle so that a reset
# never unloads a model that is still in use.
# =============================================================================

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional

from tagger.engine import InferenceEngine
from tagger.errors import LoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionEvent:
    """
    Lifecycle notification emitted by ModelSession.

    Attributes:
        kind:     "load_started", "load_succeeded", "load_failed" or "reset".
        duration: Wall-clock seconds of the load (load_succeeded / load_failed).
        error:    Error description for load_failed.
    """

    kind: str
    duration: Optional[float] = None
    error: Optional[str] = None


class ModelSession:
    """
    Lazy, load-once owner of the model handle.

    Args:
        engine:   Inference engine used to load and unload the model.
        on_event: Optional listener receiving SessionEvent notifications.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        on_event: Optional[Callable[[SessionEvent], None]] = None,
    ):
        self._engine = engine
        self._on_event = on_event
        self._handle: Optional[Any] = None
        self._load_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._load_count = 0
        self._last_load_seconds: Optional[float] = None
        # Handles dropped by reset() while leased, unloaded on last release
        self._leases = 0
        self._stale: List[Any] = []

    @property
    def engine(self) -> InferenceEngine:
        return self._engine

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None

    @property
    def load_count(self) -> int:
        """Number of load attempts made by this session."""
        return self._load_count

    @property
    def last_load_seconds(self) -> Optional[float]:
        return self._last_load_seconds

    def ensure_loaded(self) -> Any:
        """
        Return the model handle, loading it first if the session is Idle.

        Returns:
            The engine-specific model handle.

        Raises:
            LoadError: If the engine failed to load the model.  The session
                       stays Idle so a later call retries from scratch.
        """
        handle = self._handle
        if handle is not None:
            return handle

        with self._load_lock:
            # Another caller may have finished loading while we waited
            handle = self._handle
            if handle is not None:
                return handle

            self._load_count += 1
            logger.info("Starting model load (%s engine)...", self._engine.name)
            self._emit(SessionEvent(kind="load_started"))
            start = time.perf_counter()

            try:
                handle = self._engine.load_model()
            except Exception as exc:
                duration = time.perf_counter() - start
                logger.error("Model load failed after %.2fs: %s", duration, exc)
                self._emit(SessionEvent(kind="load_failed", duration=duration, error=str(exc)))
                raise LoadError(f"Failed to load model: {exc}") from exc

            duration = time.perf_counter() - start
            with self._state_lock:
                self._handle = handle
            self._last_load_seconds = duration

            logger.info("Model loaded in %.2f seconds", duration)
            self._emit(SessionEvent(kind="load_succeeded", duration=duration))
            return handle

    @contextmanager
    def lease(self) -> Iterator[Any]:
        """
        Hold the model handle for the duration of a generation.

        A reset() arriving while the handle is leased drops it from the
        session immediately, but the engine unload is deferred until the
        last lease is released.

        Raises:
            LoadError: If the model had to be loaded and the load failed.
        """
        while True:
            handle = self.ensure_loaded()
            with self._state_lock:
                # A reset may have dropped the handle in between
                if self._handle is handle:
                    self._leases += 1
                    break

        try:
            yield handle
        finally:
            with self._state_lock:
                self._leases -= 1
                stale = []
                if self._leases == 0:
                    stale, self._stale = self._stale, []
            for old in stale:
                logger.info("Releasing model dropped during generation")
                self._unload(old)

    def reset(self) -> None:
        """
        Drop the cached model and ask the engine to free device memory.

        Waits for an in-flight load to finish so that the session is Idle
        when this returns.  If a generation holds the handle, the unload
        happens when it finishes.  Always succeeds; unload errors are logged.
        """
        logger.info("Resetting model session")
        with self._load_lock:
            with self._state_lock:
                handle, self._handle = self._handle, None
                if handle is not None and self._leases > 0:
                    logger.info("Generation in flight, deferring model unload")
                    self._stale.append(handle)
                    handle = None

        if handle is not None:
            self._unload(handle)

        self._emit(SessionEvent(kind="reset"))

    def _unload(self, handle: Any) -> None:
        try:
            self._engine.unload(handle)
        except Exception:
            logger.exception("Engine failed to unload the model")
        logger.debug("Released model memory")

    def _emit(self, event: SessionEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Session event listener failed for %s", event.kind)

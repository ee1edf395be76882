# =============================================================================
# Closet Tagger VLM - Error Taxonomy
# =============================================================================
# Exceptions raised by the tagging core.  Engine-level failures are caught at
# the InferenceCoordinator boundary and translated into these types, so no
# raw llama.cpp / transformers exception ever reaches the TaggingService.
# =============================================================================

import enum
from typing import Optional


class TaggerError(Exception):
    """Base class for all tagging core errors."""


class LoadError(TaggerError):
    """The model failed to initialize (missing weights, out of memory, ...)."""


class AlreadyRunningError(TaggerError):
    """A generation is already in flight; the request was dropped, not queued."""


class InferenceCancelled(TaggerError):
    """The caller cancelled the request at one of the cooperative checkpoints."""


class GenerationError(TaggerError):
    """The inference engine failed mid-run.  The loaded model stays valid."""


class TaggingErrorKind(enum.Enum):
    LOAD_FAILED = "load_failed"
    GENERATION_FAILED = "generation_failed"
    CANCELLED = "cancelled"
    BUSY = "busy"


class TaggingError(TaggerError):
    """
    Failure surfaced by the TaggingService facade.

    LOAD_FAILED and GENERATION_FAILED share one user-facing message; the
    distinct kind is preserved for logging.  BUSY and CANCELLED are not
    system faults.

    Args:
        kind:    Which failure occurred.
        message: Short user-facing message.
    """

    def __init__(self, kind: TaggingErrorKind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or ""
        super().__init__(f"{kind.value}: {self.message}" if self.message else kind.value)

    @property
    def is_failure(self) -> bool:
        """Whether this is a real failure (as opposed to busy / cancelled)."""
        return self.kind in (TaggingErrorKind.LOAD_FAILED, TaggingErrorKind.GENERATION_FAILED)

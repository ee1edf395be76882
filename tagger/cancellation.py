# =============================================================================
# Closet Tagger VLM - Cooperative Cancellation
# =============================================================================
# An explicit cancellation token passed down the call chain.  The running
# operation polls it at known checkpoints; nothing is interrupted forcibly.
# =============================================================================

import threading

from tagger.errors import InferenceCancelled


class CancellationToken:
    """Thread-safe, one-shot cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation.  Idempotent."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """
        Raise InferenceCancelled if cancellation was requested.

        Raises:
            InferenceCancelled: When cancel() has been called.
        """
        if self._event.is_set():
            raise InferenceCancelled("Operation was cancelled")

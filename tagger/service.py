# =============================================================================
# Closet Tagger VLM - Tagging Service Facade
# =============================================================================
# Composes PromptBuilder + InferenceCoordinator + OutputNormalizer into the
# single tag(image) operation consumed by the presentation layer, and maps
# core errors onto user-facing outcomes:
#
#   tag / no clothing  -> returned (no clothing carries a Warning alert)
#   AlreadyRunning     -> TaggingError(BUSY), "please try again"
#   Load / Generation  -> TaggingError(LOAD_FAILED / GENERATION_FAILED)
#   Cancelled          -> TaggingError(CANCELLED), silent
# =============================================================================

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from tagger.cancellation import CancellationToken
from tagger.coordinator import InferenceCoordinator, InferenceRequest
from tagger.errors import (
    AlreadyRunningError,
    GenerationError,
    InferenceCancelled,
    LoadError,
    TaggingError,
    TaggingErrorKind,
)
from tagger.normalizer import NO_CLOTHING, OutputNormalizer, Tag
from tagger.prompt import PromptBuilder, PromptTemplate

logger = logging.getLogger(__name__)

ANALYSIS_FAILED_MESSAGE = "Something went wrong while analyzing the image."
NO_CLOTHING_MESSAGE = "The image does not appear to be a clothing item."
BUSY_MESSAGE = "Analysis already in progress, please try again."


class AlertKind(enum.Enum):
    ERROR = "Error"
    WARNING = "Warning"


@dataclass(frozen=True)
class Alert:
    """Dismissible message shown once per failed or "no clothing" outcome."""

    kind: AlertKind
    message: str


def alert_for_tag(tag: Tag) -> Optional[Alert]:
    """Alert to show for a successful outcome (only "no clothing" has one)."""
    if tag is NO_CLOTHING:
        return Alert(kind=AlertKind.WARNING, message=NO_CLOTHING_MESSAGE)
    return None


def alert_for_error(error: TaggingError) -> Optional[Alert]:
    """Alert to show for a TaggingError; cancellation is silent."""
    if error.kind is TaggingErrorKind.CANCELLED:
        return None
    if error.kind is TaggingErrorKind.BUSY:
        return Alert(kind=AlertKind.WARNING, message=BUSY_MESSAGE)
    return Alert(kind=AlertKind.ERROR, message=ANALYSIS_FAILED_MESSAGE)


class TaggingService:
    """
    Facade turning an image into a clothing tag.

    Args:
        coordinator: Single-flight inference coordinator.
        template:    Prompt template; also supplies the sentinel and word cap
                     unless an explicit normalizer is given.
        builder:     Prompt builder (default PromptBuilder()).
        normalizer:  Output normalizer (default built from the template).
    """

    def __init__(
        self,
        coordinator: InferenceCoordinator,
        template: PromptTemplate,
        builder: Optional[PromptBuilder] = None,
        normalizer: Optional[OutputNormalizer] = None,
    ):
        self._coordinator = coordinator
        self._template = template
        self._builder = builder or PromptBuilder()
        self._normalizer = normalizer or OutputNormalizer(
            max_words=template.max_words, sentinel=template.sentinel
        )

    @property
    def template(self) -> PromptTemplate:
        return self._template

    @property
    def is_processing(self) -> bool:
        return self._coordinator.is_running

    @property
    def model_loaded(self) -> bool:
        return self._coordinator.session.is_loaded

    def tag(self, image: Any, cancel_token: Optional[CancellationToken] = None) -> Tag:
        """
        Tag the clothing shown in an image.

        Args:
            image:        Decoded image (PIL for the bundled engines).
            cancel_token: Optional cooperative cancellation token.

        Returns:
            The normalized tag, or NO_CLOTHING.

        Raises:
            TaggingError: BUSY, CANCELLED, LOAD_FAILED or GENERATION_FAILED.
        """
        logger.info("Starting clothing tagging process")
        prompt = self._builder.build(image, self._template)
        request = InferenceRequest(prompt=prompt)

        start = time.perf_counter()
        try:
            result = self._coordinator.infer(request, cancel_token)
        except AlreadyRunningError as exc:
            raise TaggingError(TaggingErrorKind.BUSY, BUSY_MESSAGE) from exc
        except InferenceCancelled as exc:
            raise TaggingError(TaggingErrorKind.CANCELLED) from exc
        except LoadError as exc:
            logger.error("Tagging failed (model load): %s", exc)
            raise TaggingError(TaggingErrorKind.LOAD_FAILED, ANALYSIS_FAILED_MESSAGE) from exc
        except GenerationError as exc:
            logger.error("Tagging failed (generation): %s", exc)
            raise TaggingError(
                TaggingErrorKind.GENERATION_FAILED, ANALYSIS_FAILED_MESSAGE
            ) from exc

        tag = self._normalizer.normalize(result.text)
        logger.info(
            "Tagging completed in %.2f seconds -> %r", time.perf_counter() - start, tag
        )
        return tag

    def warm_up(self) -> float:
        """
        Load the model ahead of the first tag request (onboarding).

        Returns:
            Seconds spent in the last model load.

        Raises:
            TaggingError: LOAD_FAILED when the model cannot be loaded.
        """
        session = self._coordinator.session
        try:
            session.ensure_loaded()
        except LoadError as exc:
            raise TaggingError(TaggingErrorKind.LOAD_FAILED, ANALYSIS_FAILED_MESSAGE) from exc
        return session.last_load_seconds or 0.0

    def reset(self) -> None:
        logger.info("Resetting tagging service")
        self._coordinator.session.reset()

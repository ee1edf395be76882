# =============================================================================
# Closet Tagger VLM - Output Normalizer
# =============================================================================
# Cleans the free-form model answer into a canonical short tag: lowercase,
# punctuation removed, whitespace collapsed, capped at a configurable word
# count.  The configured sentinel literal (e.g. "nil" / "null") or an empty
# answer maps to NO_CLOTHING, which is a valid outcome and not an error.
# =============================================================================

import logging
import re
from typing import Union

logger = logging.getLogger(__name__)

# Anything that is not a letter, digit or whitespace ("_" counts as punctuation)
_STRIP_PATTERN = re.compile(r"[^\w\s]|_")


class NoClothingDetected:
    """Sentinel outcome meaning "the image shows no clothing"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_CLOTHING"


NO_CLOTHING = NoClothingDetected()

Tag = Union[str, NoClothingDetected]


class OutputNormalizer:
    """
    Turn raw model text into a Tag.

    Args:
        max_words: Maximum number of words kept (>= 1).
        sentinel:  Literal meaning "no clothing", compared case-insensitively
                   after punctuation is stripped.
    """

    def __init__(self, max_words: int = 4, sentinel: str = "null"):
        if max_words < 1:
            raise ValueError(f"max_words must be >= 1, got {max_words}")
        self._max_words = max_words
        self._sentinel = " ".join(_STRIP_PATTERN.sub("", sentinel.lower()).split())

    @property
    def max_words(self) -> int:
        return self._max_words

    @property
    def sentinel(self) -> str:
        return self._sentinel

    def normalize(self, raw_text: str) -> Tag:
        """
        Normalize a raw model answer.

        Steps:
            1. Lowercase and trim
            2. Strip characters outside letters / digits / whitespace
            3. Split on whitespace
            4. Sentinel or no words -> NO_CLOTHING
            5. Truncate to max_words and join with single spaces

        Args:
            raw_text: Text produced by the model.

        Returns:
            The normalized tag, or NO_CLOTHING.
        """
        cleaned = _STRIP_PATTERN.sub("", (raw_text or "").lower().strip())
        words = cleaned.split()

        if not words or " ".join(words) == self._sentinel:
            logger.info("Model output %r -> no clothing detected", raw_text)
            return NO_CLOTHING

        tag = " ".join(words[: self._max_words])
        logger.debug("Normalized %r -> %r", raw_text, tag)
        return tag

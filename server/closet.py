# =============================================================================
# Closet Tagger VLM - In-Memory Closet
# =============================================================================
# Holds the tagged clothing items for the lifetime of the server process.
# Items are added when tagging succeeds, renamed from the tag editor, and
# removed on user request.  Nothing is persisted across restarts.
# =============================================================================

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from PIL import Image

logger = logging.getLogger(__name__)


@dataclass
class ClosetItem:
    id: str
    image: Image.Image
    tag: str
    created_at: str


class ClosetStore:
    """Thread-safe, insertion-ordered collection of ClosetItems."""

    def __init__(self):
        self._items: Dict[str, ClosetItem] = {}
        self._lock = threading.Lock()

    def add(self, image: Image.Image, tag: str) -> ClosetItem:
        item = ClosetItem(
            id=uuid.uuid4().hex,
            image=image,
            tag=tag,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            self._items[item.id] = item
        logger.info("Adding %r to the closet (%s)", tag, item.id)
        return item

    def get(self, item_id: str) -> Optional[ClosetItem]:
        with self._lock:
            return self._items.get(item_id)

    def list(self) -> List[ClosetItem]:
        with self._lock:
            return list(self._items.values())

    def rename(self, item_id: str, tag: str) -> Optional[ClosetItem]:
        """Change an item's tag.  Returns None if the item does not exist."""
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return None
            item.tag = tag
        logger.info("Renamed closet item %s to %r", item_id, tag)
        return item

    def remove(self, item_id: str) -> bool:
        with self._lock:
            removed = self._items.pop(item_id, None) is not None
        if removed:
            logger.info("Removed closet item %s", item_id)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

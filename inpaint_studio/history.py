"""Bounded in-memory history of completed inpainting results."""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Optional, Tuple

from . import settings
from .imaging import ImagePayload


@dataclass(frozen=True)
class HistoryEntry:
    """One completed inpainting round."""
    id: str
    source: ImagePayload
    result_image: str  # Encoded image as returned by the service
    mask: bytes  # PNG
    iterations: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class HistoryStore:
    """Most-recent-first store that keeps only the newest ``limit`` entries.

    Appends are expected from a single writer (the coroutine that received
    the submission result); there is no locking.
    """

    def __init__(self, limit: int = None):
        self.limit = settings.HISTORY_LIMIT if limit is None else limit
        self._entries = deque(maxlen=self.limit)

    def append(self, entry: HistoryEntry):
        """Insert at the front; the oldest entry beyond the limit is dropped."""
        self._entries.appendleft(entry)

    def select(self, entry_id: str) -> Optional[HistoryEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    @property
    def entries(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(tuple(self._entries))

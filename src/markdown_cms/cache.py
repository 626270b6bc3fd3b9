from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class DocumentCache:
    """
    Process-local document cache, invalidated wholesale on every file change.

    Reads are always served straight from the filesystem and never populate
    this cache; it only reports diagnostics on ``/api/status``.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Any] = {}
        self.last_updated: Optional[datetime] = None
        self.last_invalidated: Optional[datetime] = None

    @property
    def size(self) -> int:
        return len(self._entries)

    def invalidate(self) -> None:
        self._entries.clear()
        self.last_updated = None
        self.last_invalidated = datetime.now(timezone.utc)

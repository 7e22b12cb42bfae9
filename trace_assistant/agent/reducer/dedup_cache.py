"""Skip-if-seen gates used by the artifact renderer and the conversation assembler."""

from __future__ import annotations

from collections import OrderedDict

from trace_assistant.infra.observability.logger import get_logger

logger = get_logger(__name__)


class DedupCache:
    """Session-long set of artifact keys; never pruned so nothing renders twice."""

    def __init__(self) -> None:
        self._keys: set[str] = set()

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def admit(self, key: str) -> bool:
        """Record key and return True on first sight; return False for repeats."""
        if key in self._keys:
            logger.debug("reducer.dedup.skip key=%s", key)
            return False
        self._keys.add(key)
        return True

    def keys(self) -> list[str]:
        return sorted(self._keys)


class BoundedIdSet:
    """FIFO-evicting set of recent event ids for idempotent re-delivery checks."""

    def __init__(self, max_size: int = 512) -> None:
        self._max_size = max(1, max_size)
        self._ids: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, event_id: str) -> bool:
        """Record event_id; return False when it was already present."""
        if event_id in self._ids:
            return False
        self._ids[event_id] = None
        while len(self._ids) > self._max_size:
            self._ids.popitem(last=False)
        return True

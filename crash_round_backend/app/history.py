# crash_round_backend/app/history.py

from collections import deque
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    multiplier: float
    timestamp: int  # epoch ms

    def to_dict(self) -> dict:
        return {"id": self.id, "multiplier": self.multiplier, "timestamp": self.timestamp}


class HistoryRing:
    """Most-recent-first log of finished rounds, capped at `capacity` entries."""

    def __init__(self, capacity: int = 20):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: HistoryEntry) -> None:
        # appendleft on a bounded deque drops the oldest entry from the right
        self._entries.appendleft(entry)

    def list(self) -> List[HistoryEntry]:
        return list(self._entries)

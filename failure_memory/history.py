"""Bounded ledger of dominant-category transitions."""

from __future__ import annotations

from collections import Counter

from failure_memory.schema import HistoryEntry


class HistoryLedger:
    """Append-only FIFO log capped at ``cap`` entries.

    Wraps the list held by ``EngineState`` and mutates it in place, so the
    persisted state always sees the current entries.
    """

    def __init__(self, entries: list[HistoryEntry], cap: int = 30) -> None:
        self.entries = entries
        self.cap = cap

    def __len__(self) -> int:
        return len(self.entries)

    def append(self, entry: HistoryEntry) -> None:
        self.entries.append(entry)
        overflow = len(self.entries) - self.cap
        if overflow > 0:
            del self.entries[:overflow]

    def clear(self) -> None:
        self.entries.clear()

    def most_frequent(self) -> tuple[str, int] | None:
        """Category recorded most often; ties go to the first one seen."""

        if not self.entries:
            return None
        category, count = Counter(entry.category for entry in self.entries).most_common(1)[0]
        return category, count

    def longest_run(self) -> tuple[str, int] | None:
        """Longest stretch of consecutive entries with the same category."""

        if not self.entries:
            return None

        best_category, best_length = self.entries[0].category, 0
        current, length = self.entries[0].category, 0
        for entry in self.entries:
            if entry.category == current:
                length += 1
            else:
                current, length = entry.category, 1
            if length > best_length:
                best_category, best_length = current, length
        return best_category, best_length

    def recent_unique_count(self, window: int = 5) -> int:
        if window <= 0:
            return 0
        return len({entry.category for entry in self.entries[-window:]})

    def summary(self, window: int = 5) -> dict:
        most_frequent = self.most_frequent()
        longest = self.longest_run()
        return {
            "total_changes": len(self.entries),
            "most_frequent": {"category": most_frequent[0], "count": most_frequent[1]} if most_frequent else None,
            "longest_run": {"category": longest[0], "length": longest[1]} if longest else None,
            "recent_unique": self.recent_unique_count(window),
            "timeline": [{"date": e.date, "category": e.category} for e in self.entries],
        }

from __future__ import annotations

import threading
from collections import Counter
from typing import Dict


class CounterStore:
    """Label -> count tally that lives as long as the process.

    Entries are created on first increment and never removed. ``snapshot()``
    hands out a plain copy so a report being encoded never sees the tally move.
    """

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def increment(self, label: str, amount: int = 1) -> int:
        if not label:
            raise ValueError("label must be a non-empty string")
        if amount < 0:
            raise ValueError("amount must not be negative")
        with self._lock:
            self._counts[label] += amount
            return self._counts[label]

    def get(self, label: str) -> int:
        with self._lock:
            return self._counts.get(label, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, label: object) -> bool:
        return label in self._counts

    def __repr__(self) -> str:
        return f"CounterStore({dict(self._counts)!r})"

"""Influencer selection list provider.

The search/filter UI keeps an ordered list of chosen influencer ids. The deal
workflow only needs to know whether anything is selected (stage 1) and who
the outreach recipients are (stage 4).
"""

from __future__ import annotations

from typing import Protocol


class SelectionProvider(Protocol):
    """Ordered influencer ids chosen in the search list."""

    def selected_ids(self) -> list[str]: ...

    def count(self) -> int: ...


class InMemorySelection:
    """Selection list held in memory, duplicates ignored, order preserved."""

    def __init__(self, ids: list[str] | None = None) -> None:
        self._ids: list[str] = []
        for blogger_id in ids or []:
            self.add(blogger_id)

    def add(self, blogger_id: str) -> None:
        blogger_id = blogger_id.strip()
        if blogger_id and blogger_id not in self._ids:
            self._ids.append(blogger_id)

    def remove(self, blogger_id: str) -> None:
        if blogger_id in self._ids:
            self._ids.remove(blogger_id)

    def clear(self) -> None:
        self._ids.clear()

    def selected_ids(self) -> list[str]:
        return list(self._ids)

    def count(self) -> int:
        return len(self._ids)

from __future__ import annotations

import unicodedata
from typing import Callable, Generic, Sequence, TypeVar


T = TypeVar("T")


def normalize_search_text(value: str) -> str:
    """
    Fold text for accent-insensitive matching.

    The value is NFD-normalized, combining marks are dropped and the result is
    lowercased, so "Cuauhtémoc" and "CUAUHTEMOC" compare equal.
    """
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold().strip()


class SearchIndex(Generic[T]):
    """Substring filter over a cached catalog list."""

    def __init__(
        self,
        entries: Sequence[T],
        *,
        key: Callable[[T], str] = lambda entry: getattr(entry, "name"),
    ) -> None:
        self._entries = list(entries)
        self._keys = [normalize_search_text(key(entry)) for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def filter(self, query: str | None) -> list[T]:
        needle = normalize_search_text(query or "")
        if not needle:
            return list(self._entries)
        return [
            entry
            for entry, folded in zip(self._entries, self._keys)
            if needle in folded
        ]

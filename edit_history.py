"""Bounded linear undo/redo history of editor snapshots."""

from __future__ import annotations

import copy
from typing import Any, Dict, List


Snapshot = Dict[str, Any]

DEFAULT_MAX_DEPTH = 50


class EditHistory:
    """Snapshot list with a cursor pointing at the entry matching the live state.

    Entry 0 is the state before the oldest remembered edit, so undo stops
    there. Entries are deep-copied on the way in and on the way out; the
    live model and the history never share mutable structure.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        if max_depth < 2:
            raise ValueError("max_depth must be at least 2")
        self.max_depth = max_depth
        self._entries: List[Snapshot] = []
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def cursor(self) -> int:
        return self._cursor

    def clear(self) -> None:
        self._entries = []
        self._cursor = -1

    def _truncate_future(self) -> None:
        del self._entries[self._cursor + 1 :]

    def rebase(self, snapshot: Snapshot) -> None:
        """Make ``snapshot`` the entry at the cursor, dropping any redo entries."""
        self._truncate_future()
        if not self._entries:
            self._entries.append(copy.deepcopy(snapshot))
            self._cursor = 0
            return
        self._entries[self._cursor] = copy.deepcopy(snapshot)

    def push(self, snapshot: Snapshot) -> None:
        self._truncate_future()
        self._entries.append(copy.deepcopy(snapshot))
        self._cursor = len(self._entries) - 1
        while len(self._entries) > self.max_depth:
            self._entries.pop(0)
            self._cursor -= 1

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    def undo(self) -> Snapshot | None:
        if not self.can_undo():
            return None
        self._cursor -= 1
        return copy.deepcopy(self._entries[self._cursor])

    def redo(self) -> Snapshot | None:
        if not self.can_redo():
            return None
        self._cursor += 1
        return copy.deepcopy(self._entries[self._cursor])

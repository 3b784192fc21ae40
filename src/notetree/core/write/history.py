"""Undo/redo log of reversible tree mutations."""

import asyncio
from collections import deque

from loguru import logger

from notetree.errors import TreeError
from notetree.models.history import HistoryEntry
from notetree.protocols import HistoryApplier


class HistoryLog:
    """Two stacks of history entries.

    ``undo`` applies an entry's inverse through the applier and moves the
    entry to the redo stack; ``redo`` does the reverse. When the applier
    fails, the entry goes back where it came from, unchanged, and the error
    propagates: history is never dropped because of a failed replay.

    Args:
        applier: Replays entries against the store (the mutation coordinator).
        max_depth: Undo stack bound; the oldest entry is dropped past it.
            None keeps every entry.
    """

    def __init__(self, applier: HistoryApplier, *, max_depth: int | None = None) -> None:
        if max_depth is not None and max_depth < 1:
            msg = f"max_depth must be positive or None, got {max_depth!r}"
            raise ValueError(msg)
        self.applier = applier
        self.max_depth = max_depth
        self._undo: deque[HistoryEntry] = deque(maxlen=max_depth)
        self._redo: deque[HistoryEntry] = deque(maxlen=max_depth)
        self._lock = asyncio.Lock()
        # Bumped by every new action; a replay that straddles one is not stacked.
        self._generation = 0

    @property
    def undo_stack(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._undo)

    @property
    def redo_stack(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._redo)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def push(self, entry: HistoryEntry) -> None:
        """Record a new user action. Clears the redo stack."""
        self._undo.append(entry)
        self._redo.clear()
        self._generation += 1
        logger.debug("History: recorded {} ({} undoable)", entry.kind, len(self._undo))

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    async def undo(self) -> HistoryEntry | None:
        """Revert the most recent entry. Returns it, or None if there is nothing to undo."""
        async with self._lock:
            if not self._undo:
                return None
            entry = self._undo.pop()
            generation = self._generation
            try:
                await self.applier.apply_entry(entry, reverse=True)
            except TreeError:
                self._undo.append(entry)
                logger.warning("Undo of {} failed; entry kept", entry.kind)
                raise
            if generation != self._generation:
                logger.info("Undo of {} finished after a newer action; not redoable", entry.kind)
                return entry
            self._redo.append(entry)
            return entry

    async def redo(self) -> HistoryEntry | None:
        """Re-apply the most recently undone entry."""
        async with self._lock:
            if not self._redo:
                return None
            entry = self._redo.pop()
            generation = self._generation
            try:
                await self.applier.apply_entry(entry, reverse=False)
            except TreeError:
                self._redo.append(entry)
                logger.warning("Redo of {} failed; entry kept", entry.kind)
                raise
            if generation != self._generation:
                logger.info("Redo of {} finished after a newer action; not undoable", entry.kind)
                return entry
            self._undo.append(entry)
            return entry

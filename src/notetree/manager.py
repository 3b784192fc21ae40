"""High-level document tree manager wiring store, tree, selection and writes."""

import time
from collections.abc import Callable, Iterable

from loguru import logger

from notetree.config import MAX_HISTORY_DEPTH, SORT_STEP
from notetree.core.events import EventHub
from notetree.core.store.cache import NodeCache
from notetree.core.store.node_store import NodeStore
from notetree.core.tree.builder import build_tree, find_item, flatten_visible
from notetree.core.tree.relocation import DropPosition, RelocationEngine
from notetree.core.tree.selection import SelectionTracker
from notetree.core.write.coordinator import ConfirmDelete, MutationCoordinator
from notetree.errors import NotFoundError, TreeError
from notetree.models.history import HistoryEntry, MutationKind
from notetree.models.node import (
    ROOT_ID,
    DeleteOutcome,
    DeletionImpact,
    FolderState,
    Node,
    NodeFilter,
    NodePatch,
    SelectionSnapshot,
    TreeItem,
)
from notetree.protocols import NodeBackend, TreeListener


class DocumentTreeManager:
    """Entry point for an editing surface.

    Queries (``tree``, ``visible_items``, ``can_move``, ``preview_drop``)
    are synchronous reads of confirmed local state. Everything that talks
    to the store is a coroutine and goes through the mutation coordinator.

    Args:
        backend: Node store collaborator.
        max_history: Undo depth; None keeps everything.
        cache: Fallback cache shown when the store is unreachable.
        sort_step: Sort-key distance used for before/after drops.
        clock: Epoch-seconds clock, used for top-of-parent sort keys.
    """

    def __init__(
        self,
        backend: NodeBackend,
        *,
        max_history: int | None = MAX_HISTORY_DEPTH,
        cache: NodeCache | None = None,
        sort_step: float = SORT_STEP,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.store = NodeStore()
        self.selection = SelectionTracker(self.store)
        self.relocation = RelocationEngine(self.store, sort_step=sort_step, clock=clock)
        self.events = EventHub()
        self.coordinator = MutationCoordinator(
            backend,
            self.store,
            self.selection,
            self.events,
            relocation=self.relocation,
            cache=cache,
            max_history=max_history,
            clock=clock,
        )

    # --- Listeners ---

    def subscribe(self, listener: TreeListener) -> None:
        self.events.subscribe(listener)

    def unsubscribe(self, listener: TreeListener) -> None:
        self.events.unsubscribe(listener)

    # --- Queries ---

    async def load(self, query: str = "", *, include_deleted: bool = False) -> bool:
        """(Re)load nodes from the store. See ``MutationCoordinator.load``."""
        node_filter = NodeFilter(query=query, include_deleted=include_deleted)
        return await self.coordinator.load(node_filter if query or include_deleted else None)

    def tree(self, *, include_pending: bool = False) -> tuple[TreeItem, ...]:
        """Sorted forest of live nodes.

        With ``include_pending`` the in-flight changes are shown as if
        confirmed; confirmed state is not touched either way.
        """
        nodes = self.store.preview_nodes() if include_pending else self.store.all_nodes()
        return build_tree(nodes)

    def visible_items(self) -> list[TreeItem]:
        """Items in display order, skipping children of collapsed folders."""
        return flatten_visible(self.tree(), self.selection.expanded_ids)

    def snapshot(self) -> SelectionSnapshot:
        return self.selection.snapshot()

    @property
    def active(self) -> Node | None:
        active_id = self.selection.active_id
        return self.store.live(active_id) if active_id else None

    # --- Selection ---

    def click(self, node_id: str) -> bool:
        """Open a document or toggle a folder. Returns True if the active document changed."""
        item = find_item(self.tree(), node_id)
        if item is None:
            msg = f"Node {node_id!r} not found"
            raise NotFoundError(msg)
        changed = self.selection.click(item)
        if changed:
            self.events.active_changed(item.node, skip_abandon_prompt=False)
        return changed

    def toggle_multi_select(self, node_id: str) -> bool:
        return self.selection.toggle_multi_select(node_id)

    def select_range(self, from_id: str, to_id: str) -> set[str]:
        """Shift-click selection over the currently visible items."""
        return self.selection.select_range(from_id, to_id, self.visible_items())

    def folder_state(self, folder_id: str) -> FolderState:
        return self.selection.folder_state(folder_id)

    # --- Drag and drop ---

    def can_move(self, dragged_id: str, target_id: str) -> bool:
        return self.relocation.can_move(dragged_id, target_id)

    def valid_destinations(self, node_id: str) -> list[str]:
        return self.relocation.valid_destinations(node_id)

    def preview_drop(
        self, dragged_id: str, target_id: str | None, position: DropPosition
    ) -> tuple[TreeItem, ...]:
        """The tree as it would look after the drop. Nothing is sent or stored."""
        relocation = self.relocation.compute_relocation(dragged_id, target_id, position)
        patch = NodePatch(parent_id=relocation.parent_id, sort_order=relocation.sort_order)
        return build_tree(self.store.preview_nodes({dragged_id: patch}))

    async def drop(self, dragged_id: str, target_id: str | None, position: DropPosition) -> Node:
        """Move ``dragged_id`` relative to ``target_id`` (None drops at the top of the root)."""
        try:
            relocation = self.relocation.compute_relocation(dragged_id, target_id, position)
        except TreeError as e:
            self.coordinator.report_failure(MutationKind.MOVE, e)
            raise
        return await self.coordinator.move(
            relocation.node_id, relocation.parent_id, relocation.sort_order
        )

    # --- Mutations ---

    async def create(
        self,
        title: str,
        *,
        is_folder: bool = False,
        parent_id: str = ROOT_ID,
        content: str | None = None,
    ) -> Node:
        node = await self.coordinator.create(title, is_folder, parent_id, content)
        if parent_id != ROOT_ID:
            self.selection.expand(parent_id)
        return node

    async def rename(self, node_id: str, new_title: str) -> Node:
        return await self.coordinator.rename(node_id, new_title)

    async def move(self, node_id: str, parent_id: str, sort_order: float | None = None) -> Node:
        """Move a node; without ``sort_order`` it goes to the top of its new parent."""
        if sort_order is None:
            sort_order = self.relocation.top_of(parent_id)
        return await self.coordinator.move(node_id, parent_id, sort_order)

    def deletion_impact(self, node_ids: Iterable[str]) -> DeletionImpact:
        return self.coordinator.deletion_impact(node_ids)

    async def delete(self, node_id: str, *, confirm: ConfirmDelete | None = None) -> DeleteOutcome | None:
        return await self.coordinator.delete(node_id, confirm=confirm)

    async def delete_selected(self, *, confirm: ConfirmDelete | None = None) -> DeleteOutcome | None:
        """Delete every multi-selected document in one batch."""
        ids = self.selection.selection_roots()
        if not ids:
            logger.debug("Nothing selected to delete")
            return None
        outcome = await self.coordinator.delete_many(ids, confirm=confirm)
        if outcome is not None:
            self.selection.clear_multi_select()
        return outcome

    # --- History ---

    @property
    def can_undo(self) -> bool:
        return self.coordinator.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.coordinator.history.can_redo

    async def undo(self) -> HistoryEntry | None:
        return await self.coordinator.undo()

    async def redo(self) -> HistoryEntry | None:
        return await self.coordinator.redo()

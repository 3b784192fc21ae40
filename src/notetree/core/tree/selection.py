"""Active document, multi-selection and tri-state folder selection."""

from collections.abc import Sequence

from loguru import logger

from notetree.core.store.node_store import NodeStore
from notetree.errors import NotFoundError, ValidationError
from notetree.models.node import DocumentItem, FolderItem, FolderState, SelectionSnapshot, TreeItem


class SelectionTracker:
    """Tracks which document is open, which documents are multi-selected and
    which folders are expanded.

    Folder selection state is never stored; ``folder_state`` derives it from
    the multi-selection every time it is asked.
    """

    def __init__(self, store: NodeStore) -> None:
        self.store = store
        self.active_id: str | None = None
        self.multi_select_ids: set[str] = set()
        self.expanded_ids: set[str] = set()

    # --- Active document ---

    def set_active(self, node_id: str) -> bool:
        """Open a document.

        Folders cannot be open: on a folder this toggles its expansion
        instead and returns False.
        """
        node = self.store.require(node_id)
        if node.is_folder:
            self.toggle_expanded(node_id)
            return False
        self.active_id = node_id
        return True

    def clear_active(self) -> None:
        self.active_id = None

    def click(self, item: TreeItem) -> bool:
        """Dispatch a click: expand/collapse a folder, open a document.

        Returns True when the active document changed.
        """
        match item:
            case FolderItem():
                self.toggle_expanded(item.id)
                return False
            case DocumentItem():
                changed = self.active_id != item.id
                self.set_active(item.id)
                return changed

    # --- Expansion ---

    def is_expanded(self, folder_id: str) -> bool:
        return folder_id in self.expanded_ids

    def expand(self, folder_id: str) -> None:
        self.expanded_ids.add(folder_id)

    def collapse(self, folder_id: str) -> None:
        self.expanded_ids.discard(folder_id)

    def toggle_expanded(self, folder_id: str) -> bool:
        """Flip a folder's expansion flag and return the new value."""
        if folder_id in self.expanded_ids:
            self.expanded_ids.discard(folder_id)
            return False
        self.expanded_ids.add(folder_id)
        return True

    # --- Multi-selection ---

    def toggle_multi_select(self, node_id: str) -> bool:
        """Add or remove a document from the multi-selection.

        Returns whether the document is selected afterwards.
        """
        node = self.store.require(node_id)
        if node.is_folder:
            msg = f"Folder {node.title!r} cannot be multi-selected; select its documents"
            raise ValidationError(msg)
        if node_id in self.multi_select_ids:
            self.multi_select_ids.discard(node_id)
            return False
        self.multi_select_ids.add(node_id)
        return True

    def select_range(self, from_id: str, to_id: str, visible_order: Sequence[TreeItem]) -> set[str]:
        """Select every document between two items of the visible order.

        Folders inside the range contribute all their descendant documents,
        including those hidden under collapsed folders.

        Returns:
            Ids newly added to the selection.
        """
        positions = {item.id: index for index, item in enumerate(visible_order)}
        for node_id in (from_id, to_id):
            if node_id not in positions:
                msg = f"Node {node_id!r} is not in the visible order"
                raise NotFoundError(msg)
        start, end = sorted((positions[from_id], positions[to_id]))

        wanted: set[str] = set()
        for item in visible_order[start : end + 1]:
            match item:
                case FolderItem():
                    if item.id in self.store:
                        wanted.update(self.store.descendant_documents(item.id))
                case DocumentItem():
                    if item.id in self.store:
                        wanted.add(item.id)

        added = wanted - self.multi_select_ids
        self.multi_select_ids |= wanted
        logger.debug("Range selection added {} document(s)", len(added))
        return added

    def select_all(self) -> None:
        self.multi_select_ids = {n.id for n in self.store.all_nodes() if n.is_document}

    def clear_multi_select(self) -> None:
        self.multi_select_ids.clear()

    def selection_roots(self) -> list[str]:
        """Selected live ids with no selected ancestor, sorted. Batch delete works on these."""
        return self.store.topmost(self.multi_select_ids)

    def folder_state(self, folder_id: str) -> FolderState:
        """Derive a folder's selection state from its descendant documents."""
        documents = self.store.descendant_documents(folder_id)
        selected = sum(1 for doc_id in documents if doc_id in self.multi_select_ids)
        if selected == 0:
            return FolderState.NONE
        if selected == len(documents):
            return FolderState.ALL
        return FolderState.PARTIAL

    # --- Housekeeping ---

    def prune(self) -> None:
        """Forget ids that are no longer live. Does not pick a new active document."""
        self.multi_select_ids = {i for i in self.multi_select_ids if i in self.store}
        self.expanded_ids = {i for i in self.expanded_ids if i in self.store}

    def active_is_stale(self) -> bool:
        return self.active_id is not None and self.active_id not in self.store

    def snapshot(self) -> SelectionSnapshot:
        return SelectionSnapshot(
            active_id=self.active_id,
            multi_select_ids=frozenset(self.multi_select_ids),
            expanded_ids=frozenset(self.expanded_ids),
        )

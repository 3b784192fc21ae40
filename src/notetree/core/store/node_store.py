"""Flat, confirmed record of every known node, plus the pending overlay."""

from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from loguru import logger

from notetree.errors import NotFoundError
from notetree.models.history import MutationKind
from notetree.models.node import ROOT_ID, Node, NodePatch


def sibling_key(node: Node) -> tuple[float, str]:
    """Sort key for siblings: descending sort order, then id."""
    return (-node.sort_order, node.id)


@dataclass(frozen=True)
class PendingChange:
    """An in-flight request that has not been confirmed by the store yet."""

    kind: MutationKind
    patch: NodePatch


class PendingOverlay:
    """Changes awaiting confirmation, kept apart from the confirmed nodes."""

    def __init__(self) -> None:
        self._changes: dict[str, PendingChange] = {}

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._changes

    def __len__(self) -> int:
        return len(self._changes)

    def get(self, node_id: str) -> PendingChange | None:
        return self._changes.get(node_id)

    @contextmanager
    def track(
        self, node_ids: Iterable[str], kind: MutationKind, patch: NodePatch | None = None
    ) -> Iterator[None]:
        """Mark nodes as pending for the duration of a request."""
        ids = list(node_ids)
        change = PendingChange(kind=kind, patch=patch or NodePatch())
        for node_id in ids:
            self._changes[node_id] = change
        logger.debug("Pending {} on {} node(s)", kind, len(ids))
        try:
            yield
        finally:
            for node_id in ids:
                self._changes.pop(node_id, None)

    def apply(self, nodes: Iterable[Node]) -> list[Node]:
        """Return ``nodes`` as they would look once every pending change lands."""
        out = []
        for node in nodes:
            change = self._changes.get(node.id)
            out.append(node.apply(change.patch) if change else node)
        return out


class NodeStore:
    """The authoritative flat node set.

    Only the mutation coordinator writes to it; everything else reads.
    """

    def __init__(self, nodes: Iterable[Node] = ()) -> None:
        self._nodes: dict[str, Node] = {n.id: n for n in nodes}
        self.pending = PendingOverlay()

    def __contains__(self, node_id: object) -> bool:
        node = self._nodes.get(node_id)  # type: ignore[arg-type]
        return node is not None and not node.deleted

    def __len__(self) -> int:
        return sum(1 for n in self._nodes.values() if not n.deleted)

    # --- Reads ---

    def get(self, node_id: str) -> Node | None:
        """Return a node by id, deleted or not."""
        return self._nodes.get(node_id)

    def live(self, node_id: str) -> Node | None:
        node = self._nodes.get(node_id)
        if node is None or node.deleted:
            return None
        return node

    def require(self, node_id: str) -> Node:
        """Return a live node or raise NotFoundError."""
        node = self.live(node_id)
        if node is None:
            msg = f"Node {node_id!r} not found"
            raise NotFoundError(msg)
        return node

    def all_nodes(self, *, include_deleted: bool = False) -> list[Node]:
        return [n for n in self._nodes.values() if include_deleted or not n.deleted]

    def preview_nodes(self, extra: dict[str, NodePatch] | None = None) -> list[Node]:
        """Live nodes with the pending overlay (and ``extra`` patches) applied."""
        nodes = self.pending.apply(self._nodes.values())
        if extra:
            nodes = [n.apply(extra[n.id]) if n.id in extra else n for n in nodes]
        return [n for n in nodes if not n.deleted]

    def _children_index(self) -> dict[str, list[Node]]:
        index: dict[str, list[Node]] = defaultdict(list)
        for node in self._nodes.values():
            if not node.deleted:
                index[node.parent_id].append(node)
        for children in index.values():
            children.sort(key=sibling_key)
        return index

    def children_of(self, parent_id: str) -> list[Node]:
        """Live children in display order."""
        children = [n for n in self._nodes.values() if not n.deleted and n.parent_id == parent_id]
        return sorted(children, key=sibling_key)

    def subtree_ids(self, node_id: str) -> list[str]:
        """Pre-order ids of a live node and all its live descendants."""
        self.require(node_id)
        index = self._children_index()
        out: list[str] = []
        seen: set[str] = set()
        stack = [node_id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            out.append(current)
            stack.extend(child.id for child in reversed(index.get(current, [])))
        return out

    def descendant_documents(self, folder_id: str) -> list[str]:
        """Ids of every live document below ``folder_id``."""
        return [
            node_id
            for node_id in self.subtree_ids(folder_id)[1:]
            if not self._nodes[node_id].is_folder
        ]

    def ancestors_of(self, node_id: str) -> list[str]:
        """Parent chain from the immediate parent upwards. Stops on a cycle."""
        out: list[str] = []
        node = self._nodes.get(node_id)
        seen = {node_id}
        while node is not None and node.parent_id != ROOT_ID:
            parent_id = node.parent_id
            if parent_id in seen:
                break
            seen.add(parent_id)
            parent = self.live(parent_id)
            if parent is None:
                break
            out.append(parent_id)
            node = parent
        return out

    def is_ancestor(self, ancestor_id: str, node_id: str) -> bool:
        return ancestor_id in self.ancestors_of(node_id)

    def topmost(self, node_ids: Iterable[str]) -> list[str]:
        """Live ids from ``node_ids`` that have no ancestor in the same set."""
        wanted = {i for i in node_ids if i in self}
        return sorted(i for i in wanted if not any(a in wanted for a in self.ancestors_of(i)))

    def max_child_sort_order(self, parent_id: str) -> float | None:
        orders = [n.sort_order for n in self._nodes.values() if not n.deleted and n.parent_id == parent_id]
        return max(orders) if orders else None

    def sibling_folder_titles(self, parent_id: str, *, exclude_id: str | None = None) -> set[str]:
        return {
            n.title
            for n in self._nodes.values()
            if not n.deleted and n.is_folder and n.parent_id == parent_id and n.id != exclude_id
        }

    # --- Writes (mutation coordinator only) ---

    def replace_all(self, nodes: Iterable[Node]) -> None:
        self._nodes = {n.id: n for n in nodes}

    def upsert(self, node: Node) -> None:
        self._nodes[node.id] = node

    def mark_deleted(self, node_ids: Iterable[str], *, deleted_at: int) -> None:
        for node_id in node_ids:
            node = self._nodes.get(node_id)
            if node is not None:
                self._nodes[node_id] = replace(node, deleted=True, deleted_at=deleted_at)

    def mark_restored(self, node_ids: Iterable[str]) -> None:
        for node_id in node_ids:
            node = self._nodes.get(node_id)
            if node is not None:
                self._nodes[node_id] = replace(node, deleted=False, deleted_at=None)

    def discard(self, node_ids: Iterable[str]) -> None:
        """Forget nodes entirely (they were purged by the store)."""
        for node_id in node_ids:
            self._nodes.pop(node_id, None)

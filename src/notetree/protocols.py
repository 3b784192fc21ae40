"""Protocols for the store collaborator and the editing surface."""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from notetree.errors import TreeError
from notetree.models.history import HistoryEntry, MutationKind
from notetree.models.node import Node, NodeFilter, NodePatch


@runtime_checkable
class NodeBackend(Protocol):
    """Protocol for the external, asynchronous node store.

    Every method may raise TransportError, ValidationError or NotFoundError.
    """

    async def list_nodes(self, node_filter: NodeFilter | None = None) -> list[Node]:
        """Return the flat node set (live only, unless the filter asks for deleted)."""
        ...

    async def create_node(
        self,
        title: str,
        is_folder: bool,
        parent_id: str,
        content: str | None = None,
    ) -> Node:
        """Create a node; the store assigns id, timestamps and initial sort order."""
        ...

    async def update_node(self, node_id: str, patch: NodePatch) -> Node:
        """Apply a partial update and return the stored node."""
        ...

    async def delete_node(self, node_id: str) -> None:
        """Soft-delete a single node."""
        ...

    async def batch_delete_nodes(self, node_ids: Sequence[str]) -> None:
        """Soft-delete several nodes in one call."""
        ...


@runtime_checkable
class TreeListener(Protocol):
    """Protocol for the editing surface observing the tree."""

    def on_active_changed(self, node: Node | None, *, skip_abandon_prompt: bool) -> None:
        """The active document changed. ``node`` is None when nothing is open."""
        ...

    def on_tree_changed(self, nodes: list[Node]) -> None:
        """Confirmed state changed; ``nodes`` is the flat live node list."""
        ...

    def on_mutation_failed(self, kind: MutationKind, error: TreeError) -> None:
        """A mutation was rejected or failed; nothing was changed locally."""
        ...


class HistoryApplier(Protocol):
    """Replays history entries against the store."""

    async def apply_entry(self, entry: HistoryEntry, *, reverse: bool) -> None: ...

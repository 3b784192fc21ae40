"""Drag-and-drop relocation: legality checks and destination computation."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

from notetree.config import SORT_STEP
from notetree.core.store.node_store import NodeStore
from notetree.errors import CycleError, NotFoundError, ValidationError
from notetree.models.node import ROOT_ID


class DropPosition(StrEnum):
    BEFORE = "before"
    AFTER = "after"
    INSIDE = "inside"


@dataclass(frozen=True)
class Relocation:
    """Where a dropped node ends up."""

    node_id: str
    parent_id: str
    sort_order: float


class RelocationEngine:
    """Computes whether and where a dragged node may land.

    This is the only place the acyclic invariant is enforced: every move
    passes through ``check_parent`` before anything is sent to the store.
    """

    def __init__(
        self,
        store: NodeStore,
        *,
        sort_step: float = SORT_STEP,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.sort_step = sort_step
        self.clock = clock

    def can_move(self, dragged_id: str, target_id: str) -> bool:
        """Whether ``dragged_id`` may be dropped on or next to ``target_id``.

        False when both are the same node, when the target lies inside the
        dragged node's subtree, or when either node is gone.
        """
        if dragged_id == target_id:
            return False
        if dragged_id not in self.store or target_id not in self.store:
            return False
        return not self.store.is_ancestor(dragged_id, target_id)

    def check_parent(self, node_id: str, parent_id: str) -> None:
        """Raise unless ``node_id`` may become a child of ``parent_id``."""
        self.store.require(node_id)
        if parent_id == ROOT_ID:
            return
        if parent_id == node_id:
            msg = f"Node {node_id!r} cannot be its own parent"
            raise CycleError(msg)
        parent = self.store.require(parent_id)
        if not parent.is_folder:
            msg = f"{parent.title!r} is a document and cannot contain other nodes"
            raise ValidationError(msg)
        if self.store.is_ancestor(node_id, parent_id):
            msg = f"Cannot move {node_id!r} into its own descendant {parent_id!r}"
            raise CycleError(msg)

    def top_of(self, parent_id: str) -> float:
        """A sort key above every current child of ``parent_id``."""
        highest = self.store.max_child_sort_order(parent_id)
        now = self.clock()
        if highest is None:
            return now
        return max(now, highest + self.sort_step)

    def compute_relocation(
        self, dragged_id: str, target_id: str | None, position: DropPosition
    ) -> Relocation:
        """Work out the new parent and sort key for a drop.

        Args:
            dragged_id: Node being dragged.
            target_id: Node it was dropped on; None for empty space (top of root).
            position: Where relative to the target it was dropped.

        Raises:
            NotFoundError: A node is no longer present.
            CycleError: The drop would put the node inside its own subtree.
            ValidationError: Dropping inside a document.
        """
        self.store.require(dragged_id)

        if target_id is None:
            return Relocation(dragged_id, ROOT_ID, self.top_of(ROOT_ID))

        target = self.store.require(target_id)
        if not self.can_move(dragged_id, target_id):
            msg = f"Cannot move {dragged_id!r} to {position} {target_id!r}"
            raise CycleError(msg)

        if position == DropPosition.INSIDE:
            if not target.is_folder:
                msg = f"Cannot drop inside document {target.title!r}"
                raise ValidationError(msg)
            relocation = Relocation(dragged_id, target_id, self.top_of(target_id))
        elif position == DropPosition.BEFORE:
            relocation = Relocation(dragged_id, target.parent_id, target.sort_order + self.sort_step)
        else:
            relocation = Relocation(dragged_id, target.parent_id, target.sort_order - self.sort_step)

        self.check_parent(dragged_id, relocation.parent_id)
        logger.debug(
            "Relocation of {}: parent {!r}, sort order {}",
            dragged_id,
            relocation.parent_id,
            relocation.sort_order,
        )
        return relocation

    def valid_destinations(self, node_id: str) -> list[str]:
        """Folders (and the root) that ``node_id`` could be moved into."""
        self.store.require(node_id)
        out = [ROOT_ID]
        for node in self.store.all_nodes():
            if node.is_folder and node.id != node_id and not self.store.is_ancestor(node_id, node.id):
                out.append(node.id)
        return out

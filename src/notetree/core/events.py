"""Fan-out of tree notifications to the editing surface."""

from loguru import logger

from notetree.errors import TreeError
from notetree.models.history import MutationKind
from notetree.models.node import Node
from notetree.protocols import TreeListener


class EventHub:
    """Delivers notifications to every subscribed listener.

    A listener that raises is logged and skipped; the change it was told
    about has already been confirmed by the store.
    """

    def __init__(self) -> None:
        self._listeners: list[TreeListener] = []

    def subscribe(self, listener: TreeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: TreeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def active_changed(self, node: Node | None, *, skip_abandon_prompt: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener.on_active_changed(node, skip_abandon_prompt=skip_abandon_prompt)
            except Exception:
                logger.exception("Listener {!r} failed in on_active_changed", listener)

    def tree_changed(self, nodes: list[Node]) -> None:
        for listener in list(self._listeners):
            try:
                listener.on_tree_changed(nodes)
            except Exception:
                logger.exception("Listener {!r} failed in on_tree_changed", listener)

    def mutation_failed(self, kind: MutationKind, error: TreeError) -> None:
        for listener in list(self._listeners):
            try:
                listener.on_mutation_failed(kind, error)
            except Exception:
                logger.exception("Listener {!r} failed in on_mutation_failed", listener)

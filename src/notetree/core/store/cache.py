"""Bounded node cache used when the store cannot be reached."""

from collections import OrderedDict
from collections.abc import Iterable

from notetree.config import NODE_CACHE_SIZE
from notetree.models.node import Node


class NodeCache:
    """Least-recently-written cache of confirmed nodes, keyed by id.

    Holds at most ``max_entries`` nodes; writing past the bound evicts the
    entry that was written longest ago.
    """

    def __init__(self, max_entries: int = NODE_CACHE_SIZE) -> None:
        if max_entries < 1:
            msg = f"max_entries must be positive, got {max_entries!r}"
            raise ValueError(msg)
        self.max_entries = max_entries
        self._entries: OrderedDict[str, Node] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._entries

    def get(self, node_id: str) -> Node | None:
        return self._entries.get(node_id)

    def put(self, node: Node) -> None:
        self._entries[node.id] = node
        self._entries.move_to_end(node.id)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def put_many(self, nodes: Iterable[Node]) -> None:
        for node in nodes:
            self.put(node)

    def evict(self, node_id: str) -> None:
        self._entries.pop(node_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def values(self) -> list[Node]:
        return list(self._entries.values())

"""Build the sorted folder/document forest from the flat node list."""

from collections import defaultdict
from collections.abc import Collection, Iterable, Iterator

from notetree.core.store.node_store import sibling_key
from notetree.models.node import ROOT_ID, DocumentItem, FolderItem, Node, TreeItem


def _effective_parent(node: Node, by_id: dict[str, Node]) -> str:
    """Parent to attach ``node`` under, or ROOT_ID for orphans.

    A node is an orphan when its parent is unknown, itself, or when walking
    its parent chain leads back to the node.
    """
    parent_id = node.parent_id
    if parent_id == ROOT_ID or parent_id == node.id or parent_id not in by_id:
        return ROOT_ID
    seen = {node.id}
    current = parent_id
    while current != ROOT_ID and current in by_id:
        if current in seen:
            return ROOT_ID if current == node.id else parent_id
        seen.add(current)
        current = by_id[current].parent_id
    return parent_id


def build_tree(nodes: Iterable[Node], *, include_deleted: bool = False) -> tuple[TreeItem, ...]:
    """Convert flat nodes into an ordered forest.

    Siblings are sorted by descending ``sort_order`` (ties by id). Folders
    carry the number of documents below them. The function is pure: the same
    input always yields an equal forest.

    Args:
        nodes: Flat node list, usually everything the store knows.
        include_deleted: Keep soft-deleted nodes in the forest.
    """
    by_id = {n.id: n for n in nodes if include_deleted or not n.deleted}

    children: dict[str, list[Node]] = defaultdict(list)
    for node in by_id.values():
        children[_effective_parent(node, by_id)].append(node)

    def build(node: Node) -> TreeItem:
        if not node.is_folder:
            return DocumentItem(node=node)
        kids = tuple(build(child) for child in sorted(children.get(node.id, []), key=sibling_key))
        count = sum(
            1 if isinstance(kid, DocumentItem) else kid.descendant_document_count for kid in kids
        )
        return FolderItem(node=node, children=kids, descendant_document_count=count)

    return tuple(build(root) for root in sorted(children.get(ROOT_ID, []), key=sibling_key))


def iter_preorder(forest: Iterable[TreeItem]) -> Iterator[TreeItem]:
    """Yield every item, parents before children, in display order."""
    for item in forest:
        yield item
        if isinstance(item, FolderItem):
            yield from iter_preorder(item.children)


def flatten_visible(forest: Iterable[TreeItem], expanded_ids: Collection[str]) -> list[TreeItem]:
    """Items as currently displayed: children of collapsed folders are skipped."""
    out: list[TreeItem] = []
    for item in forest:
        out.append(item)
        if isinstance(item, FolderItem) and item.id in expanded_ids:
            out.extend(flatten_visible(item.children, expanded_ids))
    return out


def find_item(forest: Iterable[TreeItem], node_id: str) -> TreeItem | None:
    for item in iter_preorder(forest):
        if item.id == node_id:
            return item
    return None


def first_document(forest: Iterable[TreeItem]) -> Node | None:
    """First document found by a pre-order walk, or None."""
    for item in iter_preorder(forest):
        if isinstance(item, DocumentItem):
            return item.node
    return None

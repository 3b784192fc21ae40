"""Domain models for the document tree."""

from dataclasses import dataclass, field, fields, replace
from enum import StrEnum
from typing import Any, Literal

# Parent id of top-level nodes.
ROOT_ID = ""


@dataclass(frozen=True)
class Node:
    """A folder or a document, as known to the store."""

    id: str
    title: str
    is_folder: bool
    parent_id: str = ROOT_ID
    sort_order: float = 0
    content: str | None = None
    deleted: bool = False
    created_at: int = 0
    updated_at: int = 0
    deleted_at: int | None = None

    @property
    def is_document(self) -> bool:
        return not self.is_folder

    def apply(self, patch: "NodePatch") -> "Node":
        """Return a copy with every field set in the patch applied."""
        return replace(self, **patch.as_dict())

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the store's wire field names."""
        return {
            "id": self.id,
            "title": self.title,
            "is_folder": self.is_folder,
            "parent_id": self.parent_id,
            "sort_order": self.sort_order,
            "content": self.content,
            "is_deleted": self.deleted,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Node":
        """Parse a node from the store's wire format.

        A missing or null ``parent_id`` means the node sits at the root.
        """
        is_folder = bool(data.get("is_folder", False))
        content = data.get("content")
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            is_folder=is_folder,
            parent_id=data.get("parent_id") or ROOT_ID,
            sort_order=data.get("sort_order") or 0,
            content=None if is_folder else (content or ""),
            deleted=bool(data.get("is_deleted", data.get("deleted", False))),
            created_at=int(data.get("created_at") or 0),
            updated_at=int(data.get("updated_at") or 0),
            deleted_at=data.get("deleted_at") or None,
        )


@dataclass(frozen=True)
class NodePatch:
    """A partial update. ``None`` leaves a field unchanged."""

    title: str | None = None
    parent_id: str | None = None
    sort_order: float | None = None
    deleted: bool | None = None
    content: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def is_empty(self) -> bool:
        return not self.as_dict()


@dataclass(frozen=True)
class NodeFilter:
    """Restricts what the store lists."""

    query: str = ""
    include_deleted: bool = False

    def matches(self, node: Node) -> bool:
        if node.deleted and not self.include_deleted:
            return False
        if not self.query:
            return True
        return self.query in node.title or self.query in (node.content or "")


@dataclass(frozen=True)
class DocumentItem:
    """A document in the built tree. Documents can be selected and opened."""

    node: Node
    kind: Literal["document"] = "document"

    @property
    def id(self) -> str:
        return self.node.id

    @property
    def descendant_document_count(self) -> int:
        return 0


@dataclass(frozen=True)
class FolderItem:
    """A folder in the built tree. Folders can be expanded and collapsed."""

    node: Node
    children: tuple["TreeItem", ...] = ()
    descendant_document_count: int = 0
    kind: Literal["folder"] = "folder"

    @property
    def id(self) -> str:
        return self.node.id


TreeItem = FolderItem | DocumentItem


class FolderState(StrEnum):
    """Derived selection state of a folder."""

    NONE = "none"
    PARTIAL = "partial"
    ALL = "all"


@dataclass(frozen=True)
class SelectionSnapshot:
    """Read-only copy of the selection state."""

    active_id: str | None
    multi_select_ids: frozenset[str] = field(default_factory=frozenset)
    expanded_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class DeletionImpact:
    """What a delete would remove, disclosed before the user confirms."""

    node_ids: tuple[str, ...]
    affected_ids: tuple[str, ...]
    descendant_count: int
    document_count: int
    includes_active: bool


@dataclass(frozen=True)
class DeleteOutcome:
    """Result of a confirmed delete."""

    deleted_ids: tuple[str, ...]
    active: Node | None
    active_changed: bool

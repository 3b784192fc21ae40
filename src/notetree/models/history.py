"""Reversible records of tree mutations."""

from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar


class MutationKind(StrEnum):
    """What a coordinator call was doing; reported with failures."""

    LOAD = "load"
    CREATE = "create"
    RENAME = "rename"
    MOVE = "move"
    DELETE = "delete"
    RESTORE = "restore"
    UNDO = "undo"
    REDO = "redo"


@dataclass(frozen=True)
class CreateEntry:
    node_id: str

    kind: ClassVar[MutationKind] = MutationKind.CREATE


@dataclass(frozen=True)
class DeleteEntry:
    """A soft delete of ``node_id`` together with the descendants it took along."""

    node_id: str
    affected_ids: tuple[str, ...]

    kind: ClassVar[MutationKind] = MutationKind.DELETE


@dataclass(frozen=True)
class RenameEntry:
    node_id: str
    old_title: str
    new_title: str

    kind: ClassVar[MutationKind] = MutationKind.RENAME


@dataclass(frozen=True)
class MoveEntry:
    node_id: str
    old_parent_id: str
    old_sort_order: float
    new_parent_id: str
    new_sort_order: float

    kind: ClassVar[MutationKind] = MutationKind.MOVE


@dataclass(frozen=True)
class GroupEntry:
    """Several entries recorded by one user action (batch delete)."""

    entries: tuple["HistoryEntry", ...]

    kind: ClassVar[MutationKind] = MutationKind.DELETE


HistoryEntry = CreateEntry | DeleteEntry | RenameEntry | MoveEntry | GroupEntry

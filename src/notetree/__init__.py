"""Hierarchical document tree manager for a note-taking application."""

from notetree.api import HttpNodeBackend
from notetree.core.store.sqlite_backend import SqliteNodeBackend
from notetree.core.tree.relocation import DropPosition
from notetree.errors import CycleError, NotFoundError, TransportError, TreeError, ValidationError
from notetree.manager import DocumentTreeManager
from notetree.models.node import ROOT_ID, Node, NodeFilter, NodePatch
from notetree.protocols import NodeBackend, TreeListener

__all__ = [
    "ROOT_ID",
    "CycleError",
    "DocumentTreeManager",
    "DropPosition",
    "HttpNodeBackend",
    "Node",
    "NodeBackend",
    "NodeFilter",
    "NodePatch",
    "NotFoundError",
    "SqliteNodeBackend",
    "TransportError",
    "TreeError",
    "TreeListener",
    "ValidationError",
]

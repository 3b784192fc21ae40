"""Tests for the flat node store and its pending overlay."""

import pytest

from notetree.core.store.node_store import NodeStore
from notetree.errors import NotFoundError, TransportError
from notetree.models.history import MutationKind
from notetree.models.node import ROOT_ID, NodePatch


def test_subtree_ids_are_pre_order(nested_store: NodeStore) -> None:
    assert nested_store.subtree_ids("F1") == ["F1", "F2", "d1", "d2", "d3"]
    assert nested_store.subtree_ids("d4") == ["d4"]


def test_descendant_documents_skip_folders(nested_store: NodeStore) -> None:
    assert nested_store.descendant_documents("F1") == ["d1", "d2", "d3"]
    assert nested_store.descendant_documents("F3") == []


def test_ancestors_and_is_ancestor(nested_store: NodeStore) -> None:
    assert nested_store.ancestors_of("d1") == ["F2", "F1"]
    assert nested_store.ancestors_of("d4") == []
    assert nested_store.is_ancestor("F1", "d2")
    assert not nested_store.is_ancestor("d2", "F1")


def test_topmost_drops_ids_nested_under_others(nested_store: NodeStore) -> None:
    assert nested_store.topmost(["d1", "F2", "d4", "unknown"]) == ["F2", "d4"]


def test_deleted_nodes_are_not_live(nested_store: NodeStore) -> None:
    nested_store.mark_deleted(["d4"], deleted_at=5)
    assert "d4" not in nested_store
    assert nested_store.get("d4") is not None
    with pytest.raises(NotFoundError):
        nested_store.require("d4")

    nested_store.mark_restored(["d4"])
    assert "d4" in nested_store
    assert nested_store.require("d4").deleted_at is None


def test_children_and_sort_helpers(nested_store: NodeStore) -> None:
    assert [n.id for n in nested_store.children_of(ROOT_ID)] == ["F1", "d4", "F3"]
    assert nested_store.max_child_sort_order("F1") == 20
    assert nested_store.max_child_sort_order("F3") is None
    assert nested_store.sibling_folder_titles(ROOT_ID) == {"Work", "Empty"}
    assert nested_store.sibling_folder_titles(ROOT_ID, exclude_id="F3") == {"Work"}


def test_pending_overlay_is_cleared_even_on_failure(nested_store: NodeStore) -> None:
    patch = NodePatch(title="Renamed")
    with pytest.raises(TransportError):
        with nested_store.pending.track(["d4"], MutationKind.RENAME, patch):
            assert "d4" in nested_store.pending
            raise TransportError("offline")
    assert "d4" not in nested_store.pending
    assert len(nested_store.pending) == 0


def test_preview_applies_pending_and_extra_without_touching_store(nested_store: NodeStore) -> None:
    with nested_store.pending.track(["d4"], MutationKind.RENAME, NodePatch(title="Draft")):
        preview = {n.id: n for n in nested_store.preview_nodes({"d1": NodePatch(parent_id="F3")})}
        assert preview["d4"].title == "Draft"
        assert preview["d1"].parent_id == "F3"
    assert nested_store.require("d4").title == "d4"
    assert nested_store.require("d1").parent_id == "F2"


def test_discard_forgets_nodes(nested_store: NodeStore) -> None:
    nested_store.discard(["d4"])
    assert nested_store.get("d4") is None
    assert len(nested_store) == 6

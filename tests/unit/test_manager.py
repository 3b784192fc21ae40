"""End-to-end tests of the document tree manager over an in-memory store."""

import asyncio
import random

import pytest

from notetree.core.tree.builder import find_item, iter_preorder
from notetree.core.tree.relocation import DropPosition
from notetree.errors import CycleError, ValidationError
from notetree.manager import DocumentTreeManager
from notetree.models.history import DeleteEntry, GroupEntry, MutationKind
from notetree.models.node import ROOT_ID, DeletionImpact, FolderItem, FolderState
from tests.unit.fakes import ABC_NODES, NESTED_NODES, FakeBackend, RecordingListener, folder


def test_create_undo_redo_keeps_id_and_sort_order() -> None:
    """Create D at the root, undo it, redo it: same id, same sort order."""
    backend = FakeBackend(ABC_NODES, clock=lambda: 100.0)
    manager = DocumentTreeManager(backend, clock=lambda: 100.0)

    async def scenario() -> None:
        await manager.load()
        created = await manager.create("D")
        assert created.sort_order == 100
        assert manager.selection.active_id == created.id

        await manager.undo()
        assert created.id not in {n.id for n in await backend.list_nodes()}
        assert created.id not in manager.store

        await manager.redo()
        listed = {n.id: n for n in await backend.list_nodes()}
        assert listed[created.id].sort_order == 100
        assert manager.store.require(created.id).sort_order == 100

    asyncio.run(scenario())


def test_folder_cannot_be_dropped_into_its_document() -> None:
    manager = DocumentTreeManager(FakeBackend(ABC_NODES))
    listener = RecordingListener()
    manager.subscribe(listener)
    asyncio.run(manager.load())
    assert manager.can_move("A", "B") is False
    with pytest.raises(CycleError):
        asyncio.run(manager.drop("A", "B", DropPosition.BEFORE))
    assert [(kind, type(e)) for kind, e in listener.failures] == [(MutationKind.MOVE, CycleError)]


def test_deleting_folder_with_active_document_clears_active() -> None:
    manager = DocumentTreeManager(FakeBackend(ABC_NODES))
    listener = RecordingListener()
    manager.subscribe(listener)

    async def scenario() -> None:
        await manager.load()
        assert manager.selection.active_id == "B"
        outcome = await manager.delete("A")
        assert outcome is not None
        assert set(outcome.deleted_ids) == {"A", "B", "C"}

    asyncio.run(scenario())
    assert manager.selection.active_id is None
    assert listener.active[-1] == (None, True)


def test_deleting_active_document_selects_sibling() -> None:
    manager = DocumentTreeManager(FakeBackend(ABC_NODES))

    async def scenario() -> None:
        await manager.load()
        await manager.delete("B")

    asyncio.run(scenario())
    assert manager.selection.active_id == "C"


def test_deleting_ancestor_of_active_reselects_before_notifying(
    manager: DocumentTreeManager, listener: RecordingListener
) -> None:
    async def scenario() -> None:
        await manager.load()
        assert manager.selection.active_id == "d1"
        await manager.delete("F2")

    asyncio.run(scenario())
    assert manager.selection.active_id == "d3"
    assert listener.active[-1] == ("d3", True)
    assert not any(n.id in {"d1", "d2", "F2"} for n in listener.trees[-1])


def test_delete_then_undo_restores_tree(manager: DocumentTreeManager) -> None:
    async def scenario() -> None:
        await manager.load()
        before = manager.tree()
        await manager.delete("F2")
        assert manager.tree() != before
        await manager.undo()
        assert manager.tree() == before
        await manager.redo()
        assert "F2" not in manager.store

    asyncio.run(scenario())


def test_move_undo_redo_round_trip(manager: DocumentTreeManager) -> None:
    async def scenario() -> None:
        await manager.load()
        before = manager.tree()
        moved = await manager.drop("d4", "F3", DropPosition.INSIDE)
        assert (moved.parent_id, moved.sort_order) == ("F3", 100)
        after = manager.tree()

        await manager.undo()
        assert manager.tree() == before
        await manager.redo()
        assert manager.tree() == after

    asyncio.run(scenario())


def test_rename_round_trip_and_noop(manager: DocumentTreeManager) -> None:
    async def scenario() -> None:
        await manager.load()
        await manager.rename("F3", "  Archive ")
        assert manager.store.require("F3").title == "Archive"
        await manager.undo()
        assert manager.store.require("F3").title == "Empty"
        await manager.redo()
        assert manager.store.require("F3").title == "Archive"

        manager.coordinator.history.clear()
        await manager.rename("F3", "Archive")
        assert not manager.can_undo

    asyncio.run(scenario())


def test_delete_confirmation_sees_impact_and_can_cancel(
    manager: DocumentTreeManager, backend: FakeBackend
) -> None:
    seen: list[DeletionImpact] = []

    async def approve(impact: DeletionImpact) -> bool:
        seen.append(impact)
        return True

    async def scenario() -> None:
        await manager.load()
        assert await manager.delete("F1", confirm=lambda impact: False) is None
        assert "F1" in manager.store
        assert await manager.delete("F1", confirm=approve) is not None

    asyncio.run(scenario())
    impact = seen[0]
    assert impact.node_ids == ("F1",)
    assert impact.descendant_count == 4
    assert impact.document_count == 3
    assert impact.includes_active is True
    assert [name for name, _ in backend.calls].count("batch_delete_nodes") == 1


def test_delete_selected_is_one_batch_and_one_undo(
    manager: DocumentTreeManager, backend: FakeBackend
) -> None:
    async def scenario() -> None:
        await manager.load()
        manager.toggle_multi_select("d1")
        manager.toggle_multi_select("d3")
        outcome = await manager.delete_selected()
        assert outcome is not None and outcome.active_changed
        assert manager.selection.active_id == "d2"
        assert manager.selection.multi_select_ids == set()

        entry = manager.coordinator.history.undo_stack[-1]
        assert isinstance(entry, GroupEntry)
        assert all(isinstance(e, DeleteEntry) for e in entry.entries)

        await manager.undo()
        assert {"d1", "d3"} <= {n.id for n in manager.store.all_nodes()}

    asyncio.run(scenario())
    assert ("batch_delete_nodes", ["d1", "d3"]) in backend.calls


def test_click_expands_folders_and_opens_documents(
    manager: DocumentTreeManager, listener: RecordingListener
) -> None:
    asyncio.run(manager.load())
    assert manager.click("F1") is False
    assert manager.selection.is_expanded("F1")
    assert [i.id for i in manager.visible_items()] == ["F1", "F2", "d3", "d4", "F3"]
    assert manager.click("d4") is True
    assert listener.active[-1] == ("d4", False)


def test_range_selection_updates_folder_state(manager: DocumentTreeManager) -> None:
    asyncio.run(manager.load())
    manager.click("F1")
    manager.select_range("F2", "d3")
    assert manager.folder_state("F1") == FolderState.ALL
    manager.toggle_multi_select("d2")
    assert manager.folder_state("F2") == FolderState.PARTIAL
    assert manager.folder_state("F1") == FolderState.PARTIAL
    with pytest.raises(ValidationError):
        manager.toggle_multi_select("F3")


def test_preview_drop_does_not_touch_confirmed_state(
    manager: DocumentTreeManager, backend: FakeBackend
) -> None:
    asyncio.run(manager.load())
    preview = manager.preview_drop("d4", "F3", DropPosition.INSIDE)
    target = find_item(preview, "F3")
    assert isinstance(target, FolderItem)
    assert [c.id for c in target.children] == ["d4"]
    assert manager.store.require("d4").parent_id == ROOT_ID
    assert not any(name == "update_node" for name, _ in backend.calls)


def test_create_in_folder_expands_it(manager: DocumentTreeManager) -> None:
    async def scenario() -> None:
        await manager.load()
        node = await manager.create("Idea", parent_id="F3")
        assert manager.active is not None and manager.active.id == node.id

    asyncio.run(scenario())
    assert manager.selection.is_expanded("F3")


def test_history_depth_is_bounded(backend: FakeBackend) -> None:
    manager = DocumentTreeManager(backend, max_history=1)

    async def scenario() -> None:
        await manager.load()
        await manager.rename("d4", "one")
        await manager.rename("d4", "two")
        assert await manager.undo() is not None
        assert await manager.undo() is None

    asyncio.run(scenario())
    assert manager.store.require("d4").title == "one"


def _assert_acyclic(manager: DocumentTreeManager) -> None:
    live = manager.store.all_nodes()
    for node in live:
        seen = {node.id}
        parent_id = node.parent_id
        while parent_id != ROOT_ID:
            assert parent_id not in seen, f"cycle through {parent_id}"
            seen.add(parent_id)
            parent = manager.store.get(parent_id)
            assert parent is not None
            parent_id = parent.parent_id
    assert len(list(iter_preorder(manager.tree()))) == len(live)


def test_random_gated_moves_keep_tree_acyclic() -> None:
    nodes = [
        *NESTED_NODES,
        folder("G1", 5, title="Alpha"),
        folder("G2", 4, parent_id="G1", title="Beta"),
        folder("G3", 3, parent_id="F3", title="Gamma"),
    ]
    manager = DocumentTreeManager(FakeBackend(nodes), clock=lambda: 1000.0)
    rng = random.Random(1234)
    positions = list(DropPosition)

    async def scenario() -> None:
        await manager.load()
        for _ in range(200):
            ids = sorted(n.id for n in manager.store.all_nodes())
            dragged = rng.choice(ids)
            target = rng.choice([*ids, None])
            if target is not None and not manager.can_move(dragged, target):
                continue
            try:
                await manager.drop(dragged, target, rng.choice(positions))
            except CycleError:
                pytest.fail(f"gated move of {dragged} to {target} raised CycleError")
            except ValidationError:
                pass
            _assert_acyclic(manager)

    asyncio.run(scenario())

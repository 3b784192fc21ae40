"""Tests for the SQLite node store."""

import asyncio
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest

from notetree.core.store.sqlite_backend import SqliteNodeBackend
from notetree.errors import NotFoundError, ValidationError
from notetree.manager import DocumentTreeManager
from notetree.models.node import ROOT_ID, NodeFilter, NodePatch
from notetree.protocols import NodeBackend


class Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock(1_700_000_000)


@pytest.fixture
def db(tmp_path: Path, clock: Clock) -> Iterator[SqliteNodeBackend]:
    backend = SqliteNodeBackend(tmp_path / "notes.db", clock=clock)
    yield backend
    backend.close()


def test_backend_satisfies_protocol(db: SqliteNodeBackend) -> None:
    assert isinstance(db, NodeBackend)


def test_create_assigns_id_and_time_based_sort_order(db: SqliteNodeBackend, clock: Clock) -> None:
    async def scenario() -> None:
        box = await db.create_node("Work", True, ROOT_ID)
        note = await db.create_node("Plan", False, box.id, "hello")
        assert box.content is None
        assert note.parent_id == box.id
        assert note.sort_order == clock.now
        listed = {n.id: n for n in await db.list_nodes()}
        assert listed[note.id].content == "hello"
        assert listed[box.id].is_folder

    asyncio.run(scenario())


def test_create_under_missing_parent_fails(db: SqliteNodeBackend) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(db.create_node("Orphan", False, "nope"))


def test_duplicate_sibling_folder_is_refused(db: SqliteNodeBackend) -> None:
    async def scenario() -> None:
        await db.create_node("Work", True, ROOT_ID)
        await db.create_node("Work", False, ROOT_ID)
        await db.create_node("Work", True, ROOT_ID)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_deleted_rows_only_accept_restore(db: SqliteNodeBackend) -> None:
    async def scenario() -> None:
        note = await db.create_node("Plan", False, ROOT_ID)
        await db.delete_node(note.id)
        assert await db.list_nodes() == []
        assert len(await db.list_nodes(NodeFilter(include_deleted=True))) == 1
        with pytest.raises(NotFoundError):
            await db.update_node(note.id, NodePatch(title="Other"))
        restored = await db.update_node(note.id, NodePatch(deleted=False))
        assert not restored.deleted
        assert restored.deleted_at is None

    asyncio.run(scenario())


def test_batch_delete_requires_every_node(db: SqliteNodeBackend) -> None:
    async def scenario() -> None:
        a = await db.create_node("a", False, ROOT_ID)
        b = await db.create_node("b", False, ROOT_ID)
        with pytest.raises(NotFoundError):
            await db.batch_delete_nodes([a.id, "missing"])
        assert len(await db.list_nodes()) == 2
        await db.batch_delete_nodes([a.id, b.id])
        assert await db.list_nodes() == []

    asyncio.run(scenario())


def test_list_filters_by_query(db: SqliteNodeBackend) -> None:
    async def scenario() -> None:
        await db.create_node("Groceries", False, ROOT_ID, "milk and bread")
        await db.create_node("Travel", False, ROOT_ID, "")
        found = await db.list_nodes(NodeFilter(query="milk"))
        assert [n.title for n in found] == ["Groceries"]

    asyncio.run(scenario())


def test_query_wildcards_match_literally(db: SqliteNodeBackend) -> None:
    async def scenario() -> None:
        await db.create_node("a_b", False, ROOT_ID, "")
        await db.create_node("axb", False, ROOT_ID, "100% done")
        assert [n.title for n in await db.list_nodes(NodeFilter(query="a_b"))] == ["a_b"]
        assert [n.title for n in await db.list_nodes(NodeFilter(query="0%"))] == ["axb"]
        assert await db.list_nodes(NodeFilter(query="%")) != []
        assert await db.list_nodes(NodeFilter(query="x%d")) == []

    asyncio.run(scenario())


def test_update_of_vanished_row_raises_not_found(db: SqliteNodeBackend) -> None:
    node = asyncio.run(db.create_node("Draft", False, ROOT_ID, ""))
    with patch.object(db, "_fetch", side_effect=[node, None]):
        with pytest.raises(NotFoundError, match="vanished"):
            asyncio.run(db.update_node(node.id, NodePatch(title="Final")))


def test_purge_removes_only_old_deleted_rows(db: SqliteNodeBackend, clock: Clock) -> None:
    async def scenario() -> int:
        old = await db.create_node("old", False, ROOT_ID)
        await db.delete_node(old.id)
        clock.now += 31 * 24 * 3600
        recent = await db.create_node("recent", False, ROOT_ID)
        await db.delete_node(recent.id)
        await db.create_node("live", False, ROOT_ID)
        return await db.purge_deleted(30)

    assert asyncio.run(scenario()) == 1
    remaining = asyncio.run(db.list_nodes(NodeFilter(include_deleted=True)))
    assert sorted(n.title for n in remaining) == ["live", "recent"]


def test_manager_round_trip_over_sqlite(db: SqliteNodeBackend) -> None:
    manager = DocumentTreeManager(db)

    async def scenario() -> None:
        await manager.load()
        box = await manager.create("Work", is_folder=True)
        note = await manager.create("Plan", parent_id=box.id)
        await manager.move(note.id, ROOT_ID)
        await manager.undo()
        assert manager.store.require(note.id).parent_id == box.id
        await manager.delete(box.id)
        await manager.undo()
        fresh = DocumentTreeManager(db)
        await fresh.load()
        assert {n.id for n in fresh.store.all_nodes()} == {box.id, note.id}

    asyncio.run(scenario())

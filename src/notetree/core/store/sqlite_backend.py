"""Node store backed by a local SQLite database."""

import asyncio
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

from loguru import logger

from notetree.config import PURGE_AFTER_DAYS
from notetree.core.store.schema import migrate_schema
from notetree.errors import NotFoundError, TransportError, ValidationError
from notetree.models.node import ROOT_ID, Node, NodeFilter, NodePatch

T = TypeVar("T")

_COLUMNS = (
    "id, title, content, created_at, updated_at, is_folder, parent_id, "
    "sort_order, is_deleted, deleted_at"
)


def _to_node(row: tuple[Any, ...]) -> Node:
    return Node(
        id=row[0],
        title=row[1],
        content=None if row[5] else (row[2] or ""),
        created_at=row[3],
        updated_at=row[4],
        is_folder=bool(row[5]),
        parent_id=row[6] or ROOT_ID,
        sort_order=row[7],
        deleted=bool(row[8]),
        deleted_at=row[9],
    )


class SqliteNodeBackend:
    """Implements the node store collaborator on top of ``sqlite3``.

    Blocking database calls run in a worker thread; a lock keeps them from
    interleaving on the shared connection.
    """

    def __init__(self, path: str | Path, *, clock: Callable[[], float] = time.time) -> None:
        self.path = str(path)
        self.clock = clock
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        migrate_schema(self.conn)
        logger.debug("SQLite store ready at {!r}", self.path)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        def locked() -> T:
            with self._lock:
                try:
                    return fn(*args)
                except sqlite3.Error as e:
                    self.conn.rollback()
                    msg = f"Database error: {e}"
                    raise TransportError(msg) from e

        return await asyncio.to_thread(locked)

    def _now(self) -> int:
        return int(self.clock())

    def _fetch(self, node_id: str) -> Node | None:
        row = self.conn.execute(f"SELECT {_COLUMNS} FROM files WHERE id = ?", (node_id,)).fetchone()
        return _to_node(row) if row else None

    def _check_folder_title(self, parent_id: str, title: str, exclude_id: str | None) -> None:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM files WHERE parent_id = ? AND title = ? AND is_folder = 1 "
            "AND is_deleted = 0 AND id != ?",
            (parent_id, title, exclude_id or ""),
        ).fetchone()
        if row[0] > 0:
            msg = f"A folder named {title!r} already exists here"
            raise ValidationError(msg)

    # --- NodeBackend ---

    async def list_nodes(self, node_filter: NodeFilter | None = None) -> list[Node]:
        node_filter = node_filter or NodeFilter()

        def run() -> list[Node]:
            clauses: list[str] = []
            params: tuple[str, ...] = ()
            if node_filter.query:
                # Plain substring match, same as NodeFilter.matches
                clauses.append("(instr(title, ?) > 0 OR instr(IFNULL(content, ''), ?) > 0)")
                params = (node_filter.query, node_filter.query)
            if not node_filter.include_deleted:
                clauses.append("is_deleted = 0")
            query = f"SELECT {_COLUMNS} FROM files"
            if clauses:
                query += " WHERE " + " AND ".join(clauses)
            query += " ORDER BY sort_order DESC, id"
            return [_to_node(r) for r in self.conn.execute(query, params).fetchall()]

        return await self._run(run)

    async def create_node(
        self,
        title: str,
        is_folder: bool,
        parent_id: str,
        content: str | None = None,
    ) -> Node:
        def run() -> Node:
            if parent_id != ROOT_ID:
                parent = self._fetch(parent_id)
                if parent is None or parent.deleted:
                    msg = f"Parent {parent_id!r} not found"
                    raise NotFoundError(msg)
            if is_folder:
                self._check_folder_title(parent_id, title, None)
            now = self._now()
            node = Node(
                id=uuid.uuid4().hex,
                title=title,
                is_folder=is_folder,
                parent_id=parent_id,
                sort_order=now,
                content=None if is_folder else (content or ""),
                created_at=now,
                updated_at=now,
            )
            self.conn.execute(
                f"INSERT INTO files ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, NULL)",
                (
                    node.id, node.title, node.content, now, now,
                    int(is_folder), parent_id, node.sort_order,
                ),
            )
            self.conn.commit()
            return node

        return await self._run(run)

    async def update_node(self, node_id: str, patch: NodePatch) -> Node:
        def run() -> Node:
            node = self._fetch(node_id)
            if node is None:
                msg = f"Node {node_id!r} not found"
                raise NotFoundError(msg)
            if node.deleted and patch.deleted is not False:
                msg = f"Node {node_id!r} is deleted and cannot be updated"
                raise NotFoundError(msg)

            updated = node.apply(patch)
            if patch.title is not None or patch.parent_id is not None or patch.deleted is False:
                if updated.is_folder:
                    self._check_folder_title(updated.parent_id, updated.title, node_id)
            deleted_at = updated.deleted_at
            if patch.deleted is False:
                deleted_at = None
            elif patch.deleted and not node.deleted:
                deleted_at = self._now()

            now = self._now()
            self.conn.execute(
                "UPDATE files SET title = ?, content = ?, parent_id = ?, sort_order = ?, "
                "is_deleted = ?, deleted_at = ?, updated_at = ? WHERE id = ?",
                (
                    updated.title, updated.content, updated.parent_id, updated.sort_order,
                    int(updated.deleted), deleted_at, now, node_id,
                ),
            )
            self.conn.commit()
            if patch.parent_id is not None or patch.sort_order is not None:
                logger.debug(
                    "[Move] {} ({}) moved to parent {!r}, order {}",
                    updated.title, node_id, updated.parent_id, updated.sort_order,
                )
            fetched = self._fetch(node_id)
            if fetched is None:
                msg = f"Node {node_id!r} vanished after update"
                raise NotFoundError(msg)
            return fetched

        return await self._run(run)

    async def delete_node(self, node_id: str) -> None:
        await self.batch_delete_nodes([node_id])

    async def batch_delete_nodes(self, node_ids: Sequence[str]) -> None:
        ids = list(node_ids)

        def run() -> None:
            if not ids:
                return
            placeholders = ",".join("?" * len(ids))
            found = self.conn.execute(
                f"SELECT COUNT(*) FROM files WHERE is_deleted = 0 AND id IN ({placeholders})",
                ids,
            ).fetchone()[0]
            if found != len(set(ids)):
                msg = f"{len(set(ids)) - found} of {len(set(ids))} node(s) not found"
                raise NotFoundError(msg)
            now = self._now()
            self.conn.execute(
                f"UPDATE files SET is_deleted = 1, deleted_at = ?, updated_at = ? "
                f"WHERE id IN ({placeholders})",
                [now, now, *ids],
            )
            self.conn.commit()

        await self._run(run)

    # --- Maintenance ---

    async def purge_deleted(self, older_than_days: int = PURGE_AFTER_DAYS) -> int:
        """Permanently remove nodes soft-deleted more than ``older_than_days`` ago.

        Returns:
            Number of rows removed.
        """
        threshold = self._now() - older_than_days * 24 * 3600

        def run() -> int:
            cursor = self.conn.execute(
                "DELETE FROM files WHERE is_deleted = 1 AND deleted_at < ?", (threshold,)
            )
            self.conn.commit()
            return cursor.rowcount

        removed = await self._run(run)
        logger.info("Purged {} deleted node(s) older than {} days", removed, older_than_days)
        return removed

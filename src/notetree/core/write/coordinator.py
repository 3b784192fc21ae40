"""Write operations against the node store with local state reconciliation."""

import asyncio
import inspect
import time
from collections import Counter, defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from contextlib import AsyncExitStack, asynccontextmanager

from loguru import logger

from notetree.config import MAX_HISTORY_DEPTH
from notetree.core.events import EventHub
from notetree.core.store.cache import NodeCache
from notetree.core.store.node_store import NodeStore
from notetree.core.tree.builder import build_tree, first_document
from notetree.core.tree.relocation import RelocationEngine
from notetree.core.tree.selection import SelectionTracker
from notetree.core.write.history import HistoryLog
from notetree.core.write.validation import ensure_unique_folder_title, validate_title
from notetree.errors import NotFoundError, TransportError, TreeError, ValidationError
from notetree.models.history import (
    CreateEntry,
    DeleteEntry,
    GroupEntry,
    HistoryEntry,
    MoveEntry,
    MutationKind,
    RenameEntry,
)
from notetree.models.node import (
    ROOT_ID,
    DeleteOutcome,
    DeletionImpact,
    Node,
    NodeFilter,
    NodePatch,
)
from notetree.protocols import NodeBackend

ConfirmDelete = Callable[[DeletionImpact], bool | Awaitable[bool]]


class MutationCoordinator:
    """The single writer of the node store.

    Every mutation is validated locally, sent to the backend, and only
    applied to the store once the backend confirms it. Confirmed mutations
    are recorded in ``history``; failed ones change nothing and are
    reported to listeners before the error is re-raised.

    Requests are serialized per node: a second request touching a node
    waits until the first has resolved. Requests for unrelated nodes run
    concurrently.
    """

    def __init__(
        self,
        backend: NodeBackend,
        store: NodeStore,
        selection: SelectionTracker,
        events: EventHub,
        *,
        relocation: RelocationEngine | None = None,
        cache: NodeCache | None = None,
        max_history: int | None = MAX_HISTORY_DEPTH,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.store = store
        self.selection = selection
        self.events = events
        self.relocation = relocation or RelocationEngine(store, clock=clock)
        self.cache = cache if cache is not None else NodeCache()
        self.clock = clock
        self.history = HistoryLog(self, max_depth=max_history)
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        # Holders plus waiters per node; a lock is dropped when this reaches zero.
        self._lock_users: Counter[str] = Counter()
        self._load_generation = 0

    # --- Plumbing ---

    @asynccontextmanager
    async def _locked(self, node_ids: Iterable[str]) -> AsyncIterator[None]:
        """Hold the per-node locks of ``node_ids``, acquired in a fixed order."""
        ids = sorted(set(node_ids))
        self._lock_users.update(ids)
        try:
            async with AsyncExitStack() as stack:
                for node_id in ids:
                    await stack.enter_async_context(self._locks[node_id])
                yield
        finally:
            for node_id in ids:
                self._lock_users[node_id] -= 1
                if self._lock_users[node_id] <= 0:
                    del self._lock_users[node_id]
                    self._locks.pop(node_id, None)

    def _commit(self, node: Node) -> None:
        self.store.upsert(node)
        self.cache.put(node)

    def report_failure(self, kind: MutationKind, error: TreeError) -> None:
        logger.warning("{} failed: {}", kind, error)
        self.events.mutation_failed(kind, error)

    def _publish(self, outcome: DeleteOutcome | None = None) -> None:
        """Tell listeners about confirmed changes: tree first, then the active document."""
        self.events.tree_changed(self.store.all_nodes())
        if outcome is not None and outcome.active_changed:
            self.events.active_changed(outcome.active, skip_abandon_prompt=True)

    # --- Load ---

    async def load(self, node_filter: NodeFilter | None = None) -> bool:
        """Replace the store with the backend's current node list.

        A newer call supersedes older in-flight ones; superseded results are
        discarded. When the backend is unreachable the cache is shown instead.

        Returns:
            True if fresh data from the backend was installed.
        """
        self._load_generation += 1
        generation = self._load_generation
        try:
            nodes = await self.backend.list_nodes(node_filter)
        except TransportError as e:
            if generation != self._load_generation:
                logger.debug("Discarding failure of superseded load {}", generation)
                return False
            self.report_failure(MutationKind.LOAD, e)
            if not len(self.cache):
                raise
            node_filter = node_filter or NodeFilter()
            cached = [n for n in self.cache.values() if node_filter.matches(n)]
            logger.warning("Store unreachable, showing {} cached node(s)", len(cached))
            self._install(cached)
            return False

        if generation != self._load_generation:
            logger.debug("Discarding superseded load {}", generation)
            return False

        if node_filter is None:
            self.cache.clear()
        self.cache.put_many(nodes)
        self._install(nodes)
        logger.debug("Loaded {} node(s)", len(nodes))
        return True

    def _install(self, nodes: Sequence[Node]) -> None:
        previous = self.selection.active_id
        # Soft-deleted nodes stay known so their deletes can still be undone.
        fresh = {n.id for n in nodes}
        kept = [
            n for n in self.store.all_nodes(include_deleted=True) if n.deleted and n.id not in fresh
        ]
        self.store.replace_all([*nodes, *kept])
        self.selection.prune()
        replacement = self.store.live(previous) if previous is not None else None
        if replacement is None:
            replacement = first_document(build_tree(self.store.all_nodes()))
            self.selection.active_id = replacement.id if replacement else None
        self.events.tree_changed(self.store.all_nodes())
        if self.selection.active_id != previous:
            self.events.active_changed(replacement, skip_abandon_prompt=True)

    # --- Create ---

    async def create(
        self,
        title: str,
        is_folder: bool = False,
        parent_id: str = ROOT_ID,
        content: str | None = None,
    ) -> Node:
        """Create a folder or document. A new document becomes the active one."""
        try:
            node = await self._create(title, is_folder, parent_id, content)
        except TreeError as e:
            self.report_failure(MutationKind.CREATE, e)
            raise
        self.history.push(CreateEntry(node_id=node.id))
        logger.info("Created {} {!r} ({})", "folder" if is_folder else "document", node.title, node.id)
        self._publish()
        if node.is_document:
            self.selection.active_id = node.id
            self.events.active_changed(node, skip_abandon_prompt=False)
        return node

    async def _create(
        self, title: str, is_folder: bool, parent_id: str, content: str | None
    ) -> Node:
        title = validate_title(title)
        lock_ids = [] if parent_id == ROOT_ID else [parent_id]
        async with self._locked(lock_ids):
            if parent_id != ROOT_ID:
                parent = self.store.require(parent_id)
                if not parent.is_folder:
                    msg = f"{parent.title!r} is a document and cannot contain other nodes"
                    raise ValidationError(msg)
            ensure_unique_folder_title(
                self.store, parent_id=parent_id, title=title, is_folder=is_folder
            )
            node = await self.backend.create_node(
                title, is_folder, parent_id, None if is_folder else (content or "")
            )
            self._commit(node)
            return node

    # --- Rename ---

    async def rename(self, node_id: str, new_title: str) -> Node:
        """Rename a node. Renaming to the current title records nothing."""
        try:
            change = await self._set_title(node_id, new_title)
        except TreeError as e:
            self.report_failure(MutationKind.RENAME, e)
            raise
        if change is None:
            return self.store.require(node_id)
        old, new = change
        self.history.push(RenameEntry(node_id=node_id, old_title=old.title, new_title=new.title))
        logger.info("Renamed {!r} to {!r}", old.title, new.title)
        self._publish()
        return new

    async def _set_title(self, node_id: str, title: str) -> tuple[Node, Node] | None:
        title = validate_title(title)
        async with self._locked([node_id]):
            node = self.store.require(node_id)
            if node.title == title:
                return None
            ensure_unique_folder_title(
                self.store,
                parent_id=node.parent_id,
                title=title,
                is_folder=node.is_folder,
                exclude_id=node_id,
            )
            patch = NodePatch(title=title)
            with self.store.pending.track([node_id], MutationKind.RENAME, patch):
                updated = await self.backend.update_node(node_id, patch)
            self._commit(updated)
            return node, updated

    # --- Move ---

    async def move(self, node_id: str, parent_id: str, sort_order: float) -> Node:
        """Move a node under ``parent_id`` with the given sort key.

        Raises:
            CycleError: ``parent_id`` is the node itself or one of its descendants.
            ValidationError: The parent is a document, or holds a folder of the same name.
            NotFoundError: Either node is gone.
        """
        try:
            change = await self._relocate(node_id, parent_id, sort_order)
        except TreeError as e:
            self.report_failure(MutationKind.MOVE, e)
            raise
        if change is None:
            return self.store.require(node_id)
        old, new = change
        self.history.push(
            MoveEntry(
                node_id=node_id,
                old_parent_id=old.parent_id,
                old_sort_order=old.sort_order,
                new_parent_id=new.parent_id,
                new_sort_order=new.sort_order,
            )
        )
        logger.info("Moved {!r} to parent {!r}", new.title, new.parent_id)
        self._publish()
        return new

    async def _relocate(
        self, node_id: str, parent_id: str, sort_order: float
    ) -> tuple[Node, Node] | None:
        # The destination chain is locked too, so two crossing moves cannot
        # both pass the cycle check.
        lock_ids = [node_id]
        if parent_id != ROOT_ID:
            lock_ids += [parent_id, *self.store.ancestors_of(parent_id)]
        async with self._locked(lock_ids):
            node = self.store.require(node_id)
            self.relocation.check_parent(node_id, parent_id)
            if node.parent_id == parent_id and node.sort_order == sort_order:
                return None
            if node.parent_id != parent_id:
                ensure_unique_folder_title(
                    self.store,
                    parent_id=parent_id,
                    title=node.title,
                    is_folder=node.is_folder,
                    exclude_id=node_id,
                )
            patch = NodePatch(parent_id=parent_id, sort_order=sort_order)
            with self.store.pending.track([node_id], MutationKind.MOVE, patch):
                updated = await self.backend.update_node(node_id, patch)
            self._commit(updated)
            return node, updated

    # --- Delete ---

    def deletion_impact(self, node_ids: Iterable[str]) -> DeletionImpact:
        """Describe what deleting ``node_ids`` would remove, descendants included."""
        ids = list(node_ids)
        for node_id in ids:
            self.store.require(node_id)
        roots = self.store.topmost(ids)
        affected: list[str] = []
        for root in roots:
            affected.extend(self.store.subtree_ids(root))
        documents = sum(1 for i in affected if not self.store.require(i).is_folder)
        return DeletionImpact(
            node_ids=tuple(roots),
            affected_ids=tuple(affected),
            descendant_count=len(affected) - len(roots),
            document_count=documents,
            includes_active=self.selection.active_id in affected,
        )

    async def delete(self, node_id: str, *, confirm: ConfirmDelete | None = None) -> DeleteOutcome | None:
        """Soft-delete a node and everything below it.

        Args:
            node_id: Node to delete.
            confirm: Shown the deletion impact before anything is sent;
                returning False cancels. May be a coroutine function.

        Returns:
            The outcome, or None if the user cancelled.
        """
        return await self.delete_many([node_id], confirm=confirm)

    async def delete_many(
        self, node_ids: Iterable[str], *, confirm: ConfirmDelete | None = None
    ) -> DeleteOutcome | None:
        """Soft-delete several nodes (a multi-selection) in one request.

        Ids nested under another given id are folded into their ancestor.
        """
        try:
            impact = self.deletion_impact(node_ids)
            if not impact.node_ids:
                msg = "Nothing to delete"
                raise NotFoundError(msg)
            if confirm is not None:
                answer = confirm(impact)
                if inspect.isawaitable(answer):
                    answer = await answer
                if not answer:
                    logger.info("Delete of {} node(s) cancelled", len(impact.affected_ids))
                    return None
            entries, outcome = await self._soft_delete(impact.node_ids)
        except TreeError as e:
            self.report_failure(MutationKind.DELETE, e)
            raise
        self.history.push(entries[0] if len(entries) == 1 else GroupEntry(entries=tuple(entries)))
        logger.info("Deleted {} node(s)", len(outcome.deleted_ids))
        self._publish(outcome)
        return outcome

    async def _soft_delete(self, roots: Sequence[str]) -> tuple[list[DeleteEntry], DeleteOutcome]:
        lock_ids: list[str] = []
        for root in roots:
            lock_ids.extend(self.store.subtree_ids(root))
        async with self._locked(lock_ids):
            entries = [
                DeleteEntry(node_id=root, affected_ids=tuple(self.store.subtree_ids(root)))
                for root in roots
            ]
            affected = [i for entry in entries for i in entry.affected_ids]
            with self.store.pending.track(affected, MutationKind.DELETE, NodePatch(deleted=True)):
                if len(affected) == 1:
                    await self.backend.delete_node(affected[0])
                else:
                    await self.backend.batch_delete_nodes(affected)

            active_id = self.selection.active_id
            anchor = next((e.node_id for e in entries if active_id in e.affected_ids), roots[0])
            former_parent = self.store.require(anchor).parent_id
            return entries, self._apply_deletion(affected, former_parent)

    def _apply_deletion(self, affected: Sequence[str], former_parent: str) -> DeleteOutcome:
        """Remove confirmed-deleted nodes locally and reselect if needed.

        Listeners are not notified here; the caller publishes the outcome.
        """
        displaced = self.selection.active_id in affected
        self.store.mark_deleted(affected, deleted_at=int(self.clock()))
        for node_id in affected:
            node = self.store.get(node_id)
            if node is not None:
                self.cache.put(node)
        self.selection.prune()

        if displaced:
            replacement = self._replacement_active(former_parent)
            self.selection.active_id = replacement.id if replacement else None
            logger.debug("Active document deleted; now {!r}", self.selection.active_id)
        else:
            replacement = self.store.live(self.selection.active_id) if self.selection.active_id else None
        return DeleteOutcome(deleted_ids=tuple(affected), active=replacement, active_changed=displaced)

    def _replacement_active(self, former_parent: str) -> Node | None:
        """First sibling document under the former parent, else the first document anywhere."""
        for node in self.store.children_of(former_parent):
            if node.is_document:
                return node
        return first_document(build_tree(self.store.all_nodes()))

    async def _restore(self, node_ids: Sequence[str]) -> None:
        async with self._locked(node_ids):
            known = [self.store.get(node_id) for node_id in node_ids]
            missing = [i for i, node in zip(node_ids, known, strict=True) if node is None]
            if missing:
                msg = f"Node {missing[0]!r} was purged and cannot be restored"
                raise NotFoundError(msg)
            root = known[0]
            if root is None:
                msg = "Nothing to restore"
                raise NotFoundError(msg)
            if root.parent_id != ROOT_ID:
                self.store.require(root.parent_id)
            ensure_unique_folder_title(
                self.store,
                parent_id=root.parent_id,
                title=root.title,
                is_folder=root.is_folder,
                exclude_id=root.id,
            )

            patch = NodePatch(deleted=False)
            restored: list[Node] = []
            with self.store.pending.track(node_ids, MutationKind.RESTORE, patch):
                try:
                    for node_id in node_ids:
                        restored.append(await self.backend.update_node(node_id, patch))
                except TreeError as e:
                    if isinstance(e, NotFoundError):
                        purged = node_ids[len(restored)]
                        self.store.discard([purged])
                        self.cache.evict(purged)
                        logger.warning("Node {!r} was purged by the store", purged)
                    if restored:
                        logger.warning(
                            "Restore interrupted after {} of {} node(s); reload to resync",
                            len(restored),
                            len(node_ids),
                        )
                    raise
            for node in restored:
                self._commit(node)

    # --- Undo / redo ---

    async def undo(self) -> HistoryEntry | None:
        """Revert the latest recorded mutation."""
        try:
            return await self.history.undo()
        except TreeError as e:
            self.report_failure(MutationKind.UNDO, e)
            raise

    async def redo(self) -> HistoryEntry | None:
        """Re-apply the latest undone mutation."""
        try:
            return await self.history.redo()
        except TreeError as e:
            self.report_failure(MutationKind.REDO, e)
            raise

    async def apply_entry(self, entry: HistoryEntry, *, reverse: bool) -> None:
        """Replay an entry (or its inverse) without recording new history."""
        outcome = await self._replay(entry, reverse=reverse)
        self._publish(outcome)

    async def _replay(self, entry: HistoryEntry, *, reverse: bool) -> DeleteOutcome | None:
        match entry:
            case CreateEntry(node_id=node_id):
                if reverse:
                    return (await self._soft_delete([node_id]))[1]
                await self._restore([node_id])
            case DeleteEntry(node_id=node_id, affected_ids=affected_ids):
                if reverse:
                    await self._restore(affected_ids)
                else:
                    return (await self._soft_delete([node_id]))[1]
            case RenameEntry():
                await self._set_title(entry.node_id, entry.old_title if reverse else entry.new_title)
            case MoveEntry():
                if reverse:
                    await self._relocate(entry.node_id, entry.old_parent_id, entry.old_sort_order)
                else:
                    await self._relocate(entry.node_id, entry.new_parent_id, entry.new_sort_order)
            case GroupEntry(entries=entries):
                deleted: list[str] = []
                displaced = False
                for member in reversed(entries) if reverse else entries:
                    outcome = await self._replay(member, reverse=reverse)
                    if outcome is not None:
                        deleted.extend(outcome.deleted_ids)
                        displaced = displaced or outcome.active_changed
                if not deleted:
                    return None
                active_id = self.selection.active_id
                return DeleteOutcome(
                    deleted_ids=tuple(deleted),
                    active=self.store.live(active_id) if active_id else None,
                    active_changed=displaced,
                )
        return None

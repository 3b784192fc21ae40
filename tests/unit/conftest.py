"""Shared test fixtures."""

import pytest

from notetree.core.store.node_store import NodeStore
from notetree.manager import DocumentTreeManager
from tests.unit.fakes import ABC_NODES, NESTED_NODES, FakeBackend, RecordingListener


@pytest.fixture
def abc_store() -> NodeStore:
    return NodeStore(ABC_NODES)


@pytest.fixture
def nested_store() -> NodeStore:
    return NodeStore(NESTED_NODES)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(NESTED_NODES)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def manager(backend: FakeBackend, listener: RecordingListener) -> DocumentTreeManager:
    """Return a manager over the nested tree; call ``load`` before use."""
    mgr = DocumentTreeManager(backend, clock=lambda: 100.0)
    mgr.subscribe(listener)
    return mgr

"""tests for workspace persistence."""

import json
from unittest.mock import MagicMock

import pytest

from treekeeper.core.errors import EmptyName, StorageUnavailable
from treekeeper.core.models import Node, TreeState
from treekeeper.core.storage import MemoryStorage
from treekeeper.core.workspaces import PersistenceContext, WorkspacePersistenceEngine


class CountingStorage(MemoryStorage):
    """memory storage that records every write."""

    def __init__(self):
        super().__init__()
        self.writes = []

    def set(self, key, value):
        self.writes.append(key)
        super().set(key, value)


class PayloadlessStorage(MemoryStorage):
    """memory storage that refuses workspace payloads but keeps the index."""

    def set(self, key, value):
        if key.startswith("tree-editor-workspace-"):
            raise StorageUnavailable(key)
        super().set(key, value)


def stored(storage, key):
    return json.loads(storage.get(key))


def titled(state, title):
    state = state.copy()
    state.tree_title = title
    return state


class TestKeys:
    def test_namespaced_keys(self, context):
        assert context.index_key == "tree-editor-workspaces"
        assert context.workspace_key("w1") == "tree-editor-workspace-w1"


class TestCreate:
    """tests for create_workspace."""

    def test_written_immediately(self, engine, storage, scheduler, sample_state):
        workspace = engine.create_workspace("Family", sample_state)
        assert scheduler.keys() == []
        payload = stored(storage, engine.context.workspace_key(workspace.id))
        assert payload["name"] == "Family"
        assert payload["treeTitle"] == "Family"
        assert len(payload["tree"]) == 2
        assert {"id", "createdAt", "updatedAt", "nodeTypes"} <= set(payload)

    def test_first_becomes_active(self, engine):
        first = engine.create_workspace("one")
        engine.create_workspace("two")
        assert engine.active_workspace_id == first.id
        assert [w.name for w in engine.list_workspaces()] == ["one", "two"]

    def test_empty_name(self, engine):
        with pytest.raises(EmptyName):
            engine.create_workspace("  ")

    def test_initial_state_copied(self, engine, sample_state):
        workspace = engine.create_workspace("x", sample_state)
        workspace.state.tree.clear()
        assert len(sample_state.tree) == 2


class TestSave:
    """tests for debounced saves."""

    def test_burst_gives_one_write_of_last_state(self, sample_state, scheduler):
        storage = CountingStorage()
        engine = WorkspacePersistenceEngine(PersistenceContext(storage, scheduler))
        workspace = engine.create_workspace("w", sample_state)
        storage.writes.clear()
        key = engine.context.workspace_key(workspace.id)

        for i in range(10):
            engine.save(workspace.id, titled(sample_state, f"title {i}"))
            scheduler.advance(0.5)
        assert key not in storage.writes
        assert engine.pending_saves() == [workspace.id]

        scheduler.advance(1.0)
        assert storage.writes.count(key) == 1
        assert stored(storage, key)["treeTitle"] == "title 9"
        assert engine.pending_saves() == []

    def test_saved_state_is_frozen_at_schedule_time(self, engine, scheduler, storage, sample_state):
        workspace = engine.create_workspace("w", sample_state)
        state = titled(sample_state, "before")
        engine.save(workspace.id, state)
        state.tree_title = "after"
        scheduler.advance(1.0)
        assert stored(storage, engine.context.workspace_key(workspace.id))["treeTitle"] == "before"

    def test_name_follows_title(self, engine, scheduler, sample_state):
        workspace = engine.create_workspace("w", sample_state)
        engine.save(workspace.id, titled(sample_state, "Renamed tree"))
        scheduler.advance(1.0)
        summary = engine.list_workspaces()[0]
        assert summary.name == "Renamed tree"
        loaded = engine.load(workspace.id)
        assert loaded.name == "Renamed tree"
        assert loaded.created_at == workspace.created_at

    def test_updated_at_refreshed(self, context, scheduler, sample_state):
        ticks = iter(["t0", "t1", "t2"])
        engine = WorkspacePersistenceEngine(context, clock=lambda: next(ticks))
        workspace = engine.create_workspace("w", sample_state)
        engine.save(workspace.id, sample_state)
        scheduler.advance(1.0)
        loaded = engine.load(workspace.id)
        assert (loaded.created_at, loaded.updated_at) == ("t0", "t1")
        assert engine.list_workspaces()[0].updated_at == "t1"

    def test_workspaces_debounce_independently(self, engine, scheduler, sample_state):
        one = engine.create_workspace("one", sample_state)
        two = engine.create_workspace("two", sample_state)
        engine.save(one.id, titled(sample_state, "1"))
        scheduler.advance(0.5)
        engine.save(two.id, titled(sample_state, "2"))
        scheduler.advance(0.5)
        assert engine.load(one.id).state.tree_title == "1"
        assert engine.pending_saves() == [two.id]

    def test_flush_and_cancel(self, engine, scheduler, sample_state):
        workspace = engine.create_workspace("w", sample_state)
        engine.save(workspace.id, titled(sample_state, "flushed"))
        assert engine.flush() == 1
        assert engine.load(workspace.id).state.tree_title == "flushed"
        engine.save(workspace.id, titled(sample_state, "dropped"))
        engine.cancel_pending(workspace.id)
        scheduler.advance(5)
        assert engine.load(workspace.id).state.tree_title == "flushed"

    def test_save_after_delete_is_dropped(self, engine, scheduler, storage, sample_state):
        """a save still pending for a deleted workspace never recreates it."""
        workspace = engine.create_workspace("w", sample_state)
        assert engine.write(workspace.id, sample_state)
        engine.delete(workspace.id)
        assert not engine.write(workspace.id, sample_state)
        assert storage.get(engine.context.workspace_key(workspace.id)) is None


class TestLoad:
    """tests for load."""

    def test_missing(self, engine):
        assert engine.load("nope") is None

    def test_unparseable_is_absent(self, engine, storage):
        storage.set(engine.context.workspace_key("bad"), "{nope")
        assert engine.load("bad") is None

    def test_malformed_is_absent(self, engine, storage):
        storage.set(engine.context.workspace_key("bad"), json.dumps({"name": "no id"}))
        assert engine.load("bad") is None

    def test_roundtrip(self, engine, sample_state):
        workspace = engine.create_workspace("w", sample_state)
        assert engine.load(workspace.id).state == titled(sample_state, "w")

    def test_corrupt_index_is_empty(self, engine, storage):
        storage.set(engine.context.index_key, "[[[")
        assert engine.list_workspaces() == []


class TestInitialize:
    """tests for initialize."""

    def test_first_run_creates_default(self, engine, sample_state):
        workspace = engine.initialize(sample_state, "Default")
        assert workspace.name == "Default"
        assert workspace.state.tree == sample_state.tree
        assert engine.active_workspace_id == workspace.id
        assert len(engine.list_workspaces()) == 1

    def test_loads_recorded_active(self, engine):
        engine.create_workspace("one")
        two = engine.create_workspace("two")
        engine.set_active(two.id)
        assert engine.initialize().id == two.id

    def test_falls_back_to_first_loadable(self, engine, storage):
        one = engine.create_workspace("one")
        two = engine.create_workspace("two")
        engine.set_active(two.id)
        storage.remove(engine.context.workspace_key(two.id))
        assert engine.initialize().id == one.id
        assert engine.active_workspace_id == one.id

    def test_unknown_active_id_falls_back(self, engine, storage):
        one = engine.create_workspace("one")
        index = stored(storage, engine.context.index_key)
        index["activeWorkspaceId"] = "ghost"
        storage.set(engine.context.index_key, json.dumps(index))
        assert engine.initialize().id == one.id

    def test_nothing_loadable_creates_new(self, engine, storage):
        one = engine.create_workspace("one")
        storage.remove(engine.context.workspace_key(one.id))
        workspace = engine.initialize(None, "Fresh")
        assert workspace.id != one.id
        assert engine.active_workspace_id == workspace.id

    def test_deterministic(self, engine):
        engine.create_workspace("one")
        engine.create_workspace("two")
        assert engine.initialize().id == engine.initialize().id


class TestIndexOperations:
    """tests for rename, delete and set_active."""

    def test_rename_updates_index_and_title(self, engine):
        workspace = engine.create_workspace("old")
        assert engine.rename(workspace.id, " new ")
        assert engine.list_workspaces()[0].name == "new"
        assert engine.load(workspace.id).state.tree_title == "new"

    def test_rename_missing_and_empty(self, engine):
        workspace = engine.create_workspace("w")
        assert not engine.rename("nope", "x")
        with pytest.raises(EmptyName):
            engine.rename(workspace.id, "")

    def test_delete_active_hands_over(self, engine, storage):
        one = engine.create_workspace("one")
        two = engine.create_workspace("two")
        assert engine.delete(one.id)
        assert engine.active_workspace_id == two.id
        assert storage.get(engine.context.workspace_key(one.id)) is None

    def test_delete_last_leaves_none_active(self, engine):
        one = engine.create_workspace("one")
        engine.delete(one.id)
        assert engine.active_workspace_id is None
        assert engine.list_workspaces() == []

    def test_delete_inactive_keeps_active(self, engine):
        one = engine.create_workspace("one")
        two = engine.create_workspace("two")
        engine.delete(two.id)
        assert engine.active_workspace_id == one.id

    def test_delete_and_activate_missing(self, engine):
        assert not engine.delete("nope")
        assert not engine.set_active("nope")

    def test_delete_cancels_pending_save(self, engine, scheduler, sample_state):
        workspace = engine.create_workspace("w", sample_state)
        engine.save(workspace.id, sample_state)
        engine.delete(workspace.id)
        assert scheduler.keys() == []


class TestStorageFailure:
    """storage failures degrade to absence instead of raising."""

    @pytest.fixture
    def broken(self, scheduler):
        backend = MagicMock()
        backend.get.side_effect = StorageUnavailable("k", OSError("disk gone"))
        backend.set.side_effect = StorageUnavailable("k", OSError("disk gone"))
        backend.remove.side_effect = StorageUnavailable("k", OSError("disk gone"))
        return WorkspacePersistenceEngine(PersistenceContext(backend, scheduler))

    def test_reads_are_absent(self, broken):
        assert broken.load("w") is None
        assert broken.list_workspaces() == []
        assert broken.active_workspace_id is None

    def test_initialize_still_returns_workspace(self, broken, sample_state):
        workspace = broken.initialize(sample_state, "Offline")
        assert workspace.name == "Offline"
        assert workspace.state.tree == sample_state.tree

    def test_failed_save_is_logged(self, broken, scheduler, sample_state, caplog):
        broken.save("w", sample_state)
        scheduler.advance(1.0)
        assert broken.pending_saves() == []
        assert "could not read workspace index" in caplog.text

    def test_failed_write_keeps_going(self, sample_state, scheduler, caplog):
        """a failing set after a good read reports False and logs."""
        storage = MemoryStorage()
        engine = WorkspacePersistenceEngine(PersistenceContext(storage, scheduler))
        workspace = engine.create_workspace("w", sample_state)
        storage.set = MagicMock(side_effect=StorageUnavailable("k"))
        assert not engine.write(workspace.id, TreeState(tree=[Node.create("x")], tree_title="w"))
        assert "could not write workspace" in caplog.text

    def test_unstored_workspace_not_indexed(self, sample_state, scheduler, caplog):
        """an index entry never points at a payload that was not written."""
        storage = PayloadlessStorage()
        engine = WorkspacePersistenceEngine(PersistenceContext(storage, scheduler))
        workspace = engine.create_workspace("Lost", sample_state)
        assert workspace.name == "Lost"
        assert engine.list_workspaces() == []
        assert engine.active_workspace_id is None
        assert "was not stored" in caplog.text

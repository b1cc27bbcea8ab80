"""
Tests for TreeStore - Thread-safe Workspace Storage

Tests cover:
1. Create/get/require/delete and listing
2. apply() swapping results of pure operations
3. Undo history and labelled snapshots
4. Lifecycle hooks (including failing hooks)
5. Thread safety of concurrent applies
"""

import threading
from datetime import datetime

import pytest

from asset_registry.core.tree import add_storey, create_object, rename_node, set_property
from asset_registry.core.tree_store import LifecycleHook, TreeStore, WorkspaceMetadata
from asset_registry.errors import ConcurrentModification, StructuralError
from asset_registry.models.tree import ROOT_ID, NodeKind, TreeNode


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Store with one starter workspace."""
    tree_store = TreeStore()
    tree_store.create("ws")
    return tree_store


@pytest.fixture
def tracking_hook():
    """Hook that tracks all lifecycle events."""
    class TrackingHook(LifecycleHook):
        def __init__(self):
            self.created = []
            self.updated = []
            self.deleted = []

        def on_created(self, workspace_id, snapshot, metadata):
            self.created.append(workspace_id)

        def on_updated(self, workspace_id, old, new, metadata):
            self.updated.append((workspace_id, old, new))

        def on_deleted(self, workspace_id, snapshot, metadata):
            self.deleted.append(workspace_id)

    return TrackingHook()


# ============================================================================
# CRUD
# ============================================================================

class TestTreeStoreCRUD:

    def test_create_defaults_to_starter_tree(self):
        tree_store = TreeStore()
        metadata = tree_store.create("ws", tags={"site": "north"})

        assert isinstance(metadata, WorkspaceMetadata)
        assert isinstance(metadata.created_at, datetime)
        assert metadata.revision == 0
        assert metadata.tags == {"site": "north"}
        assert tree_store.require("ws")["storey_1"].kind == NodeKind.STOREY

    def test_create_repairs_input(self):
        tree_store = TreeStore()
        tree_store.create("ws", {"x": TreeNode(id="x", kind=NodeKind.OBJECT, parent_id="ghost")})

        snapshot = tree_store.require("ws")
        assert ROOT_ID in snapshot
        assert snapshot["x"].parent_id is None

    def test_create_duplicate_raises_keyerror(self, store):
        with pytest.raises(KeyError, match="already exists"):
            store.create("ws")

    def test_get_and_require_missing(self, store):
        assert store.get("nope") is None
        with pytest.raises(KeyError, match="not found"):
            store.require("nope")

    def test_delete(self, store):
        assert store.delete("ws") is True
        assert store.delete("ws") is False
        assert "ws" not in store

    def test_listing(self, store):
        store.create("other", {})
        assert sorted(store.list_ids()) == ["other", "ws"]
        assert len(store) == 2
        assert sorted(store) == ["other", "ws"]
        assert store.exists("other")


# ============================================================================
# apply / replace
# ============================================================================

class TestApply:

    def test_apply_returns_extra_value(self, store):
        storey_id = store.apply("ws", add_storey, "building_1")

        snapshot = store.require("ws")
        assert snapshot[storey_id].parent_id == "building_1"
        assert store.get_metadata("ws").revision == 1

    def test_apply_plain_snapshot_operation(self, store):
        result = store.apply("ws", rename_node, "site_1", "North")

        assert result is None
        assert store.require("ws")["site_1"].name == "North"

    def test_unchanged_result_is_not_swapped(self, store):
        store.apply("ws", lambda s: s)
        assert store.get_metadata("ws").revision == 0
        assert store.undo("ws") is False

    def test_failing_operation_leaves_workspace_untouched(self, store):
        before = store.require("ws")
        with pytest.raises(StructuralError):
            store.apply("ws", rename_node, "missing", "x")
        assert store.require("ws") is before

    def test_old_snapshot_is_never_modified(self, store):
        before = store.require("ws")
        store.apply("ws", rename_node, "site_1", "North")
        assert before["site_1"].name == "Site A"

    def test_replace_repairs(self, store):
        store.replace("ws", {})
        assert list(store.require("ws")) == [ROOT_ID]

    def test_replace_at_expected_revision(self, store):
        snapshot, revision = store.read("ws")
        metadata = store.replace("ws", rename_node(snapshot, "site_1", "North"), expected_revision=revision)

        assert metadata.revision == revision + 1
        assert store.require("ws")["site_1"].name == "North"

    def test_replace_after_concurrent_edit_raises(self, store):
        snapshot, revision = store.read("ws")
        store.apply("ws", rename_node, "building_1", "Pump House")

        with pytest.raises(ConcurrentModification) as exc_info:
            store.replace("ws", rename_node(snapshot, "site_1", "North"), expected_revision=revision)

        assert exc_info.value.expected_revision == revision
        assert exc_info.value.actual_revision == revision + 1
        assert store.require("ws")["building_1"].name == "Pump House"
        assert store.require("ws")["site_1"].name == "Site A"


# ============================================================================
# Undo and snapshots
# ============================================================================

class TestHistory:

    def test_undo(self, store):
        store.apply("ws", rename_node, "site_1", "One")
        store.apply("ws", rename_node, "site_1", "Two")

        assert store.undo("ws") is True
        assert store.require("ws")["site_1"].name == "One"
        assert store.undo("ws") is True
        assert store.require("ws")["site_1"].name == "Site A"
        assert store.undo("ws") is False

    def test_history_is_bounded(self):
        tree_store = TreeStore(max_history=2)
        tree_store.create("ws")
        for i in range(5):
            tree_store.apply("ws", rename_node, "site_1", f"Site {i}")

        assert tree_store.undo("ws") is True
        assert tree_store.undo("ws") is True
        assert tree_store.undo("ws") is False
        assert tree_store.require("ws")["site_1"].name == "Site 2"

    def test_snapshot_and_restore(self, store):
        saved = store.create_snapshot("ws", "before")
        object_id = store.apply("ws", create_object, "storey_1", "P-1")
        store.apply("ws", set_property, object_id, "Pset_AssetCustom", "Flow", "12.5")

        store.restore_snapshot(saved)

        assert object_id not in store.require("ws")
        assert [s.label for s in store.list_snapshots("ws")] == ["before"]


# ============================================================================
# Hooks
# ============================================================================

class TestHooks:

    def test_events(self, tracking_hook):
        tree_store = TreeStore()
        tree_store.add_hook(tracking_hook)

        tree_store.create("ws")
        tree_store.apply("ws", rename_node, "site_1", "North")
        tree_store.delete("ws")

        assert tracking_hook.created == ["ws"]
        assert len(tracking_hook.updated) == 1
        _, old, new = tracking_hook.updated[0]
        assert old["site_1"].name == "Site A"
        assert new["site_1"].name == "North"
        assert tracking_hook.deleted == ["ws"]

    def test_failing_hook_is_swallowed(self, store):
        class BrokenHook(LifecycleHook):
            def on_updated(self, workspace_id, old, new, metadata):
                raise RuntimeError("boom")

        store.add_hook(BrokenHook())
        store.apply("ws", rename_node, "site_1", "North")
        assert store.require("ws")["site_1"].name == "North"

    def test_remove_hook(self, store, tracking_hook):
        store.add_hook(tracking_hook)
        store.remove_hook(tracking_hook)
        store.apply("ws", rename_node, "site_1", "North")
        assert tracking_hook.updated == []


class TestThreadSafety:

    def test_concurrent_applies_keep_every_object(self, store):
        def worker(n):
            for i in range(10):
                store.apply("ws", create_object, "storey_1", f"T{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        group = store.require("ws")["storey_1__IfcBuildingElementProxy"]
        assert len(group.children) == 40

"""
Tests for tree repair and read-only queries.

Tests cover:
1. Repair of empty, dangling and self-referencing input
2. Idempotence
3. Ancestry, containment and display order queries
4. Graph view, reachability and nesting checks
"""

import pytest

from asset_registry.core.tree import (
    ancestor_of_kind,
    existing_tags,
    find_nesting_violations,
    object_range,
    objects_under_storey,
    project_of,
    repair,
    storey_of,
    to_graph,
    unreachable_ids,
    visible_order,
)
from asset_registry.models.tree import ROOT_ID, NodeKind, TreeNode


def node(node_id, kind, parent=None, children=(), **kwargs):
    return TreeNode(id=node_id, kind=kind, parent_id=parent, children=tuple(children), **kwargs)


class TestRepair:
    """Structural repair of bulk-loaded snapshots."""

    def test_empty_input_yields_bare_root(self):
        repaired = repair({})

        assert list(repaired) == [ROOT_ID]
        assert repaired[ROOT_ID].kind == NodeKind.ROOT
        assert repaired[ROOT_ID].children == ()

    def test_dangling_parent_is_cleared(self):
        x = node("x", NodeKind.OBJECT, parent="ghost", name="X", tag="T-1")
        repaired = repair({"x": x})

        assert repaired["x"].parent_id is None
        assert repaired["x"].name == "X"
        assert repaired["x"].tag == "T-1"

    def test_children_filtered(self):
        snapshot = {
            ROOT_ID: node(ROOT_ID, NodeKind.ROOT, children=["p"]),
            "p": node("p", NodeKind.PROJECT, parent=ROOT_ID, children=["p", "s", "missing", "s"]),
            "s": node("s", NodeKind.SITE, parent="p"),
        }
        repaired = repair(snapshot)

        assert repaired["p"].children == ("s",)

    def test_root_kind_and_parent_coerced(self):
        snapshot = {ROOT_ID: node(ROOT_ID, NodeKind.PROJECT, parent="elsewhere")}
        repaired = repair(snapshot)

        assert repaired[ROOT_ID].kind == NodeKind.ROOT
        assert repaired[ROOT_ID].parent_id is None

    def test_root_children_restricted_to_projects(self):
        snapshot = {
            ROOT_ID: node(ROOT_ID, NodeKind.ROOT, children=["p", "s"]),
            "p": node("p", NodeKind.PROJECT, parent=ROOT_ID),
            "s": node("s", NodeKind.SITE, parent=ROOT_ID),
        }
        assert repair(snapshot)[ROOT_ID].children == ("p",)

    def test_root_children_rederived_from_projects(self):
        snapshot = {
            ROOT_ID: node(ROOT_ID, NodeKind.ROOT, children=["s"]),
            "s": node("s", NodeKind.SITE),
            "p1": node("p1", NodeKind.PROJECT),
            "p2": node("p2", NodeKind.PROJECT),
        }
        assert repair(snapshot)[ROOT_ID].children == ("p1", "p2")

    def test_input_not_modified(self):
        x = node("x", NodeKind.OBJECT, parent="ghost")
        snapshot = {"x": x}
        repair(snapshot)

        assert list(snapshot) == ["x"]
        assert snapshot["x"] is x

    def test_healthy_snapshot_returned_as_is(self, seeded):
        assert repair(seeded) is seeded

    @pytest.mark.parametrize("snapshot", [
        {},
        {"x": TreeNode(id="x", kind=NodeKind.OBJECT, parent_id="ghost", children=("x", "y"))},
        {
            ROOT_ID: TreeNode(id=ROOT_ID, kind=NodeKind.SITE, children=("a", "a", "b")),
            "a": TreeNode(id="a", kind=NodeKind.PROJECT),
        },
        {ROOT_ID: TreeNode(id=ROOT_ID, kind=NodeKind.PROJECT)},
        {
            ROOT_ID: TreeNode(id=ROOT_ID, kind=NodeKind.PROJECT, parent_id="p"),
            "p": TreeNode(id="p", kind=NodeKind.PROJECT, children=(ROOT_ID,)),
        },
    ])
    def test_idempotent(self, snapshot):
        once = repair(snapshot)
        assert repair(once) == once

    def test_children_resolve_after_repair(self):
        snapshot = {
            "a": node("a", NodeKind.SITE, children=["a", "b", "zzz"]),
            "b": node("b", NodeKind.BUILDING, parent="a", children=["a"]),
        }
        repaired = repair(snapshot)
        for node_id, item in repaired.items():
            for child_id in item.children:
                assert child_id in repaired
                assert child_id != node_id

    def test_root_of_wrong_kind_does_not_list_itself(self):
        repaired = repair({ROOT_ID: TreeNode(id=ROOT_ID, kind=NodeKind.PROJECT)})

        assert repaired[ROOT_ID].kind == NodeKind.ROOT
        assert repaired[ROOT_ID].children == ()
        assert repair(repaired) == repaired


class TestQueries:
    """Read-only queries over the starter tree."""

    def test_ancestor_of_kind(self, plant):
        snapshot, valve_id = plant
        assert ancestor_of_kind(snapshot, valve_id, NodeKind.BUILDING) == "building_1"
        assert ancestor_of_kind(snapshot, valve_id, NodeKind.OBJECT) == valve_id
        assert ancestor_of_kind(snapshot, "project", NodeKind.STOREY) is None

    def test_ancestor_of_kind_survives_cycles(self):
        snapshot = {
            "a": node("a", NodeKind.SITE, parent="b"),
            "b": node("b", NodeKind.SITE, parent="a"),
        }
        assert ancestor_of_kind(snapshot, "a", NodeKind.PROJECT) is None

    def test_project_of_falls_back_to_first_project(self, seeded):
        detached = {**seeded, "loose": node("loose", NodeKind.OBJECT)}
        assert project_of(detached, "loose") == "project"

    def test_storey_of(self, plant):
        snapshot, valve_id = plant
        assert storey_of(snapshot, valve_id) == "storey_1"
        assert storey_of(snapshot, "storey_1") == "storey_1"
        assert storey_of(snapshot, "building_1") is None

    def test_objects_under_storey(self, plant):
        snapshot, valve_id = plant
        assert [o.id for o in objects_under_storey(snapshot, "storey_1")] == [valve_id]
        assert objects_under_storey(snapshot, "missing") == []

    def test_visible_order_is_preorder(self, plant):
        snapshot, valve_id = plant
        order = visible_order(snapshot)

        assert order[:5] == [ROOT_ID, "project", "site_1", "building_1", "storey_1"]
        assert order[-1] == valve_id
        assert order.index("storey_1__IfcValve") < order.index(valve_id)

    def test_object_range(self, plant):
        snapshot, valve_id = plant
        assert object_range(snapshot, "storey_1", valve_id) == [valve_id]
        assert object_range(snapshot, "nope", valve_id) == []

    def test_existing_tags(self, plant):
        snapshot, _ = plant
        assert existing_tags(snapshot) == {"V-1"}


class TestIntegrityChecks:

    def test_graph_has_kind_attributes(self, seeded):
        graph = to_graph(seeded)
        assert graph.nodes["site_1"]["kind"] == "Site"
        assert graph.has_edge("building_1", "storey_1")

    def test_unreachable_ids(self, seeded):
        snapshot = {**seeded, "orphan": node("orphan", NodeKind.OBJECT)}
        assert unreachable_ids(snapshot) == {"orphan"}
        assert unreachable_ids(seeded) == set()

    def test_nesting_violations(self, seeded):
        snapshot = dict(seeded)
        snapshot["site_1"] = snapshot["site_1"].model_copy(
            update={"children": snapshot["site_1"].children + ("storey_1",)}
        )
        assert find_nesting_violations(snapshot) == [("site_1", "storey_1")]
        assert find_nesting_violations(seeded) == []

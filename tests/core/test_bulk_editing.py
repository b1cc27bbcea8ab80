"""Tests for selection-wide edits: batch create, reclassify, rename, properties and tags."""

import pytest

from asset_registry.core.bulk import (
    apply_tags,
    bulk_add_property,
    bulk_find_replace_names,
    bulk_set_classification,
    create_objects_batch,
    token_context_for,
)
from asset_registry.core.tree import create_object, rename_node
from asset_registry.errors import PatternExhausted, StructuralError, ValidationError
from asset_registry.models.tree import NodeKind, TreeNode
from asset_registry.patterns.tag_engine import CounterMode


class TestCreateObjectsBatch:
    """Batch creation in one storey."""

    def test_pump_tags_in_creation_order(self, seeded):
        snapshot, ids = create_objects_batch(
            seeded, "storey_1", 3, class_label="Pump", tag_pattern="{CLASS}-{N:3}", unique=False,
        )
        assert [snapshot[i].tag for i in ids] == ["PUMP-001", "PUMP-002", "PUMP-003"]
        assert [snapshot[i].name for i in ids] == ["Pump 1", "Pump 2", "Pump 3"]
        assert snapshot["storey_1__Pump"].children == tuple(ids)

    def test_untagged_batch(self, seeded):
        snapshot, ids = create_objects_batch(seeded, "storey_1", 2, class_label="IfcTank", name_pattern="T{N}")
        assert [snapshot[i].tag for i in ids] == [None, None]
        assert [snapshot[i].name for i in ids] == ["T1", "T2"]
        assert all(snapshot[i].class_label == "IfcTank" for i in ids)

    def test_count_below_one_creates_one(self, seeded):
        _, ids = create_objects_batch(seeded, "storey_1", 0)
        assert len(ids) == 1

    def test_blank_name_pattern_falls_back(self, seeded):
        snapshot, ids = create_objects_batch(seeded, "storey_1", 1, name_pattern="  ")
        assert snapshot[ids[0]].name == "Object 1"

    def test_unique_skips_existing_tags(self, plant):
        snapshot, _ = plant
        snapshot, _ = create_object(snapshot, "storey_1", "old", tag="TANK-1", class_label="IfcTank")
        snapshot, ids = create_objects_batch(
            snapshot, "storey_1", 2, class_label="IfcTank", tag_pattern="{CLASS}-{N}",
        )
        assert [snapshot[i].tag for i in ids] == ["TANK-2", "TANK-3"]

    def test_context_tokens_from_ancestors(self, seeded):
        snapshot, ids = create_objects_batch(
            seeded, "storey_1", 1, tag_pattern="{SITE}/{BLDG}/{STRY}/{CUSTOM}-{N}", custom="X 1",
        )
        assert snapshot[ids[0]].tag == "SiteA/BuildingA/Storey0/X1-1"

    def test_missing_storey(self, seeded):
        with pytest.raises(StructuralError):
            create_objects_batch(seeded, "missing", 1)


class TestBulkEdits:

    @pytest.fixture
    def three(self, seeded):
        snapshot, ids = create_objects_batch(seeded, "storey_1", 3, name_pattern="Pump {N}")
        return snapshot, ids

    def test_set_classification(self, three):
        snapshot, ids = three
        updated = bulk_set_classification(snapshot, ids[:2], "IfcPump")

        assert [updated[i].class_label for i in ids] == ["IfcPump", "IfcPump", "IfcBuildingElementProxy"]
        assert updated["storey_1__IfcPump"].children == tuple(ids[:2])

    def test_set_classification_skips_loose_objects(self, seeded):
        snapshot = {**seeded, "loose": TreeNode(id="loose", kind=NodeKind.OBJECT)}
        assert bulk_set_classification(snapshot, ["loose"], "IfcPump") is snapshot

    def test_find_replace_plain(self, three):
        snapshot, ids = three
        updated = bulk_find_replace_names(snapshot, ids, "Pump", "P")
        assert [updated[i].name for i in ids] == ["P 1", "P 2", "P 3"]

    def test_find_replace_regex(self, three):
        snapshot, ids = three
        updated = bulk_find_replace_names(snapshot, ids, r"Pump (\d)", r"P-10\1", use_regex=True)
        assert [updated[i].name for i in ids] == ["P-101", "P-102", "P-103"]

    def test_find_replace_invalid_regex_is_noop(self, three):
        snapshot, ids = three
        assert bulk_find_replace_names(snapshot, ids, "(", "x", use_regex=True) is snapshot

    def test_find_replace_empty_find(self, three):
        snapshot, ids = three
        with pytest.raises(ValidationError):
            bulk_find_replace_names(snapshot, ids, "", "x")

    def test_find_replace_ignores_non_objects(self, three):
        snapshot, ids = three
        snapshot = rename_node(snapshot, "storey_1", "Pump deck")
        updated = bulk_find_replace_names(snapshot, ["storey_1"] + ids, "Pump", "P")
        assert updated["storey_1"].name == "Pump deck"

    def test_add_property(self, three):
        snapshot, ids = three
        updated = bulk_add_property(snapshot, ids, "Vendor", "Acme", pset_name="Pset_Supply")
        assert all(updated[i].pset("Pset_Supply").props == {"Vendor": "Acme"} for i in ids)

    def test_add_property_blank_key(self, three):
        snapshot, ids = three
        with pytest.raises(ValidationError):
            bulk_add_property(snapshot, ids, " ", "x")


class TestApplyTags:

    def test_per_class_counters(self, seeded):
        snapshot, pumps = create_objects_batch(seeded, "storey_1", 2, class_label="IfcPump")
        snapshot, valves = create_objects_batch(snapshot, "storey_1", 2, class_label="IfcValve")
        selection = [pumps[0], valves[0], pumps[1], valves[1]]

        tagged = apply_tags(snapshot, selection, "{CLASS}-{N:2}", mode=CounterMode.PER_CLASS)
        assert [tagged[i].tag for i in selection] == ["PUMP-01", "VALVE-01", "PUMP-02", "VALVE-02"]

    def test_global_counter(self, seeded):
        snapshot, pumps = create_objects_batch(seeded, "storey_1", 1, class_label="IfcPump")
        snapshot, valves = create_objects_batch(snapshot, "storey_1", 1, class_label="IfcValve")

        tagged = apply_tags(snapshot, pumps + valves, "{CLASS}-{N}", start=10, step=5, mode=CounterMode.GLOBAL)
        assert [tagged[i].tag for i in pumps + valves] == ["PUMP-10", "VALVE-15"]

    def test_unique_against_current_tags(self, plant):
        snapshot, valve_id = plant
        snapshot, ids = create_objects_batch(snapshot, "storey_1", 1, class_label="IfcValve")

        tagged = apply_tags(snapshot, ids, "V-{N}")
        assert tagged[ids[0]].tag == "V-2"

    def test_exhaustion(self, plant):
        snapshot, valve_id = plant
        with pytest.raises(PatternExhausted):
            apply_tags(snapshot, [valve_id, valve_id], "FIXED")

    def test_blank_pattern(self, plant):
        snapshot, valve_id = plant
        with pytest.raises(ValidationError):
            apply_tags(snapshot, [valve_id], " ")

    def test_token_context(self, plant):
        snapshot, valve_id = plant
        tokens = token_context_for(snapshot, valve_id, custom="c")
        assert tokens.as_dict() == {
            "CLASS": "VALVE", "SITE": "SiteA", "BLDG": "BuildingA", "STRY": "Storey0", "CUSTOM": "c",
        }

"""Tests for snapshot persistence."""

import json

import pytest

from asset_registry.core.documents import add_document
from asset_registry.errors import FormatError
from asset_registry.models.tree import ROOT_ID, snapshot_from_dict, snapshot_to_dict
from asset_registry.persistence.snapshot_persistence import SnapshotPersistence
from asset_registry.storage.attachment_store import InMemoryAttachmentStore


@pytest.fixture
def persistence():
    return SnapshotPersistence()


class TestSnapshotPersistence:

    def test_round_trip(self, plant, persistence, tmp_path):
        snapshot, _ = plant
        path = persistence.save(snapshot, tmp_path / "nested" / "ws.json")

        assert path.exists()
        assert persistence.load(path) == snapshot

    def test_saved_layout_uses_camel_case(self, plant, persistence, tmp_path):
        snapshot, valve_id = plant
        snapshot, _ = add_document(snapshot, InMemoryAttachmentStore(), valve_id, "a.pdf", b"x")
        path = persistence.save(snapshot, tmp_path / "ws.json")
        raw = json.loads(path.read_text(encoding="utf-8"))

        assert raw[valve_id]["parentId"] == "storey_1__IfcValve"
        assert raw[valve_id]["ifcClass"] == "IfcValve"
        assert "blobKey" in raw[valve_id]["docs"][0]
        assert "tag" not in raw["site_1"]

    def test_output_is_deterministic(self, plant, persistence, tmp_path):
        snapshot, _ = plant
        first = persistence.save(snapshot, tmp_path / "a.json").read_text(encoding="utf-8")
        second = persistence.save(dict(reversed(list(snapshot.items()))), tmp_path / "b.json").read_text(encoding="utf-8")
        assert first == second

    def test_load_repairs(self, persistence, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text(json.dumps({
            "x": {"kind": "Object", "name": "X", "parentId": "ghost", "children": ["x", "nope"]},
        }), encoding="utf-8")

        snapshot = persistence.load(path)

        assert ROOT_ID in snapshot
        assert snapshot["x"].parent_id is None
        assert snapshot["x"].children == ()

    def test_invalid_json(self, persistence, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(FormatError, match="Invalid JSON"):
            persistence.load(path)

    def test_invalid_node_record(self, persistence, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"x": {"kind": "Spaceship"}}), encoding="utf-8")
        with pytest.raises(FormatError):
            persistence.load(path)

    def test_missing_file(self, persistence, tmp_path):
        with pytest.raises(FileNotFoundError):
            persistence.load(tmp_path / "missing.json")


class TestSnapshotDicts:

    def test_non_mapping_payload(self):
        with pytest.raises(FormatError):
            snapshot_from_dict(["root"])

    def test_id_taken_from_key(self):
        snapshot = snapshot_from_dict({"n1": {"kind": "Site", "name": "S"}})
        assert snapshot["n1"].id == "n1"

    def test_property_values_stringified(self):
        snapshot = snapshot_from_dict({
            "o": {"kind": "Object", "psets": [{"name": "P", "props": {"n": 5, "none": None}}]},
        })
        assert snapshot["o"].psets[0].props == {"n": "5", "none": ""}

    def test_to_dict_omits_none(self, seeded):
        data = snapshot_to_dict(seeded)
        assert "parentId" not in data[ROOT_ID]
        assert data["project"]["parentId"] == ROOT_ID

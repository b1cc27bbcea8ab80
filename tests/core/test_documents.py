"""Tests for document attachments on objects."""

import pytest

from asset_registry.core.documents import DEFAULT_MIME, add_document, delete_document, hydrate_documents
from asset_registry.errors import StructuralError, ValidationError
from asset_registry.models.tree import DocumentCategory
from asset_registry.storage.attachment_store import InMemoryAttachmentStore


class CountingStore(InMemoryAttachmentStore):
    """In-memory store recording every read."""

    def __init__(self):
        super().__init__()
        self.reads = []

    def get(self, key):
        self.reads.append(key)
        return super().get(key)


@pytest.fixture
def store():
    return CountingStore()


class TestAddDocument:

    def test_add_document(self, plant, store):
        snapshot, valve_id = plant
        updated, document = add_document(
            snapshot, store, valve_id, "datasheet.pdf", b"%PDF", category=DocumentCategory.DATASHEET,
        )

        assert updated[valve_id].docs == (document,)
        assert document.blob_key == f"doc:{document.id}"
        assert document.mime == "application/pdf"
        assert document.category == DocumentCategory.DATASHEET
        assert document.created_at > 0
        assert store.get(document.blob_key) == b"%PDF"
        assert snapshot[valve_id].docs == ()

    def test_unknown_extension_uses_default_mime(self, plant, store):
        snapshot, valve_id = plant
        _, document = add_document(snapshot, store, valve_id, "notes.zzzunknown", b"x")
        assert document.mime == DEFAULT_MIME

    def test_explicit_mime(self, plant, store):
        snapshot, valve_id = plant
        _, document = add_document(snapshot, store, valve_id, "scan", b"x", mime="image/png")
        assert document.mime == "image/png"

    def test_requires_object(self, seeded, store):
        with pytest.raises(StructuralError):
            add_document(seeded, store, "storey_1", "a.txt", b"x")
        assert len(store) == 0

    def test_blank_name(self, plant, store):
        snapshot, valve_id = plant
        with pytest.raises(ValidationError):
            add_document(snapshot, store, valve_id, "  ", b"x")


class TestDeleteAndHydrate:

    def test_delete_document(self, plant, store):
        snapshot, valve_id = plant
        snapshot, document = add_document(snapshot, store, valve_id, "a.txt", b"abc")
        updated = delete_document(snapshot, store, valve_id, document.id)

        assert updated[valve_id].docs == ()
        assert document.blob_key not in store

    def test_delete_unknown_document_is_noop(self, plant, store):
        snapshot, valve_id = plant
        assert delete_document(snapshot, store, valve_id, "nope") is snapshot

    def test_hydrate_reads_each_key_once(self, plant, store):
        snapshot, valve_id = plant
        snapshot, document = add_document(snapshot, store, valve_id, "a.txt", b"abc")
        # A second node sharing the same blob
        other = snapshot["storey_1"].model_copy(update={"docs": (document,)})
        snapshot = {**snapshot, "storey_1": other}

        loaded = hydrate_documents(snapshot, store)

        assert loaded == {document.blob_key: b"abc"}
        assert store.reads == [document.blob_key]

    def test_hydrate_skips_missing_blobs(self, plant, store):
        snapshot, valve_id = plant
        snapshot, document = add_document(snapshot, store, valve_id, "a.txt", b"abc")
        store.delete(document.blob_key)

        assert hydrate_documents(snapshot, store) == {}

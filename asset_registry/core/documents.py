"""Document attachments on asset objects.

Document metadata lives on the node (``TreeNode.docs``); the bytes live in an
``AttachmentStore`` under the document's ``blob_key``.
"""

import logging
import mimetypes
import time
from typing import Dict, Optional, Tuple

from ..errors import ValidationError
from ..models.tree import AssetDocument, DocumentCategory, NodeKind, Snapshot
from ..storage.attachment_store import AttachmentStore
from .identifiers import new_uuid
from .tree import require_node

logger = logging.getLogger(__name__)

DEFAULT_MIME = "application/octet-stream"


def add_document(
    snapshot: Snapshot,
    store: AttachmentStore,
    asset_id: str,
    name: str,
    data: bytes,
    mime: Optional[str] = None,
    category: DocumentCategory = DocumentCategory.OTHER,
) -> Tuple[Snapshot, AssetDocument]:
    """
    Attach a file to an object.

    The bytes are stored first; the node only gains the reference once the
    store accepted them.

    Args:
        snapshot: Tree snapshot
        store: Attachment store receiving the bytes
        asset_id: Object to attach to
        name: File name shown to users
        data: File contents
        mime: MIME type, guessed from ``name`` when omitted
        category: Document category

    Returns:
        Tuple of (new snapshot, created document reference)

    Raises:
        StructuralError: If ``asset_id`` is not an Object
        ValidationError: If ``name`` is blank
    """
    asset = require_node(snapshot, asset_id, NodeKind.OBJECT)
    file_name = (name or "").strip()
    if not file_name:
        raise ValidationError("Document name must not be blank")

    doc_id = str(new_uuid())
    blob_key = f"doc:{doc_id}"
    store.put(blob_key, data)

    document = AssetDocument(
        id=doc_id,
        name=file_name,
        category=category,
        mime=mime or mimetypes.guess_type(file_name)[0] or DEFAULT_MIME,
        created_at=int(time.time() * 1000),
        blob_key=blob_key,
    )
    updated = asset.model_copy(update={"docs": asset.docs + (document,)})
    logger.debug(f"Attached '{file_name}' to '{asset_id}' as {blob_key}")
    return {**snapshot, asset_id: updated}, document


def delete_document(snapshot: Snapshot, store: AttachmentStore, asset_id: str, doc_id: str) -> Snapshot:
    """Remove a document and its bytes; an unknown document id is a no-op."""
    asset = require_node(snapshot, asset_id, NodeKind.OBJECT)
    document = next((d for d in asset.docs if d.id == doc_id), None)
    if document is None:
        return snapshot

    store.delete(document.blob_key)
    updated = asset.model_copy(update={"docs": tuple(d for d in asset.docs if d.id != doc_id)})
    return {**snapshot, asset_id: updated}


def hydrate_documents(snapshot: Snapshot, store: AttachmentStore) -> Dict[str, bytes]:
    """
    Read the bytes of every document referenced in the snapshot.

    Each attachment is read at most once, even when several nodes share a
    key. Missing attachments are left out of the result.

    Returns:
        Mapping of blob key to bytes
    """
    loaded: Dict[str, bytes] = {}
    attempted = set()
    for node in snapshot.values():
        for document in node.docs:
            if document.blob_key in attempted:
                continue
            attempted.add(document.blob_key)
            data = store.get(document.blob_key)
            if data is None:
                logger.debug(f"Attachment '{document.blob_key}' is missing from the store")
                continue
            loaded[document.blob_key] = data
    return loaded

"""Attachment storage backends."""

from .attachment_store import AttachmentStore, DirectoryAttachmentStore, InMemoryAttachmentStore

__all__ = [
    "AttachmentStore",
    "DirectoryAttachmentStore",
    "InMemoryAttachmentStore",
]

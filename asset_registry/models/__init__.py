"""Data model for the hierarchical asset registry.

This module provides the Pydantic schemas for tree nodes and the helpers that
convert snapshots to and from plain JSON-ready data.
"""

from .tree import (
    ALLOWED_CHILD_KIND,
    DEFAULT_CLASS_LABEL,
    ROOT_ID,
    ROOT_NAME,
    SPATIAL_KINDS,
    AssetDocument,
    DocumentCategory,
    NodeKind,
    PropertySet,
    Snapshot,
    SourceRef,
    TreeNode,
    root_node,
    seed_snapshot,
    snapshot_from_dict,
    snapshot_to_dict,
)

__all__ = [
    "ALLOWED_CHILD_KIND",
    "DEFAULT_CLASS_LABEL",
    "ROOT_ID",
    "ROOT_NAME",
    "SPATIAL_KINDS",
    "AssetDocument",
    "DocumentCategory",
    "NodeKind",
    "PropertySet",
    "Snapshot",
    "SourceRef",
    "TreeNode",
    "root_node",
    "seed_snapshot",
    "snapshot_from_dict",
    "snapshot_to_dict",
]

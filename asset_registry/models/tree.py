"""Spatial tree data model for the asset registry.

This module provides the Pydantic schemas for the registry's single entity,
the tree node, together with its attached property sets, document references
and import provenance.

Architecture Principle:
    Nodes live in an id-keyed mapping (an arena) rather than a pointer graph.
    A snapshot is a plain ``Dict[str, TreeNode]``; every node is frozen, so
    operations build new mappings that share unchanged nodes with their input.

Serialization:
    Field aliases follow the camelCase keys written by the browser workspace
    (``parentId``, ``ifcClass``, ``blobKey``...), so persisted workspaces load
    unchanged and saved files stay readable by the original tooling.
"""

import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from ..errors import FormatError

logger = logging.getLogger(__name__)

ROOT_ID = "root"
ROOT_NAME = "Workspace"
DEFAULT_CLASS_LABEL = "IfcBuildingElementProxy"


class NodeKind(str, Enum):
    """Closed set of node kinds, in canonical containment order."""
    ROOT = "Root"
    PROJECT = "Project"
    SITE = "Site"
    BUILDING = "Building"
    STOREY = "Storey"
    CLASS_GROUP = "ClassGroup"
    OBJECT = "Object"


# Canonical (parent kind -> allowed child kind) pairs.
ALLOWED_CHILD_KIND: Dict[NodeKind, NodeKind] = {
    NodeKind.ROOT: NodeKind.PROJECT,
    NodeKind.PROJECT: NodeKind.SITE,
    NodeKind.SITE: NodeKind.BUILDING,
    NodeKind.BUILDING: NodeKind.STOREY,
    NodeKind.STOREY: NodeKind.CLASS_GROUP,
    NodeKind.CLASS_GROUP: NodeKind.OBJECT,
}

SPATIAL_KINDS = (NodeKind.PROJECT, NodeKind.SITE, NodeKind.BUILDING, NodeKind.STOREY)


class DocumentCategory(str, Enum):
    """Category of a document attached to an asset."""
    MANUAL = "Manual"
    DATASHEET = "Datasheet"
    CERTIFICATE = "Certificate"
    REPORT = "Report"
    MODEL = "Model"
    OTHER = "Other"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class PropertySet(_FrozenModel):
    """Named set of string properties (e.g. ``Pset_AssetCustom``).

    Attributes:
        name: Property set name, unique per node
        props: Property key to value mapping; keys are unique by construction
    """

    name: str = Field(..., description="Property set name")
    props: Dict[str, str] = Field(default_factory=dict, description="Key/value pairs")

    @field_validator("props", mode="before")
    @classmethod
    def stringify_values(cls, v: Any) -> Any:
        """Property values are always stored as strings."""
        if v is None:
            return {}
        if isinstance(v, Mapping):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v


class AssetDocument(_FrozenModel):
    """Reference to a file attached to an asset.

    The document only carries the key under which the attachment store holds
    the bytes, never the bytes themselves.
    """

    id: str
    name: str
    category: DocumentCategory = DocumentCategory.OTHER
    mime: str = "application/octet-stream"
    version: str = "A"
    created_at: int = Field(0, alias="createdAt", description="Epoch milliseconds")
    blob_key: str = Field(..., alias="blobKey")


class SourceRef(_FrozenModel):
    """Provenance of a node created by an import."""

    model_id: str = Field(..., alias="modelID")
    local_id: str = Field(..., alias="expressID")
    global_id: Optional[str] = Field(None, alias="globalId")
    type: Optional[str] = None

    @field_validator("model_id", "local_id", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class TreeNode(_FrozenModel):
    """One node of the spatial hierarchy.

    Attributes:
        id: Globally unique node id
        kind: Node kind
        name: Display name
        parent_id: Id of the containing node, if any
        children: Ordered child ids (order is for display only)
        class_label: Classification, meaningful for ClassGroup/Object
        tag: Human asset identifier, Object only
        psets: Property sets
        docs: Attached document references
        source: Import provenance, if the node came from an external model
    """

    id: str
    kind: NodeKind
    name: str = ""
    parent_id: Optional[str] = Field(None, alias="parentId")
    children: Tuple[str, ...] = ()
    class_label: Optional[str] = Field(None, alias="ifcClass")
    tag: Optional[str] = None
    psets: Tuple[PropertySet, ...] = ()
    docs: Tuple[AssetDocument, ...] = ()
    source: Optional[SourceRef] = Field(None, alias="ifc")

    @field_validator("children", "psets", "docs", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return () if v is None else v

    def pset(self, name: str) -> Optional[PropertySet]:
        """Return the property set called ``name``, if present."""
        for pset in self.psets:
            if pset.name == name:
                return pset
        return None


Snapshot = Dict[str, TreeNode]


def root_node(children: Tuple[str, ...] = ()) -> TreeNode:
    """Create the workspace root node."""
    return TreeNode(id=ROOT_ID, kind=NodeKind.ROOT, name=ROOT_NAME, children=children)


def snapshot_from_dict(raw: Any) -> Snapshot:
    """Build a snapshot from plain JSON-ready data.

    Args:
        raw: Mapping of node id to node record

    Returns:
        Snapshot (not repaired; callers run ``repair`` before use)

    Raises:
        FormatError: If the payload is not a mapping of valid node records
    """
    if not isinstance(raw, Mapping):
        raise FormatError(f"Snapshot payload must be a mapping, got {type(raw).__name__}")

    snapshot: Snapshot = {}
    for node_id, record in raw.items():
        if not isinstance(record, Mapping):
            raise FormatError(f"Node record '{node_id}' must be a mapping")
        data = dict(record)
        data.setdefault("id", node_id)
        try:
            snapshot[str(node_id)] = TreeNode.model_validate(data)
        except PydanticValidationError as e:
            raise FormatError(f"Invalid node record '{node_id}': {e}") from e

    logger.debug(f"Loaded snapshot with {len(snapshot)} nodes")
    return snapshot


def snapshot_to_dict(snapshot: Mapping[str, TreeNode]) -> Dict[str, Dict[str, Any]]:
    """Convert a snapshot to JSON-ready data keyed by node id."""
    return {
        node_id: node.model_dump(mode="json", by_alias=True, exclude_none=True)
        for node_id, node in snapshot.items()
    }


def seed_snapshot(project_name: str = "IfcProject") -> Snapshot:
    """Create the starter workspace: one project with a single site, building and storey."""
    group_id = f"storey_1__{DEFAULT_CLASS_LABEL}"
    return {
        ROOT_ID: root_node(("project",)),
        "project": TreeNode(
            id="project", kind=NodeKind.PROJECT, name=project_name,
            parent_id=ROOT_ID, children=("site_1",),
        ),
        "site_1": TreeNode(
            id="site_1", kind=NodeKind.SITE, name="Site A",
            parent_id="project", children=("building_1",),
        ),
        "building_1": TreeNode(
            id="building_1", kind=NodeKind.BUILDING, name="Building A",
            parent_id="site_1", children=("storey_1",),
        ),
        "storey_1": TreeNode(
            id="storey_1", kind=NodeKind.STOREY, name="Storey 0",
            parent_id="building_1", children=(group_id,),
        ),
        group_id: TreeNode(
            id=group_id, kind=NodeKind.CLASS_GROUP, name=DEFAULT_CLASS_LABEL,
            class_label=DEFAULT_CLASS_LABEL, parent_id="storey_1",
        ),
    }

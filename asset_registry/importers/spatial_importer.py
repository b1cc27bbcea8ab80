"""
Spatial hierarchy importer (reconciler).

Merges an externally supplied spatial hierarchy into a tree snapshot without
destroying local edits. The caller provides:

- a ``HierarchyNode`` tree of ``{type, expressID, children}`` records, as a
  model parser reports the spatial structure of a file, and
- an ``AttributeSource`` answering per-node lookups (GlobalId, name, tag,
  property sets) asynchronously.

Node ids are derived from the source identity, so importing the same model
twice adds no new nodes:

    ifc:{project|site|building|storey}:{GlobalId or local id}
    ifc:obj:{GlobalId}  or  ifc:obj:{model}:{local id}

Elements found outside any storey land in a synthetic storey of the nearest
building, or in a placeholder Project/Site/Building/Storey chain derived from
the model id. Spatial nodes whose source parent cannot hold them (a building
directly under a project, a storey under a site) get the missing levels
synthesized the same way, so every imported node stays exportable.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from ..core.classification import classification_label
from ..core.tree import ancestor_of_kind, class_group_id, repair
from ..errors import FormatError, ImportCancelled
from ..models.tree import ALLOWED_CHILD_KIND, ROOT_ID, NodeKind, PropertySet, Snapshot, SourceRef, TreeNode, root_node

logger = logging.getLogger(__name__)

# Type tag -> spatial kind; every other tag is a leaf element
SPATIAL_TYPES: Dict[str, NodeKind] = {
    "IFCPROJECT": NodeKind.PROJECT,
    "IFCSITE": NodeKind.SITE,
    "IFCBUILDING": NodeKind.BUILDING,
    "IFCBUILDINGSTOREY": NodeKind.STOREY,
}

_ID_PREFIX: Dict[NodeKind, str] = {
    NodeKind.PROJECT: "project",
    NodeKind.SITE: "site",
    NodeKind.BUILDING: "building",
    NodeKind.STOREY: "storey",
}


# ============================================================================
# Input models
# ============================================================================

class HierarchyNode(BaseModel):
    """One node of the external spatial structure."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = ""
    local_id: str = Field(..., alias="expressID")
    children: List["HierarchyNode"] = Field(default_factory=list)

    @field_validator("local_id", mode="before")
    @classmethod
    def stringify_local_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v

    @field_validator("type", mode="before")
    @classmethod
    def none_type_as_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("children", mode="before")
    @classmethod
    def none_children_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def type_tag(self) -> str:
        return self.type.strip().upper()

    @classmethod
    def parse(cls, payload: Union["HierarchyNode", Mapping[str, Any]]) -> "HierarchyNode":
        """Validate a raw hierarchy payload.

        Raises:
            FormatError: If the payload is not a valid hierarchy
        """
        if isinstance(payload, cls):
            return payload
        if not isinstance(payload, Mapping):
            raise FormatError(f"Hierarchy payload must be a mapping, got {type(payload).__name__}")
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as e:
            raise FormatError(f"Invalid hierarchy payload: {e}") from e


HierarchyNode.model_rebuild()


def _unwrap(value: Any) -> Any:
    """Viewer properties wrap literals as ``{"value": ...}``."""
    if isinstance(value, Mapping):
        if "value" in value:
            return value.get("value")
        if "Name" in value:
            return _unwrap(value.get("Name"))
    return value


def _as_text(value: Any) -> str:
    value = _unwrap(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_property_sets(raw: Optional[Iterable[Any]]) -> List[PropertySet]:
    """
    Convert raw property sets into ``PropertySet`` models.

    Accepts viewer-style records (``Name``, ``HasProperties`` with
    ``Name``/``NominalValue``) as well as ``{"name", "props"}`` records.
    Sets without any property are dropped.
    """
    result: List[PropertySet] = []
    for item in raw or ():
        if isinstance(item, PropertySet):
            if item.props:
                result.append(item)
            continue
        if not isinstance(item, Mapping):
            continue

        if "props" in item:
            name = _as_text(item.get("name")) or "Pset"
            props = {str(k): _as_text(v) for k, v in (item.get("props") or {}).items() if str(k)}
        else:
            name = _as_text(item.get("Name")) or "Pset"
            props = {}
            for prop in item.get("HasProperties") or ():
                if not isinstance(prop, Mapping):
                    continue
                key = _as_text(prop.get("Name"))
                if not key:
                    continue
                props[key] = _as_text(prop.get("NominalValue")) or _as_text(prop.get("Description"))

        if props:
            result.append(PropertySet(name=name, props=props))
    return result


def merge_property_sets(existing: Sequence[PropertySet], incoming: Sequence[PropertySet]) -> tuple:
    """Union of sets by name; within a set incoming values win. Sorted by name."""
    merged: Dict[str, Dict[str, str]] = {}
    for pset in list(existing) + list(incoming):
        merged.setdefault(pset.name, {}).update(pset.props)
    return tuple(PropertySet(name=name, props=props) for name, props in sorted(merged.items()))


# ============================================================================
# Attribute sources
# ============================================================================

class AttributeSource(ABC):
    """Asynchronous per-node attribute lookups keyed by ``(model_id, local_id)``.

    Every lookup may return None (or raise); the importer treats both as
    "no value" for that attribute only.
    """

    @abstractmethod
    async def global_id(self, model_id: str, local_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def name(self, model_id: str, local_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def tag(self, model_id: str, local_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def property_sets(self, model_id: str, local_id: str) -> Optional[List[PropertySet]]:
        ...


class StaticAttributeSource(AttributeSource):
    """Attribute source backed by a ``{local_id: record}`` mapping.

    Records use ``GlobalId``/``Name``/``Tag`` (optionally wrapped as
    ``{"value": ...}``) or their snake_case forms, and ``psets`` in any form
    ``parse_property_sets`` accepts.
    """

    def __init__(self, records: Mapping[Any, Mapping[str, Any]]):
        self._records = {str(k): v for k, v in records.items()}

    def _field(self, local_id: str, *keys: str) -> Optional[str]:
        record = self._records.get(str(local_id)) or {}
        for key in keys:
            if key in record:
                return _as_text(record[key]) or None
        return None

    async def global_id(self, model_id: str, local_id: str) -> Optional[str]:
        return self._field(local_id, "GlobalId", "global_id")

    async def name(self, model_id: str, local_id: str) -> Optional[str]:
        return self._field(local_id, "Name", "name")

    async def tag(self, model_id: str, local_id: str) -> Optional[str]:
        return self._field(local_id, "Tag", "tag")

    async def property_sets(self, model_id: str, local_id: str) -> Optional[List[PropertySet]]:
        record = self._records.get(str(local_id)) or {}
        return parse_property_sets(record.get("psets") or record.get("property_sets"))


# ============================================================================
# Results
# ============================================================================

@dataclass
class StructuralDiff:
    """Node ids touched by an import."""
    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)


@dataclass
class ImportResult:
    """Outcome of one import: the repaired snapshot and what changed."""
    snapshot: Snapshot
    model_id: str
    diff: StructuralDiff = field(default_factory=StructuralDiff)


@dataclass
class _Attributes:
    global_id: Optional[str] = None
    name: Optional[str] = None
    tag: Optional[str] = None
    psets: List[PropertySet] = field(default_factory=list)


# ============================================================================
# Importer
# ============================================================================

class _ImportRun:
    """Mutable draft and bookkeeping for a single import call."""

    def __init__(self, importer: "SpatialImporter", snapshot: Snapshot, model_id: str):
        self.source = importer.source
        self.cancel_event = importer.cancel_event
        self.model_id = model_id
        self.draft: Dict[str, TreeNode] = dict(snapshot)
        self.diff = StructuralDiff()
        if ROOT_ID not in self.draft:
            self.draft[ROOT_ID] = root_node()

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ImportCancelled(f"Import of model '{self.model_id}' was cancelled")

    async def _safe(self, lookup: Awaitable[Any], what: str, local_id: str, parse=_as_text) -> Any:
        try:
            return parse(await lookup)
        except Exception as e:
            logger.debug(f"Lookup of {what} for {self.model_id}:{local_id} failed: {e}")
            return None

    async def lookup(self, local_id: str) -> _Attributes:
        """Run the four lookups of one node concurrently."""
        source, model_id = self.source, self.model_id
        global_id, name, tag, psets = await asyncio.gather(
            self._safe(source.global_id(model_id, local_id), "global id", local_id),
            self._safe(source.name(model_id, local_id), "name", local_id),
            self._safe(source.tag(model_id, local_id), "tag", local_id),
            self._safe(source.property_sets(model_id, local_id), "property sets", local_id, parse_property_sets),
        )
        return _Attributes(
            global_id=global_id or None,
            name=name or None,
            tag=tag or None,
            psets=psets or [],
        )

    def upsert(self, node: TreeNode) -> str:
        """Insert a node or merge it into the existing one of the same id.

        An existing node keeps its kind, parent, name, tag and class; its
        children are replaced only when it has none; property sets merge.
        """
        self.check_cancelled()
        existing = self.draft.get(node.id)
        if existing is None:
            node = node.model_copy(update={"psets": merge_property_sets((), node.psets)})
            self.draft[node.id] = node
            self._link(node.parent_id, node.id)
            self.diff.added.append(node.id)
            return node.id

        update: Dict[str, Any] = {
            "name": existing.name or node.name,
            "tag": existing.tag or node.tag,
            "class_label": existing.class_label or node.class_label,
            "psets": merge_property_sets(existing.psets, node.psets),
            "children": existing.children or node.children,
            "source": node.source or existing.source,
        }
        if existing.parent_id is None and node.parent_id is not None:
            update["parent_id"] = node.parent_id
        merged = existing.model_copy(update=update)

        if merged != existing:
            self.draft[node.id] = merged
            if merged.parent_id != existing.parent_id:
                self._link(merged.parent_id, node.id)
            if node.id not in self.diff.added and node.id not in self.diff.modified:
                self.diff.modified.append(node.id)
        return node.id

    def _link(self, parent_id: Optional[str], child_id: str) -> None:
        parent = self.draft.get(parent_id) if parent_id else None
        if parent is not None and child_id not in parent.children:
            self.draft[parent.id] = parent.model_copy(update={"children": parent.children + (child_id,)})

    def _ensure(self, node_id: str, kind: NodeKind, name: str, parent_id: str) -> str:
        if node_id not in self.draft:
            self.upsert(TreeNode(id=node_id, kind=kind, name=name, parent_id=parent_id))
        return node_id

    def default_project(self) -> str:
        """Placeholder Project of this model, for content found outside any project."""
        return self._ensure(
            f"ifc:project:default:{self.model_id}", NodeKind.PROJECT, "Imported Project", ROOT_ID
        )

    def _project_for(self, parent_id: Optional[str]) -> str:
        found = ancestor_of_kind(self.draft, parent_id, NodeKind.PROJECT) if parent_id else None
        return found or self.default_project()

    def _site_for(self, parent_id: Optional[str]) -> str:
        found = ancestor_of_kind(self.draft, parent_id, NodeKind.SITE) if parent_id else None
        if found is not None:
            return found
        project_id = self._project_for(parent_id)
        return self._ensure(f"ifc:site:synthetic:{project_id}", NodeKind.SITE, "Site 0", project_id)

    def _building_for(self, parent_id: Optional[str]) -> str:
        found = ancestor_of_kind(self.draft, parent_id, NodeKind.BUILDING) if parent_id else None
        if found is not None:
            return found
        site_id = ancestor_of_kind(self.draft, parent_id, NodeKind.SITE) if parent_id else None
        if site_id is not None:
            key = site_id
        else:
            key = self._project_for(parent_id)
            site_id = self._site_for(key)
        return self._ensure(f"ifc:building:synthetic:{key}", NodeKind.BUILDING, "Building 0", site_id)

    def spatial_parent(self, kind: NodeKind, parent_id: str) -> str:
        """Container for a spatial node, filling in levels the source skipped."""
        if kind == NodeKind.PROJECT:
            return ROOT_ID
        parent = self.draft.get(parent_id)
        if parent is not None and ALLOWED_CHILD_KIND.get(parent.kind) == kind:
            return parent_id
        if kind == NodeKind.SITE:
            return self._project_for(parent_id)
        if kind == NodeKind.BUILDING:
            return self._site_for(parent_id)
        return self._building_for(parent_id)

    def synthetic_storey(self, parent_id: Optional[str]) -> str:
        """Storey for elements met before any storey in the walk."""
        building_id = ancestor_of_kind(self.draft, parent_id, NodeKind.BUILDING) if parent_id else None
        if building_id is None:
            building_id = self._building_for(self.default_project())
        return self._ensure(
            f"ifc:storey:synthetic:{building_id}", NodeKind.STOREY, "Storey 0", building_id
        )

    def _source_ref(self, item: HierarchyNode, attrs: _Attributes) -> SourceRef:
        return SourceRef(
            model_id=self.model_id,
            local_id=item.local_id,
            global_id=attrs.global_id,
            type=item.type_tag or None,
        )

    async def walk(self, item: HierarchyNode, parent_id: str, storey_id: Optional[str]) -> None:
        self.check_cancelled()
        attrs = await self.lookup(item.local_id)
        type_tag = item.type_tag
        kind = SPATIAL_TYPES.get(type_tag)

        if kind is not None:
            node_id = f"ifc:{_ID_PREFIX[kind]}:{attrs.global_id or item.local_id}"
            self.upsert(TreeNode(
                id=node_id,
                kind=kind,
                name=attrs.name or kind.value,
                parent_id=self.spatial_parent(kind, parent_id),
                tag=None,
                psets=tuple(attrs.psets),
                source=self._source_ref(item, attrs),
            ))
            next_storey = node_id if kind == NodeKind.STOREY else storey_id
            for child in item.children:
                await self.walk(child, node_id, next_storey)
            return

        if storey_id is None:
            storey_id = self.synthetic_storey(parent_id)

        class_label = classification_label(type_tag)
        group_id = class_group_id(storey_id, class_label)
        if group_id not in self.draft:
            self.upsert(TreeNode(
                id=group_id, kind=NodeKind.CLASS_GROUP, name=class_label,
                parent_id=storey_id, class_label=class_label,
            ))

        if attrs.global_id:
            object_id = f"ifc:obj:{attrs.global_id}"
        else:
            object_id = f"ifc:obj:{self.model_id}:{item.local_id}"
        self.upsert(TreeNode(
            id=object_id,
            kind=NodeKind.OBJECT,
            name=attrs.name or class_label,
            parent_id=group_id,
            class_label=class_label,
            tag=attrs.tag or attrs.global_id,
            psets=tuple(attrs.psets),
            source=self._source_ref(item, attrs),
        ))

        # Nested leaves stay in the same storey
        for child in item.children:
            await self.walk(child, parent_id, storey_id)


class SpatialImporter:
    """Reconciles external spatial hierarchies into tree snapshots.

    Usage:
        importer = SpatialImporter(StaticAttributeSource(records))
        result = await importer.import_hierarchy(snapshot, "model-1", hierarchy)
        store.replace(workspace_id, result.snapshot)

    Args:
        source: Attribute lookups for visited nodes
        cancel_event: Set by the host to abandon an in-flight import
    """

    def __init__(self, source: AttributeSource, cancel_event: Optional[asyncio.Event] = None):
        self.source = source
        self.cancel_event = cancel_event

    async def import_hierarchy(
        self,
        snapshot: Snapshot,
        model_id: Union[str, int],
        hierarchy: Union[HierarchyNode, Mapping[str, Any]],
    ) -> ImportResult:
        """
        Merge ``hierarchy`` into ``snapshot``.

        Args:
            snapshot: Current tree; never modified
            model_id: Identity of the imported model
            hierarchy: Root of the external spatial structure

        Returns:
            ImportResult with the repaired merged snapshot

        Raises:
            FormatError: If the hierarchy payload is malformed
            ImportCancelled: If ``cancel_event`` was set; no partial result is kept
        """
        root = HierarchyNode.parse(hierarchy)
        run = _ImportRun(self, snapshot, str(model_id))
        await run.walk(root, ROOT_ID, None)

        logger.debug(
            f"Imported model '{run.model_id}': {len(run.diff.added)} added, "
            f"{len(run.diff.modified)} modified"
        )
        return ImportResult(snapshot=repair(run.draft), model_id=run.model_id, diff=run.diff)


async def import_hierarchy(
    snapshot: Snapshot,
    model_id: Union[str, int],
    hierarchy: Union[HierarchyNode, Mapping[str, Any]],
    source: AttributeSource,
    cancel_event: Optional[asyncio.Event] = None,
) -> ImportResult:
    """Convenience function wrapping ``SpatialImporter.import_hierarchy``."""
    importer = SpatialImporter(source, cancel_event=cancel_event)
    return await importer.import_hierarchy(snapshot, model_id, hierarchy)

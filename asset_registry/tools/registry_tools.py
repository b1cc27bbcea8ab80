"""MCP tools for editing, importing and exporting asset registry workspaces."""

import base64
import binascii
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from mcp import Tool

from ..config.settings import get_setting
from ..core.bulk import (
    apply_tags,
    bulk_add_property,
    bulk_find_replace_names,
    bulk_set_classification,
    create_objects_batch,
)
from ..core.classification import CLASS_LABEL_OPTIONS
from ..core.documents import add_document, delete_document
from ..core.tree import (
    add_building,
    add_site,
    add_storey,
    create_object,
    delete_node,
    delete_property,
    find_nesting_violations,
    move_building_to_site,
    move_objects,
    move_storey_to_building,
    move_storey_to_site,
    rename_node,
    repair,
    set_property,
    sweep_orphans,
    unreachable_ids,
    visible_order,
)
from ..core.tree_store import TreeStore
from ..errors import ConcurrentModification, RegistryError, StructuralError
from ..exporters.ifc_exporter import Ifc2x3Exporter
from ..importers.spatial_importer import SpatialImporter, StaticAttributeSource
from ..models.tree import (
    DEFAULT_CLASS_LABEL,
    DocumentCategory,
    NodeKind,
    Snapshot,
    seed_snapshot,
    snapshot_to_dict,
)
from ..patterns.tag_engine import CounterMode
from ..persistence.snapshot_persistence import SnapshotPersistence
from ..storage.attachment_store import AttachmentStore, InMemoryAttachmentStore
from ..utils.response import (
    create_issue,
    error_response,
    integrity_response,
    registry_error_response,
    success_response,
)

logger = logging.getLogger(__name__)

_IMPORT_ATTEMPTS = 3

_WORKSPACE_ID = {
    "type": "string",
    "description": "ID of the workspace",
}
_NODE_IDS = {
    "type": "array",
    "items": {"type": "string"},
    "description": "IDs of the selected nodes",
}
_CLASS_LABEL = {
    "type": "string",
    "description": f"IFC classification label, e.g. {', '.join(CLASS_LABEL_OPTIONS[:3])}",
    "default": DEFAULT_CLASS_LABEL,
}


class RegistryTools:
    """Handles asset registry operations over a shared workspace store."""

    def __init__(self, store: TreeStore, attachments: Optional[AttachmentStore] = None):
        """Initialize with the workspace store.

        Args:
            store: TreeStore holding the current snapshot of every workspace
            attachments: Store for document bytes (in-memory when omitted)
        """
        self.store = store
        self.attachments = attachments if attachments is not None else InMemoryAttachmentStore()
        self.persistence = SnapshotPersistence()

    def get_tools(self) -> List[Tool]:
        """Return all registry tools."""
        return [
            Tool(
                name="registry_create",
                description="Create a workspace holding a starter project, site, building and storey",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": {"type": "string", "description": "Optional workspace ID (generated if omitted)"},
                        "project_name": {"type": "string", "default": "IfcProject"},
                        "empty": {"type": "boolean", "description": "Start with only the workspace root", "default": False},
                    },
                },
            ),
            Tool(
                name="registry_get",
                description="Get a workspace tree, or a single node",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "node_id": {"type": "string", "description": "Optional node to return"},
                    },
                    "required": ["workspace_id"],
                },
            ),
            Tool(
                name="registry_repair",
                description="Repair tree links and report nesting violations and unreachable nodes",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "sweep_orphans": {
                            "type": "boolean",
                            "description": "Also delete nodes unreachable from the root",
                            "default": False,
                        },
                    },
                    "required": ["workspace_id"],
                },
            ),
            Tool(
                name="registry_add_spatial",
                description="Add a site to a project, a building to a site, or a storey to a building",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "kind": {"type": "string", "enum": ["site", "building", "storey"]},
                        "parent_id": {"type": "string", "description": "Project, site or building ID"},
                        "name": {"type": "string", "description": "Building name", "default": "New Building"},
                    },
                    "required": ["workspace_id", "kind", "parent_id"],
                },
            ),
            Tool(
                name="registry_create_objects",
                description="Create one named object, or a batch from name and tag patterns, in a storey",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "storey_id": {"type": "string"},
                        "class_label": _CLASS_LABEL,
                        "name": {"type": "string", "description": "Name of a single object"},
                        "tag": {"type": "string", "description": "Tag of a single object"},
                        "count": {"type": "integer", "minimum": 1, "default": 1},
                        "name_pattern": {"type": "string", "description": "Batch name pattern, {N} is 1..count", "default": "Pump {N}"},
                        "tag_pattern": {"type": "string", "description": "Tokens: {CLASS} {SITE} {BLDG} {STRY} {CUSTOM} and {N} or {N:4}"},
                        "start": {"type": "integer", "default": 1},
                        "step": {"type": "integer", "default": 1},
                        "unique": {"type": "boolean", "default": True},
                        "custom": {"type": "string", "default": ""},
                    },
                    "required": ["workspace_id", "storey_id"],
                },
            ),
            Tool(
                name="registry_move",
                description="Move objects, storeys or buildings onto a new parent",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "node_ids": _NODE_IDS,
                        "target_id": {"type": "string"},
                    },
                    "required": ["workspace_id", "node_ids", "target_id"],
                },
            ),
            Tool(
                name="registry_set_property",
                description="Set a property on one or more objects",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "node_ids": _NODE_IDS,
                        "pset_name": {"type": "string", "default": "Pset_AssetCustom"},
                        "key": {"type": "string"},
                        "value": {"type": "string", "default": ""},
                    },
                    "required": ["workspace_id", "node_ids", "key"],
                },
            ),
            Tool(
                name="registry_delete_property",
                description="Delete a property from an object",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "node_id": {"type": "string"},
                        "pset_name": {"type": "string", "default": "Pset_AssetCustom"},
                        "key": {"type": "string"},
                    },
                    "required": ["workspace_id", "node_id", "key"],
                },
            ),
            Tool(
                name="registry_set_classification",
                description="Reclassify objects; each moves to the matching class group of its storey",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "node_ids": _NODE_IDS,
                        "class_label": _CLASS_LABEL,
                    },
                    "required": ["workspace_id", "node_ids", "class_label"],
                },
            ),
            Tool(
                name="registry_apply_tags",
                description="Generate tags for the selected objects from a pattern",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "node_ids": _NODE_IDS,
                        "pattern": {"type": "string", "default": "{CLASS}-{N:4}"},
                        "start": {"type": "integer", "default": 1},
                        "step": {"type": "integer", "default": 1},
                        "mode": {"type": "string", "enum": ["global", "perClass"], "default": "perClass"},
                        "unique": {"type": "boolean", "default": True},
                        "custom": {"type": "string", "default": ""},
                    },
                    "required": ["workspace_id", "node_ids", "pattern"],
                },
            ),
            Tool(
                name="registry_rename",
                description="Rename one node, or find/replace in the names of selected objects",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "node_id": {"type": "string", "description": "Node to rename"},
                        "name": {"type": "string", "description": "New name"},
                        "node_ids": _NODE_IDS,
                        "find": {"type": "string"},
                        "replace": {"type": "string", "default": ""},
                        "use_regex": {"type": "boolean", "default": False},
                    },
                    "required": ["workspace_id"],
                },
            ),
            Tool(
                name="registry_delete_node",
                description="Delete a node and everything below it",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "node_id": {"type": "string"},
                    },
                    "required": ["workspace_id", "node_id"],
                },
            ),
            Tool(
                name="registry_export_ifc",
                description="Export a project as an IFC2x3 STEP file (spatial structure, elements, property sets)",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "file_name": {"type": "string", "default": "template.ifc"},
                        "project_id": {"type": "string", "description": "Project to export (defaults to the first)"},
                        "output_path": {"type": "string", "description": "Optional file to write"},
                    },
                    "required": ["workspace_id"],
                },
            ),
            Tool(
                name="registry_import_hierarchy",
                description="Merge an external spatial hierarchy into a workspace without losing local edits",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "model_id": {"type": "string"},
                        "hierarchy": {
                            "type": "object",
                            "description": "Root node {type, expressID, children[]}",
                        },
                        "attributes": {
                            "type": "object",
                            "description": "Per expressID: GlobalId, Name, Tag, psets",
                            "default": {},
                        },
                    },
                    "required": ["workspace_id", "model_id", "hierarchy"],
                },
            ),
            Tool(
                name="registry_save",
                description="Save a workspace to a JSON file",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "path": {"type": "string"},
                    },
                    "required": ["workspace_id", "path"],
                },
            ),
            Tool(
                name="registry_load",
                description="Load a workspace from a JSON file (repaired on load)",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string"},
                        "workspace_id": {"type": "string", "description": "Workspace to create or replace"},
                    },
                    "required": ["path"],
                },
            ),
            Tool(
                name="registry_undo",
                description="Undo the last change to a workspace",
                inputSchema={
                    "type": "object",
                    "properties": {"workspace_id": _WORKSPACE_ID},
                    "required": ["workspace_id"],
                },
            ),
            Tool(
                name="registry_add_document",
                description="Attach a document (base64 content) to an object",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "asset_id": {"type": "string"},
                        "name": {"type": "string", "description": "File name"},
                        "content_base64": {"type": "string"},
                        "mime": {"type": "string", "description": "MIME type (guessed from the name if omitted)"},
                        "category": {
                            "type": "string",
                            "enum": [c.value for c in DocumentCategory],
                            "default": DocumentCategory.OTHER.value,
                        },
                    },
                    "required": ["workspace_id", "asset_id", "name", "content_base64"],
                },
            ),
            Tool(
                name="registry_delete_document",
                description="Remove a document and its stored bytes from an object",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "workspace_id": _WORKSPACE_ID,
                        "asset_id": {"type": "string"},
                        "doc_id": {"type": "string"},
                    },
                    "required": ["workspace_id", "asset_id", "doc_id"],
                },
            ),
        ]

    async def handle_tool(self, name: str, arguments: dict) -> dict:
        """Route tool call to appropriate handler.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            Standardized response
        """
        handlers = {
            "registry_create": self._create,
            "registry_get": self._get,
            "registry_repair": self._repair,
            "registry_add_spatial": self._add_spatial,
            "registry_create_objects": self._create_objects,
            "registry_move": self._move,
            "registry_set_property": self._set_property,
            "registry_delete_property": self._delete_property,
            "registry_set_classification": self._set_classification,
            "registry_apply_tags": self._apply_tags,
            "registry_rename": self._rename,
            "registry_delete_node": self._delete_node,
            "registry_export_ifc": self._export_ifc,
            "registry_import_hierarchy": self._import_hierarchy,
            "registry_save": self._save,
            "registry_load": self._load,
            "registry_undo": self._undo,
            "registry_add_document": self._add_document,
            "registry_delete_document": self._delete_document,
        }

        handler = handlers.get(name)
        if not handler:
            return error_response(f"Unknown registry tool: {name}", code="UNKNOWN_TOOL")

        try:
            return await handler(arguments)
        except RegistryError as e:
            return registry_error_response(e)
        except KeyError as e:
            message = e.args[0] if e.args else str(e)
            return error_response(f"Missing or unknown key: {message}", code="NOT_FOUND")
        except Exception as e:
            logger.error(f"Error in {name}: {e}")
            return error_response(str(e), code="TOOL_ERROR")

    # ------------------------------------------------------------------
    # Workspace lifecycle
    # ------------------------------------------------------------------

    async def _create(self, args: dict) -> dict:
        """Create a workspace."""
        workspace_id = args.get("workspace_id") or str(uuid4())[:8]
        if self.store.exists(workspace_id):
            return error_response(f"Workspace {workspace_id} already exists", code="WORKSPACE_EXISTS")
        initial: Snapshot = {} if args.get("empty") else seed_snapshot(args.get("project_name") or "IfcProject")
        metadata = self.store.create(workspace_id, initial)
        return success_response({
            "workspace_id": workspace_id,
            "node_count": len(self.store.require(workspace_id)),
            "metadata": metadata.to_dict(),
        })

    async def _get(self, args: dict) -> dict:
        """Return the tree in display order, or one node."""
        snapshot = self.store.require(args["workspace_id"])
        node_id = args.get("node_id")
        if node_id:
            node = snapshot.get(node_id)
            if node is None:
                raise StructuralError(f"Node '{node_id}' not found")
            return success_response(node.model_dump(mode="json", by_alias=True, exclude_none=True))
        return success_response({
            "nodes": snapshot_to_dict(snapshot),
            "order": visible_order(snapshot),
        })

    async def _repair(self, args: dict) -> dict:
        """Repair and report remaining integrity issues."""
        workspace_id = args["workspace_id"]
        self.store.apply(workspace_id, repair)
        if args.get("sweep_orphans"):
            self.store.apply(workspace_id, sweep_orphans)

        snapshot = self.store.require(workspace_id)
        issues = [
            create_issue(
                "warning",
                f"{snapshot[child].kind.value} '{child}' is nested under {snapshot[parent].kind.value} '{parent}'",
                location=child,
                code="NESTING",
            )
            for parent, child in find_nesting_violations(snapshot)
        ]
        orphans = sorted(unreachable_ids(snapshot))
        issues.extend(
            create_issue("info", f"Node '{node_id}' is not reachable from the root", location=node_id, code="ORPHAN")
            for node_id in orphans
        )
        return integrity_response(issues, {"node_count": len(snapshot), "orphan_count": len(orphans)})

    async def _save(self, args: dict) -> dict:
        snapshot = self.store.require(args["workspace_id"])
        path = self.persistence.save(snapshot, args["path"])
        return success_response({"path": str(path), "node_count": len(snapshot)})

    async def _load(self, args: dict) -> dict:
        snapshot = self.persistence.load(args["path"])
        workspace_id = args.get("workspace_id") or str(uuid4())[:8]
        if self.store.exists(workspace_id):
            self.store.replace(workspace_id, snapshot)
        else:
            self.store.create(workspace_id, snapshot)
        return success_response({"workspace_id": workspace_id, "node_count": len(snapshot)})

    async def _undo(self, args: dict) -> dict:
        undone = self.store.undo(args["workspace_id"])
        if not undone:
            return error_response("Nothing to undo", code="NOTHING_TO_UNDO")
        return success_response({"workspace_id": args["workspace_id"]})

    # ------------------------------------------------------------------
    # Structure edits
    # ------------------------------------------------------------------

    async def _add_spatial(self, args: dict) -> dict:
        """Add a site, building or storey."""
        workspace_id = args["workspace_id"]
        kind = args["kind"]
        parent_id = args["parent_id"]

        if kind == "site":
            node_id = self.store.apply(workspace_id, add_site, parent_id)
        elif kind == "building":
            node_id = self.store.apply(workspace_id, add_building, parent_id, args.get("name") or "New Building")
        elif kind == "storey":
            node_id = self.store.apply(workspace_id, add_storey, parent_id)
        else:
            return error_response(f"Unknown spatial kind: {kind}", code="INVALID_KIND")

        return success_response({"node_id": node_id, "kind": kind})

    async def _create_objects(self, args: dict) -> dict:
        """Create a single object or a batch."""
        workspace_id = args["workspace_id"]
        class_label = args.get("class_label") or DEFAULT_CLASS_LABEL

        if args.get("name"):
            object_id = self.store.apply(
                workspace_id, create_object, args["storey_id"], args["name"],
                tag=args.get("tag"), class_label=class_label,
            )
            return success_response({"created": [object_id]})

        created = self.store.apply(
            workspace_id,
            create_objects_batch,
            args["storey_id"],
            args.get("count", 1),
            class_label=class_label,
            name_pattern=args.get("name_pattern", "Pump {N}"),
            tag_pattern=args.get("tag_pattern"),
            start=args.get("start", 1),
            step=args.get("step", 1),
            unique=args.get("unique", True),
            custom=args.get("custom", ""),
        )
        snapshot = self.store.require(workspace_id)
        return success_response({
            "created": created,
            "tags": [snapshot[i].tag for i in created],
        })

    async def _move(self, args: dict) -> dict:
        """Move nodes; the kind of each node and of the target selects the move."""
        workspace_id = args["workspace_id"]
        target_id = args["target_id"]
        node_ids = list(args["node_ids"])

        def move(snapshot: Snapshot) -> Snapshot:
            target = snapshot.get(target_id)
            if target is None:
                raise StructuralError(f"Target '{target_id}' not found")
            objects = [i for i in node_ids if i in snapshot and snapshot[i].kind == NodeKind.OBJECT]
            snapshot = move_objects(snapshot, objects, target_id)
            for node_id in node_ids:
                node = snapshot.get(node_id)
                if node is None:
                    continue
                if node.kind == NodeKind.BUILDING:
                    snapshot = move_building_to_site(snapshot, node_id, target_id)
                elif node.kind == NodeKind.STOREY and target.kind == NodeKind.SITE:
                    snapshot = move_storey_to_site(snapshot, node_id, target_id)
                elif node.kind == NodeKind.STOREY:
                    snapshot = move_storey_to_building(snapshot, node_id, target_id)
            return snapshot

        before = self.store.require(workspace_id)
        self.store.apply(workspace_id, move)
        after = self.store.require(workspace_id)
        moved = [i for i in node_ids if i in after and before.get(i) is not after[i]]
        return success_response({"moved": moved, "target_id": target_id})

    async def _delete_node(self, args: dict) -> dict:
        self.store.apply(args["workspace_id"], delete_node, args["node_id"])
        return success_response({"deleted": args["node_id"]})

    # ------------------------------------------------------------------
    # Field edits
    # ------------------------------------------------------------------

    async def _set_property(self, args: dict) -> dict:
        workspace_id = args["workspace_id"]
        node_ids = list(args["node_ids"])
        pset_name = args.get("pset_name") or get_setting("default_pset_name")
        value = args.get("value", "")

        if len(node_ids) == 1:
            self.store.apply(workspace_id, set_property, node_ids[0], pset_name, args["key"], value)
        else:
            self.store.apply(workspace_id, bulk_add_property, node_ids, args["key"], value, pset_name=pset_name)
        return success_response({"updated": node_ids, "pset_name": pset_name, "key": args["key"].strip()})

    async def _delete_property(self, args: dict) -> dict:
        self.store.apply(
            args["workspace_id"], delete_property,
            args["node_id"], args.get("pset_name") or get_setting("default_pset_name"), args["key"],
        )
        return success_response({"node_id": args["node_id"], "key": args["key"]})

    async def _set_classification(self, args: dict) -> dict:
        self.store.apply(args["workspace_id"], bulk_set_classification, args["node_ids"], args["class_label"])
        return success_response({"updated": list(args["node_ids"]), "class_label": args["class_label"]})

    async def _apply_tags(self, args: dict) -> dict:
        workspace_id = args["workspace_id"]
        node_ids = list(args["node_ids"])
        self.store.apply(
            workspace_id,
            apply_tags,
            node_ids,
            args["pattern"],
            start=args.get("start", 1),
            step=args.get("step", 1),
            mode=CounterMode(args.get("mode", CounterMode.PER_CLASS.value)),
            unique=args.get("unique", True),
            custom=args.get("custom", ""),
        )
        snapshot = self.store.require(workspace_id)
        tags = {i: snapshot[i].tag for i in node_ids if i in snapshot and snapshot[i].kind == NodeKind.OBJECT}
        return success_response({"tags": tags})

    async def _rename(self, args: dict) -> dict:
        workspace_id = args["workspace_id"]
        if args.get("node_id"):
            self.store.apply(workspace_id, rename_node, args["node_id"], args.get("name", ""))
            return success_response({"node_id": args["node_id"], "name": args.get("name", "").strip()})

        node_ids = list(args.get("node_ids") or [])
        self.store.apply(
            workspace_id,
            bulk_find_replace_names,
            node_ids,
            args.get("find", ""),
            args.get("replace", ""),
            use_regex=args.get("use_regex", False),
        )
        snapshot = self.store.require(workspace_id)
        return success_response({"names": {i: snapshot[i].name for i in node_ids if i in snapshot}})

    async def _add_document(self, args: dict) -> dict:
        try:
            data = base64.b64decode(args["content_base64"], validate=True)
        except (binascii.Error, ValueError) as e:
            return error_response(f"Invalid base64 content: {e}", code="INVALID_CONTENT")

        document = self.store.apply(
            args["workspace_id"],
            add_document,
            self.attachments,
            args["asset_id"],
            args["name"],
            data,
            mime=args.get("mime"),
            category=DocumentCategory(args.get("category", DocumentCategory.OTHER.value)),
        )
        return success_response(document.model_dump(mode="json", by_alias=True))

    async def _delete_document(self, args: dict) -> dict:
        self.store.apply(
            args["workspace_id"], delete_document, self.attachments, args["asset_id"], args["doc_id"],
        )
        return success_response({"asset_id": args["asset_id"], "doc_id": args["doc_id"]})

    # ------------------------------------------------------------------
    # Exchange
    # ------------------------------------------------------------------

    async def _export_ifc(self, args: dict) -> dict:
        snapshot = self.store.require(args["workspace_id"])
        file_name = args.get("file_name") or "template.ifc"
        text = Ifc2x3Exporter().export(snapshot, file_name=file_name, project_id=args.get("project_id"))

        data: Dict[str, Any] = {"file_name": file_name, "content": text}
        output_path = args.get("output_path")
        if output_path:
            path = Path(output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
            data["output_path"] = str(path)
            logger.info(f"Wrote IFC export to {path}")
        return success_response(data)

    async def _import_hierarchy(self, args: dict) -> dict:
        workspace_id = args["workspace_id"]
        importer = SpatialImporter(StaticAttributeSource(args.get("attributes") or {}))

        # Edits that land while the import awaits force a re-import on the newer tree
        for attempt in range(1, _IMPORT_ATTEMPTS + 1):
            snapshot, revision = self.store.read(workspace_id)
            result = await importer.import_hierarchy(snapshot, args["model_id"], args["hierarchy"])
            try:
                self.store.replace(workspace_id, result.snapshot, expected_revision=revision)
                break
            except ConcurrentModification:
                if attempt == _IMPORT_ATTEMPTS:
                    raise
                logger.info(f"Workspace {workspace_id} changed during import, retrying")
        return success_response({
            "model_id": result.model_id,
            "added": result.diff.added,
            "modified": result.diff.modified,
            "node_count": len(result.snapshot),
        })

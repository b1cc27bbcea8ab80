"""
Core Layer - Spatial Tree Operations for the Asset Registry

This layer holds the pure operations over tree snapshots and the host-side
store that swaps them. Exporter, importer and the MCP tools all build on it.

Modules:
- identifiers: GlobalId codec and local id minting
- classification: Element classification allow-list
- tree: Repair, queries, ensure/move, property edits, deletion
- bulk: Selection-wide edits (batch create, reclassify, rename, tag)
- documents: Document attachments on objects
- tree_store: Thread-safe workspace store with undo and snapshots
"""

from .identifiers import (
    GUID_ALPHABET,
    compress,
    is_global_id,
    new_global_id,
    new_node_id,
    new_uuid,
)
from .classification import (
    ALLOWED_CLASSIFICATIONS,
    CLASS_LABEL_OPTIONS,
    PROXY_ENTITY,
    classification_label,
    normalize_classification,
)
from .tree import (
    add_building,
    add_property_set,
    add_site,
    add_storey,
    ancestor_of_kind,
    buildings_of_site,
    children_of_kind,
    class_group_id,
    create_object,
    delete_node,
    delete_property,
    ensure_building,
    ensure_class_group,
    ensure_site,
    ensure_storey,
    existing_tags,
    find_nesting_violations,
    move_building_to_site,
    move_object_to_building,
    move_object_to_group,
    move_object_to_site,
    move_object_to_storey,
    move_objects,
    move_storey_to_building,
    move_storey_to_site,
    object_range,
    objects_under_storey,
    project_of,
    rename_node,
    repair,
    require_node,
    set_object_classification,
    set_property,
    set_tag,
    sites_of_project,
    storey_of,
    storeys_of_building,
    sweep_orphans,
    to_graph,
    unreachable_ids,
    visible_order,
)
from .bulk import (
    apply_tags,
    bulk_add_property,
    bulk_find_replace_names,
    bulk_set_classification,
    create_objects_batch,
    token_context_for,
)
from .documents import add_document, delete_document, hydrate_documents
from .tree_store import LifecycleHook, TreeStore, WorkspaceMetadata, WorkspaceSnapshot

__all__ = [
    # Identifiers
    'GUID_ALPHABET',
    'compress',
    'is_global_id',
    'new_global_id',
    'new_node_id',
    'new_uuid',
    # Classification
    'ALLOWED_CLASSIFICATIONS',
    'CLASS_LABEL_OPTIONS',
    'PROXY_ENTITY',
    'classification_label',
    'normalize_classification',
    # Tree
    'add_building',
    'add_property_set',
    'add_site',
    'add_storey',
    'ancestor_of_kind',
    'buildings_of_site',
    'children_of_kind',
    'class_group_id',
    'create_object',
    'delete_node',
    'delete_property',
    'ensure_building',
    'ensure_class_group',
    'ensure_site',
    'ensure_storey',
    'existing_tags',
    'find_nesting_violations',
    'move_building_to_site',
    'move_object_to_building',
    'move_object_to_group',
    'move_object_to_site',
    'move_object_to_storey',
    'move_objects',
    'move_storey_to_building',
    'move_storey_to_site',
    'object_range',
    'objects_under_storey',
    'project_of',
    'rename_node',
    'repair',
    'require_node',
    'set_object_classification',
    'set_property',
    'set_tag',
    'sites_of_project',
    'storey_of',
    'storeys_of_building',
    'sweep_orphans',
    'to_graph',
    'unreachable_ids',
    'visible_order',
    # Bulk
    'apply_tags',
    'bulk_add_property',
    'bulk_find_replace_names',
    'bulk_set_classification',
    'create_objects_batch',
    'token_context_for',
    # Documents
    'add_document',
    'delete_document',
    'hydrate_documents',
    # Store
    'LifecycleHook',
    'TreeStore',
    'WorkspaceMetadata',
    'WorkspaceSnapshot',
]

"""
Core Tree Module - Spatial Hierarchy Operations

This module provides the pure operations over a tree snapshot:
- Repair of bulk-loaded data (dangling/self references, missing root)
- Queries (ancestry, containment, display order, used tags, graph view)
- Find-or-create of spatial containers (ensure_*)
- Relocation of buildings, storeys and objects (move_*)
- Property set editing and explicit deletion

Every operation takes a snapshot (``Dict[str, TreeNode]``) and returns a new
one; the input mapping and its nodes are never modified. New structure is only
ever attached along canonical (parent kind, child kind) pairs:

    Root -> Project -> Site -> Building -> Storey -> ClassGroup -> Object

Usage:
    from asset_registry.core.tree import repair, ensure_site, move_object_to_storey

    snapshot = repair(loaded)
    snapshot, site_id = ensure_site(snapshot, "project")
    snapshot = move_object_to_storey(snapshot, "obj_1", "storey_1")
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx

from ..config.settings import get_setting
from ..errors import StructuralError, ValidationError
from ..models.tree import (
    ALLOWED_CHILD_KIND,
    DEFAULT_CLASS_LABEL,
    ROOT_ID,
    NodeKind,
    PropertySet,
    Snapshot,
    TreeNode,
    root_node,
)
from .identifiers import new_node_id

logger = logging.getLogger(__name__)


# ============================================================================
# Internal helpers
# ============================================================================

def _with(snapshot: Snapshot, *nodes: TreeNode) -> Snapshot:
    """Copy of ``snapshot`` with ``nodes`` inserted or replaced."""
    out = dict(snapshot)
    for node in nodes:
        out[node.id] = node
    return out


def require_node(snapshot: Snapshot, node_id: str, kind: NodeKind) -> TreeNode:
    """Return the node, raising StructuralError if it is missing or of another kind."""
    node = snapshot.get(node_id)
    if node is None:
        raise StructuralError(f"Node '{node_id}' not found")
    if node.kind != kind:
        raise StructuralError(
            f"Node '{node_id}' is a {node.kind.value}, expected {kind.value}"
        )
    return node


def _require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} must not be blank")
    return text


def _attach_new(snapshot: Snapshot, node: TreeNode, parent_id: str) -> Snapshot:
    """Insert a new node under ``parent_id`` along a canonical containment pair."""
    parent = snapshot.get(parent_id)
    if parent is None:
        raise StructuralError(f"Parent '{parent_id}' not found")
    if ALLOWED_CHILD_KIND.get(parent.kind) != node.kind:
        raise StructuralError(
            f"A {node.kind.value} cannot be placed under a {parent.kind.value}"
        )
    if node.id in snapshot:
        raise StructuralError(f"Node '{node.id}' already exists")

    child = node.model_copy(update={"parent_id": parent_id})
    updated_parent = parent.model_copy(update={"children": parent.children + (node.id,)})
    return _with(snapshot, updated_parent, child)


def _default_pset_name() -> str:
    return get_setting('default_pset_name')


# ============================================================================
# Repair
# ============================================================================

def repair(snapshot: Snapshot) -> Snapshot:
    """Re-establish structural integrity after a bulk load.

    1. Drops self-referential, dangling and duplicate ``children`` entries.
    2. Clears ``parent_id`` when that parent no longer exists.
    3. Guarantees a ``root`` node of kind Root without a parent.
    4. Restricts ``root.children`` to Project nodes, re-deriving the list from
       every Project in the map when none of the existing entries qualifies.

    Idempotent: ``repair(repair(s)) == repair(s)``.
    """
    out: Snapshot = {}
    changed = 0

    for node_id, node in snapshot.items():
        seen: Set[str] = set()
        children: List[str] = []
        for child_id in node.children:
            if child_id == node_id or child_id not in snapshot or child_id in seen:
                continue
            seen.add(child_id)
            children.append(child_id)

        update: Dict[str, Any] = {}
        if tuple(children) != node.children:
            update["children"] = tuple(children)
        if node.parent_id is not None and node.parent_id not in snapshot:
            update["parent_id"] = None

        if update:
            changed += 1
            node = node.model_copy(update=update)
        out[node_id] = node

    root = out.get(ROOT_ID)
    if root is None:
        root = root_node()
        changed += 1
    elif root.kind != NodeKind.ROOT or root.parent_id is not None:
        root = root.model_copy(update={"kind": NodeKind.ROOT, "parent_id": None})
        changed += 1

    projects = tuple(
        child_id for child_id in root.children
        if out.get(child_id) is not None and out[child_id].kind == NodeKind.PROJECT
    )
    if not projects:
        projects = tuple(
            n.id for n in out.values() if n.kind == NodeKind.PROJECT and n.id != ROOT_ID
        )
    if projects != root.children:
        root = root.model_copy(update={"children": projects})
        changed += 1
    out[ROOT_ID] = root

    if not changed:
        return snapshot
    logger.debug(f"Repair touched {changed} node(s) of {len(out)}")
    return out


# ============================================================================
# Queries
# ============================================================================

def ancestor_of_kind(snapshot: Snapshot, node_id: str, kind: NodeKind) -> Optional[str]:
    """Return ``node_id`` itself if it has ``kind``, else the nearest such ancestor."""
    visited: Set[str] = set()
    current = snapshot.get(node_id)
    while current is not None and current.id not in visited:
        if current.kind == kind:
            return current.id
        visited.add(current.id)
        current = snapshot.get(current.parent_id) if current.parent_id else None
    return None


def project_of(snapshot: Snapshot, node_id: str) -> Optional[str]:
    """Nearest enclosing Project, falling back to the first Project under root."""
    found = ancestor_of_kind(snapshot, node_id, NodeKind.PROJECT)
    if found is not None:
        return found
    root = snapshot.get(ROOT_ID)
    if root is not None:
        for child_id in root.children:
            child = snapshot.get(child_id)
            if child is not None and child.kind == NodeKind.PROJECT:
                return child_id
    return None


def children_of_kind(snapshot: Snapshot, parent_id: str, kind: NodeKind) -> List[str]:
    parent = snapshot.get(parent_id)
    if parent is None:
        return []
    return [
        child_id for child_id in parent.children
        if child_id in snapshot and snapshot[child_id].kind == kind
    ]


def sites_of_project(snapshot: Snapshot, project_id: str) -> List[str]:
    return children_of_kind(snapshot, project_id, NodeKind.SITE)


def buildings_of_site(snapshot: Snapshot, site_id: str) -> List[str]:
    return children_of_kind(snapshot, site_id, NodeKind.BUILDING)


def storeys_of_building(snapshot: Snapshot, building_id: str) -> List[str]:
    return children_of_kind(snapshot, building_id, NodeKind.STOREY)


def storey_of(snapshot: Snapshot, node_id: str) -> Optional[str]:
    """Storey owning a Storey, ClassGroup or Object node (two levels up at most)."""
    node = snapshot.get(node_id)
    for _ in range(3):
        if node is None:
            return None
        if node.kind == NodeKind.STOREY:
            return node.id
        if node.kind not in (NodeKind.CLASS_GROUP, NodeKind.OBJECT) or not node.parent_id:
            return None
        node = snapshot.get(node.parent_id)
    return None


def objects_under_storey(snapshot: Snapshot, storey_id: str) -> List[TreeNode]:
    """Objects reachable from a storey through its ClassGroups (not deeper)."""
    storey = snapshot.get(storey_id)
    if storey is None:
        return []
    found: List[TreeNode] = []
    for group_id in storey.children:
        group = snapshot.get(group_id)
        if group is None or group.kind != NodeKind.CLASS_GROUP:
            continue
        for object_id in group.children:
            obj = snapshot.get(object_id)
            if obj is not None and obj.kind == NodeKind.OBJECT:
                found.append(obj)
    return found


def visible_order(snapshot: Snapshot) -> List[str]:
    """Depth-first pre-order of ids reachable from root, as a tree view lists them."""
    order: List[str] = []
    visited: Set[str] = set()
    stack = [ROOT_ID]
    while stack:
        node_id = stack.pop()
        if node_id in visited or node_id not in snapshot:
            continue
        visited.add(node_id)
        order.append(node_id)
        stack.extend(reversed(snapshot[node_id].children))
    return order


def object_range(snapshot: Snapshot, anchor_id: str, target_id: str) -> List[str]:
    """Object ids between two nodes (inclusive) in visible order."""
    order = visible_order(snapshot)
    try:
        a, b = order.index(anchor_id), order.index(target_id)
    except ValueError:
        return []
    low, high = min(a, b), max(a, b)
    return [i for i in order[low:high + 1] if snapshot[i].kind == NodeKind.OBJECT]


def existing_tags(snapshot: Snapshot) -> Set[str]:
    """All non-blank Object tags in use."""
    return {
        node.tag for node in snapshot.values()
        if node.kind == NodeKind.OBJECT and node.tag
    }


def to_graph(snapshot: Snapshot) -> nx.DiGraph:
    """Directed parent -> child graph of the snapshot.

    Node attributes carry ``kind`` and ``name``; only ``children`` entries that
    resolve to existing nodes become edges.
    """
    graph = nx.DiGraph()
    for node_id, node in snapshot.items():
        graph.add_node(node_id, kind=node.kind.value, name=node.name)
    for node_id, node in snapshot.items():
        for child_id in node.children:
            if child_id in snapshot:
                graph.add_edge(node_id, child_id)
    return graph


def unreachable_ids(snapshot: Snapshot) -> Set[str]:
    """Ids of map entries that cannot be reached from root through ``children``."""
    graph = to_graph(snapshot)
    if ROOT_ID not in graph:
        return set(graph.nodes)
    reachable = nx.descendants(graph, ROOT_ID) | {ROOT_ID}
    return set(graph.nodes) - reachable


def find_nesting_violations(snapshot: Snapshot) -> List[Tuple[str, str]]:
    """``(parent_id, child_id)`` pairs whose kinds break canonical containment."""
    violations = []
    for node_id, node in snapshot.items():
        for child_id in node.children:
            child = snapshot.get(child_id)
            if child is not None and ALLOWED_CHILD_KIND.get(node.kind) != child.kind:
                violations.append((node_id, child_id))
    return violations


# ============================================================================
# Ensure / add
# ============================================================================

def class_group_id(storey_id: str, class_label: str) -> str:
    """Deterministic ClassGroup id: at most one group per class per storey."""
    return f"{storey_id}__{class_label}"


def ensure_site(snapshot: Snapshot, project_id: str, name: str = "Site A") -> Tuple[Snapshot, str]:
    """Return the project's first Site, creating one if it has none."""
    require_node(snapshot, project_id, NodeKind.PROJECT)
    existing = sites_of_project(snapshot, project_id)
    if existing:
        return snapshot, existing[0]

    site_id = new_node_id("site")
    node = TreeNode(id=site_id, kind=NodeKind.SITE, name=name)
    return _attach_new(snapshot, node, project_id), site_id


def ensure_building(snapshot: Snapshot, site_id: str, name: str = "Building 0") -> Tuple[Snapshot, str]:
    """Return the site's first Building, creating one if it has none."""
    require_node(snapshot, site_id, NodeKind.SITE)
    existing = buildings_of_site(snapshot, site_id)
    if existing:
        return snapshot, existing[0]

    building_id = new_node_id("building")
    node = TreeNode(id=building_id, kind=NodeKind.BUILDING, name=name)
    return _attach_new(snapshot, node, site_id), building_id


def _new_storey(snapshot: Snapshot, building_id: str, name: str) -> Tuple[Snapshot, str]:
    storey_id = new_node_id("storey")
    snapshot = _attach_new(
        snapshot, TreeNode(id=storey_id, kind=NodeKind.STOREY, name=name), building_id
    )
    snapshot, _ = ensure_class_group(snapshot, storey_id, DEFAULT_CLASS_LABEL)
    return snapshot, storey_id


def ensure_storey(snapshot: Snapshot, building_id: str, name: str = "Storey 0") -> Tuple[Snapshot, str]:
    """Return the building's first Storey, creating one (with the proxy group) if none."""
    require_node(snapshot, building_id, NodeKind.BUILDING)
    existing = storeys_of_building(snapshot, building_id)
    if existing:
        return snapshot, existing[0]
    return _new_storey(snapshot, building_id, name)


def ensure_class_group(snapshot: Snapshot, storey_id: str, class_label: str) -> Tuple[Snapshot, str]:
    """Return the storey's group for ``class_label``, creating it if absent."""
    label = _require_text(class_label, "Class label")
    require_node(snapshot, storey_id, NodeKind.STOREY)
    group_id = class_group_id(storey_id, label)
    if group_id in snapshot:
        return snapshot, group_id

    node = TreeNode(id=group_id, kind=NodeKind.CLASS_GROUP, name=label, class_label=label)
    return _attach_new(snapshot, node, storey_id), group_id


def add_site(snapshot: Snapshot, project_id: str) -> Tuple[Snapshot, str]:
    """Always create a new Site named after the current site count."""
    require_node(snapshot, project_id, NodeKind.PROJECT)
    count = len(sites_of_project(snapshot, project_id))
    site_id = new_node_id("site")
    node = TreeNode(id=site_id, kind=NodeKind.SITE, name=f"Site {count}")
    return _attach_new(snapshot, node, project_id), site_id


def add_building(snapshot: Snapshot, site_id: str, name: str = "New Building") -> Tuple[Snapshot, str]:
    """Create a Building under a site together with its first storey."""
    require_node(snapshot, site_id, NodeKind.SITE)
    building_id = new_node_id("building")
    node = TreeNode(id=building_id, kind=NodeKind.BUILDING, name=_require_text(name, "Building name"))
    snapshot = _attach_new(snapshot, node, site_id)
    snapshot, _ = ensure_storey(snapshot, building_id)
    return snapshot, building_id


def add_storey(snapshot: Snapshot, building_id: str) -> Tuple[Snapshot, str]:
    """Always create a new Storey named after the current storey count."""
    require_node(snapshot, building_id, NodeKind.BUILDING)
    count = len(storeys_of_building(snapshot, building_id))
    return _new_storey(snapshot, building_id, f"Storey {count}")


def create_object(
    snapshot: Snapshot,
    storey_id: str,
    name: str,
    tag: Optional[str] = None,
    class_label: str = DEFAULT_CLASS_LABEL,
) -> Tuple[Snapshot, str]:
    """Create one Object in the storey's group for ``class_label``.

    New objects start with an empty default property set.
    """
    object_name = _require_text(name, "Object name")
    snapshot, group_id = ensure_class_group(snapshot, storey_id, class_label)
    object_id = new_node_id("obj")
    node = TreeNode(
        id=object_id,
        kind=NodeKind.OBJECT,
        name=object_name,
        tag=(tag or "").strip() or None,
        class_label=snapshot[group_id].class_label,
        psets=(PropertySet(name=_default_pset_name()),),
    )
    return _attach_new(snapshot, node, group_id), object_id


# ============================================================================
# Moves
# ============================================================================

def _relocate(
    snapshot: Snapshot,
    node_id: str,
    target_id: str,
    node_kind: NodeKind,
    target_kind: NodeKind,
    **changes: Any,
) -> Snapshot:
    """Detach ``node_id`` from its parent and attach it to ``target_id``.

    Returns the input unchanged if either id is missing, a kind does not
    match, or the node already sits under the target.
    """
    node = snapshot.get(node_id)
    target = snapshot.get(target_id)
    if node is None or target is None or node.kind != node_kind or target.kind != target_kind:
        logger.debug(f"Move of '{node_id}' onto '{target_id}' rejected")
        return snapshot
    if node.parent_id == target_id:
        return snapshot

    out = dict(snapshot)
    old_parent = out.get(node.parent_id) if node.parent_id else None
    if old_parent is not None:
        out[old_parent.id] = old_parent.model_copy(
            update={"children": tuple(c for c in old_parent.children if c != node_id)}
        )
    target = out[target_id]
    if node_id not in target.children:
        out[target_id] = target.model_copy(update={"children": target.children + (node_id,)})
    out[node_id] = node.model_copy(update={"parent_id": target_id, **changes})
    return out


def move_building_to_site(snapshot: Snapshot, building_id: str, site_id: str) -> Snapshot:
    return _relocate(snapshot, building_id, site_id, NodeKind.BUILDING, NodeKind.SITE)


def move_storey_to_building(snapshot: Snapshot, storey_id: str, building_id: str) -> Snapshot:
    return _relocate(snapshot, storey_id, building_id, NodeKind.STOREY, NodeKind.BUILDING)


def _kinds_match(snapshot: Snapshot, node_id: str, node_kind: NodeKind,
                 target_id: str, target_kind: NodeKind) -> bool:
    node, target = snapshot.get(node_id), snapshot.get(target_id)
    return (
        node is not None and target is not None
        and node.kind == node_kind and target.kind == target_kind
    )


def move_storey_to_site(snapshot: Snapshot, storey_id: str, site_id: str) -> Snapshot:
    """Move a storey into the site's first building (created if needed)."""
    if not _kinds_match(snapshot, storey_id, NodeKind.STOREY, site_id, NodeKind.SITE):
        return snapshot
    snapshot, building_id = ensure_building(snapshot, site_id)
    return move_storey_to_building(snapshot, storey_id, building_id)


def move_object_to_group(snapshot: Snapshot, object_id: str, group_id: str) -> Snapshot:
    """Move an object into a ClassGroup; the object adopts the group's class."""
    group = snapshot.get(group_id)
    class_label = group.class_label if group is not None else None
    return _relocate(
        snapshot, object_id, group_id, NodeKind.OBJECT, NodeKind.CLASS_GROUP,
        class_label=class_label,
    )


def move_object_to_storey(snapshot: Snapshot, object_id: str, storey_id: str) -> Snapshot:
    """Move an object into the storey's group for the object's own class."""
    if not _kinds_match(snapshot, object_id, NodeKind.OBJECT, storey_id, NodeKind.STOREY):
        return snapshot
    label = snapshot[object_id].class_label or DEFAULT_CLASS_LABEL
    snapshot, group_id = ensure_class_group(snapshot, storey_id, label)
    return move_object_to_group(snapshot, object_id, group_id)


def move_object_to_building(snapshot: Snapshot, object_id: str, building_id: str) -> Snapshot:
    if not _kinds_match(snapshot, object_id, NodeKind.OBJECT, building_id, NodeKind.BUILDING):
        return snapshot
    snapshot, storey_id = ensure_storey(snapshot, building_id)
    return move_object_to_storey(snapshot, object_id, storey_id)


def move_object_to_site(snapshot: Snapshot, object_id: str, site_id: str) -> Snapshot:
    if not _kinds_match(snapshot, object_id, NodeKind.OBJECT, site_id, NodeKind.SITE):
        return snapshot
    snapshot, building_id = ensure_building(snapshot, site_id)
    return move_object_to_building(snapshot, object_id, building_id)


_OBJECT_MOVES = {
    NodeKind.SITE: move_object_to_site,
    NodeKind.BUILDING: move_object_to_building,
    NodeKind.STOREY: move_object_to_storey,
    NodeKind.CLASS_GROUP: move_object_to_group,
}


def move_objects(snapshot: Snapshot, object_ids: Iterable[str], target_id: str) -> Snapshot:
    """Move several objects onto a Site, Building, Storey or ClassGroup."""
    target = snapshot.get(target_id)
    move = _OBJECT_MOVES.get(target.kind) if target is not None else None
    if move is None:
        logger.debug(f"Objects cannot be dropped onto '{target_id}'")
        return snapshot
    for object_id in object_ids:
        snapshot = move(snapshot, object_id, target_id)
    return snapshot


# ============================================================================
# Field edits
# ============================================================================

def rename_node(snapshot: Snapshot, node_id: str, name: str) -> Snapshot:
    new_name = _require_text(name, "Name")
    node = snapshot.get(node_id)
    if node is None:
        raise StructuralError(f"Node '{node_id}' not found")
    return _with(snapshot, node.model_copy(update={"name": new_name}))


def set_tag(snapshot: Snapshot, object_id: str, tag: Optional[str]) -> Snapshot:
    """Set or clear (blank) an object's tag."""
    node = require_node(snapshot, object_id, NodeKind.OBJECT)
    return _with(snapshot, node.model_copy(update={"tag": (tag or "").strip() or None}))


def set_object_classification(snapshot: Snapshot, object_id: str, class_label: str) -> Snapshot:
    """Reclassify an object by moving it to the matching group of its storey."""
    require_node(snapshot, object_id, NodeKind.OBJECT)
    storey_id = storey_of(snapshot, object_id)
    if storey_id is None:
        raise StructuralError(f"Object '{object_id}' is not inside a storey")
    snapshot, group_id = ensure_class_group(snapshot, storey_id, class_label)
    return move_object_to_group(snapshot, object_id, group_id)


def add_property_set(snapshot: Snapshot, object_id: str, pset_name: str) -> Snapshot:
    name = _require_text(pset_name, "Property set name")
    node = require_node(snapshot, object_id, NodeKind.OBJECT)
    if node.pset(name) is not None:
        return snapshot
    return _with(snapshot, node.model_copy(update={"psets": node.psets + (PropertySet(name=name),)}))


def set_property(
    snapshot: Snapshot,
    object_id: str,
    pset_name: str,
    key: str,
    value: Optional[str],
) -> Snapshot:
    """Write one property, creating the property set on first write."""
    name = _require_text(pset_name, "Property set name")
    prop_key = _require_text(key, "Property key")
    node = require_node(snapshot, object_id, NodeKind.OBJECT)
    prop_value = "" if value is None else str(value)

    psets = list(node.psets)
    for index, pset in enumerate(psets):
        if pset.name == name:
            psets[index] = PropertySet(name=name, props={**pset.props, prop_key: prop_value})
            break
    else:
        psets.append(PropertySet(name=name, props={prop_key: prop_value}))

    return _with(snapshot, node.model_copy(update={"psets": tuple(psets)}))


def delete_property(snapshot: Snapshot, object_id: str, pset_name: str, key: str) -> Snapshot:
    """Remove one property; a missing set or key is a no-op."""
    name = _require_text(pset_name, "Property set name")
    prop_key = _require_text(key, "Property key")
    node = require_node(snapshot, object_id, NodeKind.OBJECT)
    pset = node.pset(name)
    if pset is None or prop_key not in pset.props:
        return snapshot

    props = {k: v for k, v in pset.props.items() if k != prop_key}
    psets = tuple(
        PropertySet(name=p.name, props=props) if p.name == name else p
        for p in node.psets
    )
    return _with(snapshot, node.model_copy(update={"psets": psets}))


# ============================================================================
# Deletion
# ============================================================================

def _without(snapshot: Snapshot, removed: Set[str]) -> Snapshot:
    out: Snapshot = {}
    for node_id, node in snapshot.items():
        if node_id in removed:
            continue
        if any(child_id in removed for child_id in node.children):
            node = node.model_copy(
                update={"children": tuple(c for c in node.children if c not in removed)}
            )
        out[node_id] = node
    return out


def delete_node(snapshot: Snapshot, node_id: str) -> Snapshot:
    """Remove a node and its whole subtree from the map."""
    if node_id == ROOT_ID:
        raise StructuralError("The workspace root cannot be deleted")
    if node_id not in snapshot:
        raise StructuralError(f"Node '{node_id}' not found")

    removed: Set[str] = set()
    stack = [node_id]
    while stack:
        current = stack.pop()
        if current in removed or current not in snapshot:
            continue
        removed.add(current)
        stack.extend(snapshot[current].children)

    logger.debug(f"Deleting '{node_id}' with {len(removed) - 1} descendant(s)")
    return _without(snapshot, removed)


def sweep_orphans(snapshot: Snapshot) -> Snapshot:
    """Drop map entries that are no longer reachable from root."""
    orphans = unreachable_ids(snapshot)
    if not orphans:
        return snapshot
    logger.debug(f"Sweeping {len(orphans)} orphaned node(s)")
    return _without(snapshot, orphans)

"""
Bulk editing over a selection of objects.

Every operation skips ids that are missing or not Objects, so a mixed tree
selection can be passed straight through.
"""

import logging
import re
from typing import Iterable, List, Optional, Tuple

from ..config.settings import get_setting
from ..errors import ValidationError
from ..models.tree import DEFAULT_CLASS_LABEL, NodeKind, PropertySet, Snapshot, TreeNode
from ..patterns.tag_engine import CounterMode, TagGenerator, TokenContext
from .identifiers import new_node_id
from .tree import (
    ancestor_of_kind,
    ensure_class_group,
    existing_tags,
    set_object_classification,
    set_property,
    storey_of,
)

logger = logging.getLogger(__name__)


def _objects(snapshot: Snapshot, ids: Iterable[str]) -> List[TreeNode]:
    return [
        snapshot[i] for i in ids
        if i in snapshot and snapshot[i].kind == NodeKind.OBJECT
    ]


def _name_of(snapshot: Snapshot, node_id: Optional[str]) -> Optional[str]:
    node = snapshot.get(node_id) if node_id else None
    return node.name if node is not None else None


def token_context_for(
    snapshot: Snapshot,
    node_id: str,
    class_label: Optional[str] = None,
    custom: str = "",
) -> TokenContext:
    """Tag tokens for a node from its own class and its spatial ancestry.

    Args:
        snapshot: Tree snapshot
        node_id: Object (or Storey, for objects about to be created)
        class_label: Overrides the node's own class label
        custom: Value of the {CUSTOM} token
    """
    node = snapshot.get(node_id)
    label = class_label or (node.class_label if node is not None else None)
    return TokenContext.from_names(
        class_label=label,
        site=_name_of(snapshot, ancestor_of_kind(snapshot, node_id, NodeKind.SITE)),
        building=_name_of(snapshot, ancestor_of_kind(snapshot, node_id, NodeKind.BUILDING)),
        storey=_name_of(snapshot, ancestor_of_kind(snapshot, node_id, NodeKind.STOREY)),
        custom=custom,
    )


def create_objects_batch(
    snapshot: Snapshot,
    storey_id: str,
    count: int,
    class_label: str = DEFAULT_CLASS_LABEL,
    name_pattern: str = "Pump {N}",
    tag_pattern: Optional[str] = None,
    start: int = 1,
    step: int = 1,
    unique: bool = True,
    custom: str = "",
) -> Tuple[Snapshot, List[str]]:
    """
    Create ``count`` objects of one class in a storey.

    Args:
        snapshot: Tree snapshot
        storey_id: Target storey
        count: Number of objects (at least one is created)
        class_label: Classification of every new object
        name_pattern: Name pattern; ``{N}`` is the 1-based item index
        tag_pattern: Tag pattern for the tag engine, or None for untagged objects
        start: First counter value
        step: Counter increment
        unique: Skip tags already used in the snapshot
        custom: Value of the {CUSTOM} token

    Returns:
        Tuple of (new snapshot, created object ids in creation order)

    Raises:
        StructuralError: If the storey does not exist
        PatternExhausted: If no free tag can be found
    """
    count = max(1, int(count))
    snapshot, group_id = ensure_class_group(snapshot, storey_id, class_label)
    group = snapshot[group_id]

    generator = None
    tokens = None
    if tag_pattern is not None and tag_pattern.strip():
        generator = TagGenerator(
            tag_pattern, start=start, step=step, mode=CounterMode.GLOBAL,
            unique=unique, used=existing_tags(snapshot) if unique else None,
        )
        tokens = token_context_for(snapshot, storey_id, class_label=group.class_label, custom=custom)

    pset_name = get_setting('default_pset_name')
    out = dict(snapshot)
    created: List[str] = []
    for index in range(1, count + 1):
        object_id = new_node_id("obj")
        name = name_pattern.replace("{N}", str(index)).strip() or f"Object {index}"
        out[object_id] = TreeNode(
            id=object_id,
            kind=NodeKind.OBJECT,
            name=name,
            tag=generator.next_tag(tokens) if generator is not None else None,
            class_label=group.class_label,
            parent_id=group_id,
            psets=(PropertySet(name=pset_name),),
        )
        created.append(object_id)

    out[group_id] = group.model_copy(update={"children": group.children + tuple(created)})
    logger.debug(f"Created {len(created)} object(s) in '{group_id}'")
    return out, created


def bulk_set_classification(snapshot: Snapshot, ids: Iterable[str], class_label: str) -> Snapshot:
    """Reclassify every selected object that sits inside a storey."""
    for node in _objects(snapshot, ids):
        if storey_of(snapshot, node.id) is None:
            continue
        snapshot = set_object_classification(snapshot, node.id, class_label)
    return snapshot


def bulk_find_replace_names(
    snapshot: Snapshot,
    ids: Iterable[str],
    find: str,
    replace: str,
    use_regex: bool = False,
) -> Snapshot:
    """
    Find/replace in object names.

    With ``use_regex`` the pattern and replacement follow ``re.sub`` syntax.
    An invalid expression leaves the snapshot unchanged.

    Raises:
        ValidationError: If ``find`` is empty
    """
    if not find:
        raise ValidationError("Search text must not be empty")

    compiled = None
    if use_regex:
        try:
            compiled = re.compile(find)
        except re.error as e:
            logger.debug(f"Ignoring rename with invalid expression '{find}': {e}")
            return snapshot

    out = dict(snapshot)
    for node in _objects(snapshot, ids):
        try:
            name = compiled.sub(replace, node.name) if compiled is not None else node.name.replace(find, replace)
        except re.error as e:
            logger.debug(f"Ignoring rename with invalid replacement '{replace}': {e}")
            return snapshot
        if name != node.name:
            out[node.id] = node.model_copy(update={"name": name})
    return out


def bulk_add_property(
    snapshot: Snapshot,
    ids: Iterable[str],
    key: str,
    value: Optional[str],
    pset_name: Optional[str] = None,
) -> Snapshot:
    """Write one property on every selected object."""
    if not (key or "").strip():
        raise ValidationError("Property key must not be blank")
    pset = pset_name or get_setting('default_pset_name')
    for node in _objects(snapshot, ids):
        snapshot = set_property(snapshot, node.id, pset, key, value)
    return snapshot


def apply_tags(
    snapshot: Snapshot,
    ids: Iterable[str],
    pattern: str,
    start: int = 1,
    step: int = 1,
    mode: CounterMode = CounterMode.PER_CLASS,
    unique: bool = True,
    custom: str = "",
) -> Snapshot:
    """
    Re-tag the selected objects in selection order.

    Tokens come from each object's class and ancestry; with ``unique`` every
    tag already present in the snapshot is skipped.

    Raises:
        ValidationError: If the pattern is blank
        PatternExhausted: If no free tag can be found
    """
    generator = TagGenerator(
        pattern, start=start, step=step, mode=mode,
        unique=unique, used=existing_tags(snapshot) if unique else None,
    )
    out = dict(snapshot)
    for node in _objects(snapshot, ids):
        tag = generator.next_tag(token_context_for(snapshot, node.id, custom=custom))
        out[node.id] = node.model_copy(update={"tag": tag})
    return out

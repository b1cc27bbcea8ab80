"""IFC2x3 Exporter for asset registry trees.

This module serializes a tree snapshot into an ISO 10303-21 (STEP physical
file) document using a restricted IFC2X3 vocabulary: spatial structure,
elements, and their property sets. No geometry is written.

Architecture:
    - StepEntityWriter: Numbers entity records in emission order
    - Ifc2x3Exporter: Walks the snapshot and emits records
    - format_text / format_property_value: STEP literal encoding

Emission order:
    1. Owner history, world placement, representation context, units
    2. Project
    3. Sites, buildings and storeys depth-first, each level closed by IFCRELAGGREGATES
    4. Per storey: elements with their property sets, closed by
       IFCRELCONTAINEDINSPATIALSTRUCTURE
"""

import logging
import re
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set, Tuple

from ..config.settings import get_setting, is_enabled
from ..core.classification import normalize_classification
from ..core.identifiers import is_global_id, new_global_id
from ..core.tree import children_of_kind, objects_under_storey
from ..errors import MissingProject
from ..models.tree import ROOT_ID, NodeKind, Snapshot, TreeNode

logger = logging.getLogger(__name__)

SCHEMA_IDENTIFIER = "IFC2X3"
NULL = "$"

_NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")
_BOOLEAN_PATTERN = re.compile(r"^(true|false)$", re.IGNORECASE)


# ============================================================================
# STEP literals
# ============================================================================

def _encode_char(char: str) -> str:
    code = ord(char)
    if code > 0xFFFF:
        return f"\\X4\\{code:08X}\\X0\\"
    return f"\\X2\\{code:04X}\\X0\\"


def _escape(text: str, encode_non_ascii: bool) -> str:
    out = []
    for char in text:
        if char == "\\":
            out.append("\\\\")
        elif char == "'":
            out.append("''")
        elif encode_non_ascii and not (0x20 <= ord(char) <= 0x7E):
            out.append(_encode_char(char))
        else:
            out.append(char)
    return "".join(out)


def format_text(value: Optional[str], encode_non_ascii: bool = True) -> str:
    """STEP string literal, or ``$`` for a blank value.

    Backslash and quote characters are doubled; with ``encode_non_ascii``
    anything outside printable ASCII becomes a ``\\X2\\`` (or ``\\X4\\``) directive.
    """
    if not value:
        return NULL
    return f"'{_escape(value, encode_non_ascii)}'"


def format_property_value(value: Optional[str], encode_non_ascii: bool = True) -> str:
    """Typed IFC value for a property string.

    - blank -> ``$``
    - ``true``/``false`` (any case) -> ``IFCBOOLEAN(.T.)`` / ``IFCBOOLEAN(.F.)``
    - integer literal -> ``IFCINTEGER(n)``
    - decimal literal -> ``IFCREAL(x)``
    - anything else -> ``IFCTEXT('...')``
    """
    raw = (value or "").strip()
    if not raw:
        return NULL
    if _BOOLEAN_PATTERN.match(raw):
        return f"IFCBOOLEAN({'.T.' if raw.lower() == 'true' else '.F.'})"
    if _NUMBER_PATTERN.match(raw):
        if "." in raw:
            return f"IFCREAL({float(raw)!r})"
        return f"IFCINTEGER({int(raw)})"
    return f"IFCTEXT('{_escape(raw, encode_non_ascii)}')"


# ============================================================================
# Entity writer
# ============================================================================

class StepEntityWriter:
    """Assigns entity numbers 1, 2, 3... in emission order.

    Attributes:
        lines: Rendered ``#n=TEXT;`` records
    """

    def __init__(self):
        self._next_id = 1
        self.lines: List[str] = []

    def add(self, text: str) -> int:
        """Append a record and return its entity number."""
        entity_id = self._next_id
        self._next_id += 1
        self.lines.append(f"#{entity_id}={text};")
        return entity_id

    @staticmethod
    def ref(entity_id: Optional[int]) -> str:
        return f"#{entity_id}" if entity_id else NULL

    @staticmethod
    def ref_list(entity_ids: Iterable[int]) -> str:
        return "(" + ",".join(f"#{i}" for i in entity_ids) + ")"

    def render(self) -> str:
        return "\n".join(self.lines)

    def __len__(self) -> int:
        return len(self.lines)


# ============================================================================
# Exporter
# ============================================================================

class Ifc2x3Exporter:
    """Exporter from tree snapshots to IFC2x3 STEP text.

    Usage:
        exporter = Ifc2x3Exporter(author="Jane Doe")
        text = exporter.export(snapshot, file_name="plant.ifc")

    GlobalIds are minted per export through ``guid_factory``. Nodes that came
    from an import reuse their recorded GlobalId while the
    ``preserve_source_global_ids`` flag is on.
    """

    def __init__(
        self,
        author: Optional[str] = None,
        organization: Optional[str] = None,
        application: Optional[str] = None,
        guid_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize exporter.

        Args:
            author: FILE_NAME author (defaults to the ``export_author`` setting)
            organization: FILE_NAME organization (``export_organization`` setting)
            application: Originating system and preprocessor name
            guid_factory: Callable returning new GlobalIds
            clock: Callable returning the export time
        """
        self.author = author or get_setting('export_author')
        self.organization = organization or get_setting('export_organization')
        self.application = application or get_setting('export_application')
        self.guid_factory = guid_factory or new_global_id
        self.clock = clock or datetime.now

        self._writer = StepEntityWriter()
        self._used_guids: Set[str] = set()
        self._owner_history: Optional[int] = None
        self._encode = True

    def export(self, snapshot: Snapshot, file_name: str = "template.ifc", project_id: Optional[str] = None) -> str:
        """Serialize one project of the snapshot.

        Args:
            snapshot: Tree snapshot
            file_name: Name written to the FILE_NAME header
            project_id: Project to export; defaults to the first Project under root

        Returns:
            Complete STEP document

        Raises:
            MissingProject: If there is no Project to export
        """
        project = self._select_project(snapshot, project_id)

        # Fresh state for every export
        self._writer = StepEntityWriter()
        self._used_guids = set()
        self._encode = is_enabled('encode_non_ascii_text')
        now = self.clock()

        world_placement, context, units = self._write_common(int(now.timestamp()))
        w = self._writer

        project_entity = w.add(
            f"IFCPROJECT({self._guid_literal(project)},{w.ref(self._owner_history)},"
            f"{self._text(project.name or 'IfcProject')},$,$,$,$,({w.ref(context)}),{w.ref(units)})"
        )

        storeys = self._write_spatial_structure(snapshot, project, project_entity, world_placement)
        element_count = 0
        for storey, storey_entity, storey_placement in storeys:
            element_count += self._write_storey_elements(snapshot, storey, storey_entity, storey_placement)

        logger.debug(
            f"Exported project '{project.id}': {len(storeys)} storeys, "
            f"{element_count} elements, {len(w)} entities"
        )
        return f"{self._header(file_name, now)}\n{w.render()}\n{self._footer()}"

    # ------------------------------------------------------------------
    # Selection and helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _select_project(snapshot: Snapshot, project_id: Optional[str]) -> TreeNode:
        if project_id is not None:
            node = snapshot.get(project_id)
            if node is None or node.kind != NodeKind.PROJECT:
                raise MissingProject(f"Node '{project_id}' is not a Project")
            return node

        for child_id in children_of_kind(snapshot, ROOT_ID, NodeKind.PROJECT):
            return snapshot[child_id]
        for node in snapshot.values():
            if node.kind == NodeKind.PROJECT:
                return node
        raise MissingProject()

    def _text(self, value: Optional[str]) -> str:
        return format_text(value, self._encode)

    def _new_guid(self) -> str:
        guid = self.guid_factory()
        self._used_guids.add(guid)
        return f"'{guid}'"

    def _guid_literal(self, node: TreeNode) -> str:
        """GlobalId of a node, reusing an imported one when allowed and still unused."""
        source_guid = node.source.global_id if node.source is not None else None
        if (
            is_enabled('preserve_source_global_ids')
            and is_global_id(source_guid)
            and source_guid not in self._used_guids
        ):
            self._used_guids.add(source_guid)
            return f"'{source_guid}'"
        return self._new_guid()

    def _write_common(self, epoch: int) -> Tuple[int, int, int]:
        w = self._writer
        self._owner_history = w.add(f"IFCOWNERHISTORY($,$,$,.ADDED.,{epoch},$,$,{epoch})")

        origin = w.add("IFCCARTESIANPOINT((0.,0.,0.))")
        axis = w.add(f"IFCAXIS2PLACEMENT3D({w.ref(origin)},$,$)")
        world_placement = w.add(f"IFCLOCALPLACEMENT($,{w.ref(axis)})")

        context = w.add(f"IFCGEOMETRICREPRESENTATIONCONTEXT($,'Model',3,1.0E-5,{w.ref(axis)},$)")

        # IFC2x3: IFCSIUNIT(Dimensions, UnitType, Prefix, Name)
        length_unit = w.add("IFCSIUNIT($,.LENGTHUNIT.,$,.METRE.)")
        units = w.add(f"IFCUNITASSIGNMENT(({w.ref(length_unit)}))")
        return world_placement, context, units

    def _local_placement(self, relative_to: int) -> int:
        w = self._writer
        point = w.add("IFCCARTESIANPOINT((0.,0.,0.))")
        axis = w.add(f"IFCAXIS2PLACEMENT3D({w.ref(point)},$,$)")
        return w.add(f"IFCLOCALPLACEMENT({w.ref(relative_to)},{w.ref(axis)})")

    def _aggregate(self, parent_entity: int, child_entities: List[int]) -> None:
        if not child_entities:
            return
        w = self._writer
        w.add(
            f"IFCRELAGGREGATES({self._new_guid()},{w.ref(self._owner_history)},$,$,"
            f"{w.ref(parent_entity)},{w.ref_list(child_entities)})"
        )

    # ------------------------------------------------------------------
    # Spatial structure
    # ------------------------------------------------------------------

    def _spatial(self, entity: str, node: TreeNode, parent_placement: int, tail: str) -> Tuple[int, int]:
        w = self._writer
        placement = self._local_placement(parent_placement)
        entity_id = w.add(
            f"{entity}({self._guid_literal(node)},{w.ref(self._owner_history)},{self._text(node.name)},"
            f"$,$,{w.ref(placement)},{tail})"
        )
        return entity_id, placement

    def _write_spatial_structure(
        self,
        snapshot: Snapshot,
        project: TreeNode,
        project_entity: int,
        world_placement: int,
    ) -> List[Tuple[TreeNode, int, int]]:
        """Emit sites, buildings and storeys; return storeys in emission order."""
        storeys: List[Tuple[TreeNode, int, int]] = []
        site_entities = []
        for site_id in children_of_kind(snapshot, project.id, NodeKind.SITE):
            site_entity, site_placement = self._spatial(
                "IFCSITE", snapshot[site_id], world_placement, "$,$,.ELEMENT.,$,$,$,$,$"
            )
            site_entities.append(site_entity)

            building_entities = []
            for building_id in children_of_kind(snapshot, site_id, NodeKind.BUILDING):
                building_entity, building_placement = self._spatial(
                    "IFCBUILDING", snapshot[building_id], site_placement, "$,$,.ELEMENT.,$,$,$"
                )
                building_entities.append(building_entity)

                storey_entities = []
                for storey_id in children_of_kind(snapshot, building_id, NodeKind.STOREY):
                    storey_entity, storey_placement = self._spatial(
                        "IFCBUILDINGSTOREY", snapshot[storey_id], building_placement, "$,$,.ELEMENT.,$"
                    )
                    storey_entities.append(storey_entity)
                    storeys.append((snapshot[storey_id], storey_entity, storey_placement))
                self._aggregate(building_entity, storey_entities)
            self._aggregate(site_entity, building_entities)
        self._aggregate(project_entity, site_entities)
        return storeys

    # ------------------------------------------------------------------
    # Elements
    # ------------------------------------------------------------------

    def _write_storey_elements(self, snapshot: Snapshot, storey: TreeNode,
                               storey_entity: int, storey_placement: int) -> int:
        objects = objects_under_storey(snapshot, storey.id)
        if not objects:
            return 0

        w = self._writer
        element_entities = []
        for obj in objects:
            placement = self._local_placement(storey_placement)
            entity = normalize_classification(obj.class_label)
            # (GlobalId, OwnerHistory, Name, Description, ObjectType, ObjectPlacement, Representation, Tag)
            element = w.add(
                f"{entity}({self._guid_literal(obj)},{w.ref(self._owner_history)},{self._text(obj.name)},"
                f"$,{self._text(obj.class_label)},{w.ref(placement)},$,{self._text(obj.tag)})"
            )
            element_entities.append(element)
            self._write_property_sets(element, obj)

        w.add(
            f"IFCRELCONTAINEDINSPATIALSTRUCTURE({self._new_guid()},{w.ref(self._owner_history)},$,$,"
            f"{w.ref_list(element_entities)},{w.ref(storey_entity)})"
        )
        return len(element_entities)

    def _write_property_sets(self, element: int, obj: TreeNode) -> None:
        w = self._writer
        for pset in obj.psets:
            pset_name = pset.name.strip()
            if not pset_name:
                continue
            entries = [(k, v) for k, v in pset.props.items() if k.strip()]
            if not entries:
                continue

            value_entities = [
                w.add(
                    f"IFCPROPERTYSINGLEVALUE({self._text(key)},$,"
                    f"{format_property_value(value, self._encode)},$)"
                )
                for key, value in entries
            ]
            pset_entity = w.add(
                f"IFCPROPERTYSET({self._new_guid()},{w.ref(self._owner_history)},"
                f"{self._text(pset_name)},$,{w.ref_list(value_entities)})"
            )
            w.add(
                f"IFCRELDEFINESBYPROPERTIES({self._new_guid()},{w.ref(self._owner_history)},$,$,"
                f"({w.ref(element)}),{w.ref(pset_entity)})"
            )

    # ------------------------------------------------------------------
    # Header and footer
    # ------------------------------------------------------------------

    def _header(self, file_name: str, now: datetime) -> str:
        timestamp = now.strftime("%Y-%m-%dT%H:%M:%S")
        text = self._text
        return "\n".join([
            "ISO-10303-21;",
            "HEADER;",
            "FILE_DESCRIPTION(('ViewDefinition [CoordinationView]'),'2;1');",
            f"FILE_NAME({text(file_name)},{text(timestamp)},({text(self.author)}),"
            f"({text(self.organization)}),{text(self.application)},{text(self.application)},'');",
            f"FILE_SCHEMA(('{SCHEMA_IDENTIFIER}'));",
            "ENDSEC;",
            "DATA;",
        ])

    @staticmethod
    def _footer() -> str:
        return "ENDSEC;\nEND-ISO-10303-21;"


def export_ifc2x3(
    snapshot: Snapshot,
    file_name: str = "template.ifc",
    project_id: Optional[str] = None,
    **exporter_options,
) -> str:
    """Convenience function to export a snapshot to IFC2x3 text.

    Example:
        >>> from asset_registry.models import seed_snapshot
        >>> text = export_ifc2x3(seed_snapshot(), "plant.ifc")
        >>> text.startswith("ISO-10303-21;")
        True
    """
    exporter = Ifc2x3Exporter(**exporter_options)
    return exporter.export(snapshot, file_name=file_name, project_id=project_id)

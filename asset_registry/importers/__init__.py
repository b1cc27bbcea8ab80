"""Importers merging external models into asset registry trees."""

from .spatial_importer import (
    AttributeSource,
    HierarchyNode,
    ImportResult,
    SpatialImporter,
    StaticAttributeSource,
    StructuralDiff,
    import_hierarchy,
    merge_property_sets,
    parse_property_sets,
)

__all__ = [
    "AttributeSource",
    "HierarchyNode",
    "ImportResult",
    "SpatialImporter",
    "StaticAttributeSource",
    "StructuralDiff",
    "import_hierarchy",
    "merge_property_sets",
    "parse_property_sets",
]

"""Exporters for asset registry trees."""

from .ifc_exporter import (
    Ifc2x3Exporter,
    StepEntityWriter,
    export_ifc2x3,
    format_property_value,
    format_text,
)

__all__ = [
    "Ifc2x3Exporter",
    "StepEntityWriter",
    "export_ifc2x3",
    "format_property_value",
    "format_text",
]

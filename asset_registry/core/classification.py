"""Element classifications understood by the exporter and importer.

A small allow-list keeps exports readable by conservative IFC2x3 viewers:
anything outside it is written as ``IFCBUILDINGELEMENTPROXY``. If you add a
class to the editing surface, add it here too or it falls back to proxy.
"""

from typing import Dict, Optional

PROXY_ENTITY = "IFCBUILDINGELEMENTPROXY"
PROXY_LABEL = "IfcBuildingElementProxy"
ENTITY_PREFIX = "IFC"

# Upper-case entity name -> schema-cased label
ALLOWED_CLASSIFICATIONS: Dict[str, str] = {
    "IFCBUILDINGELEMENTPROXY": "IfcBuildingElementProxy",
    "IFCVALVE": "IfcValve",
    "IFCPUMP": "IfcPump",
    "IFCTANK": "IfcTank",
    "IFCPIPESEGMENT": "IfcPipeSegment",
    "IFCPIPEFITTING": "IfcPipeFitting",
    "IFCFLOWMETER": "IfcFlowMeter",
    "IFCACTUATOR": "IfcActuator",
    "IFCSENSOR": "IfcSensor",
    "IFCCABLECARRIERSEGMENT": "IfcCableCarrierSegment",
}

CLASS_LABEL_OPTIONS = tuple(ALLOWED_CLASSIFICATIONS.values())


def normalize_classification(label: Optional[str]) -> str:
    """Map a classification label to an allow-listed entity name.

    ``"IfcValve"`` becomes ``"IFCVALVE"``; blank labels, labels without the
    ``IFC`` prefix and labels outside the allow-list become the proxy entity.
    """
    entity = (label or "").strip().upper()
    if not entity.startswith(ENTITY_PREFIX):
        return PROXY_ENTITY
    return entity if entity in ALLOWED_CLASSIFICATIONS else PROXY_ENTITY


def classification_label(label: Optional[str]) -> str:
    """Schema-cased label for a type tag or label (``"IFCPUMP"`` -> ``"IfcPump"``)."""
    return ALLOWED_CLASSIFICATIONS[normalize_classification(label)]

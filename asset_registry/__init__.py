"""Hierarchical asset registry for building and plant facilities.

Maintains a spatial tree (Project, Site, Building, Storey, class groups and
assets) and exchanges it with IFC2x3 STEP files.
"""

__version__ = "0.1.0"

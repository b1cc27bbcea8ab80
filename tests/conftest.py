"""Shared fixtures for asset registry tests."""

import pytest

from asset_registry.config.settings import FEATURE_FLAGS
from asset_registry.core.tree import create_object, set_property
from asset_registry.models.tree import seed_snapshot


@pytest.fixture
def seeded():
    """Starter workspace: root -> project -> site_1 -> building_1 -> storey_1."""
    return seed_snapshot()


@pytest.fixture
def plant(seeded):
    """Starter workspace with one tagged valve carrying a property."""
    snapshot, valve_id = create_object(seeded, "storey_1", "V-1", tag="V-1", class_label="IfcValve")
    snapshot = set_property(snapshot, valve_id, "Pset_AssetCustom", "System", "Piping")
    return snapshot, valve_id


@pytest.fixture
def restore_flags():
    """Restore feature flags changed by a test."""
    saved = dict(FEATURE_FLAGS)
    yield
    FEATURE_FLAGS.clear()
    FEATURE_FLAGS.update(saved)

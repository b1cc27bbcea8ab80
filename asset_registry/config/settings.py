"""
Configuration and Feature Flags for the Asset Registry

This module provides feature flags and tunable settings for the registry
core. Values are read from environment variables at import time so a
deployment can change behavior without code changes.

Usage:
    from asset_registry.config.settings import is_enabled, get_setting

    if is_enabled('preserve_source_global_ids'):
        guid = node.source.global_id

    ceiling = get_setting('tag_max_attempts')

Environment Variables:
    REGISTRY_PRESERVE_GLOBAL_IDS=true/false - Reuse imported GlobalIds on export
    REGISTRY_ENCODE_NON_ASCII=true/false    - Encode non-ASCII text as \\X2\\ in STEP output
    REGISTRY_TAG_MAX_ATTEMPTS=<int>         - Collision retry ceiling of the tag engine
    REGISTRY_EXPORT_AUTHOR=<text>           - FILE_NAME author written to exports
    REGISTRY_EXPORT_ORGANIZATION=<text>     - FILE_NAME organization written to exports
"""

import os
from typing import Any, Dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got '{raw}'")


# Feature flags with environment variable overrides
FEATURE_FLAGS: Dict[str, bool] = {
    # Exporter reuses GlobalIds recorded by the importer instead of minting new ones
    'preserve_source_global_ids': _env_flag('REGISTRY_PRESERVE_GLOBAL_IDS', 'true'),

    # Exporter encodes characters outside printable ASCII with \X2\...\X0\
    'encode_non_ascii_text': _env_flag('REGISTRY_ENCODE_NON_ASCII', 'true'),
}

# Tunable settings
SETTINGS: Dict[str, Any] = {
    'tag_max_attempts': _env_int('REGISTRY_TAG_MAX_ATTEMPTS', 10000),
    'default_pset_name': 'Pset_AssetCustom',
    'export_author': os.getenv('REGISTRY_EXPORT_AUTHOR', 'IFC-Coordinator'),
    'export_organization': os.getenv('REGISTRY_EXPORT_ORGANIZATION', 'IFC-Coordinator'),
    'export_application': 'IFC-Coordinator',
}


def is_enabled(flag: str) -> bool:
    """
    Check if a feature flag is enabled.

    Args:
        flag: Feature flag name (e.g., 'preserve_source_global_ids')

    Returns:
        True if flag is enabled, False otherwise

    Raises:
        KeyError: If flag name is not recognized

    Example:
        >>> is_enabled('encode_non_ascii_text')
        True  # Default
    """
    if flag not in FEATURE_FLAGS:
        available = ', '.join(FEATURE_FLAGS.keys())
        raise KeyError(
            f"Unknown feature flag: '{flag}'. "
            f"Available flags: {available}"
        )

    return FEATURE_FLAGS[flag]


def get_all_flags() -> Dict[str, bool]:
    """
    Get all feature flags and their current state.

    Returns:
        Dictionary of flag names to boolean values
    """
    return FEATURE_FLAGS.copy()


def set_flag(flag: str, enabled: bool) -> None:
    """
    Programmatically set a feature flag (for testing only).

    Args:
        flag: Feature flag name
        enabled: True to enable, False to disable

    Warning:
        This is for testing only. In production, use environment variables.
    """
    if flag not in FEATURE_FLAGS:
        available = ', '.join(FEATURE_FLAGS.keys())
        raise KeyError(
            f"Unknown feature flag: '{flag}'. "
            f"Available flags: {available}"
        )

    FEATURE_FLAGS[flag] = enabled


def get_setting(name: str) -> Any:
    """
    Look up a tunable setting.

    Args:
        name: Setting name (e.g., 'tag_max_attempts')

    Returns:
        The configured value

    Raises:
        KeyError: If setting name is not recognized
    """
    if name not in SETTINGS:
        available = ', '.join(SETTINGS.keys())
        raise KeyError(
            f"Unknown setting: '{name}'. "
            f"Available settings: {available}"
        )

    return SETTINGS[name]

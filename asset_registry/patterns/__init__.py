"""Pattern engine for generating asset tags."""

from .tag_engine import (
    CounterMode,
    TagGenerator,
    TokenContext,
    generate_tags,
    pattern_width,
    render_pattern,
    shorten_classification,
)

__all__ = [
    "CounterMode",
    "TagGenerator",
    "TokenContext",
    "generate_tags",
    "pattern_width",
    "render_pattern",
    "shorten_classification",
]

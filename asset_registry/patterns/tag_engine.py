"""
Pattern/Tag engine for asset tags.

Handles token substitution in tag patterns with support for:
- Context tokens: {CLASS}, {SITE}, {BLDG}, {STRY}, {CUSTOM}
- Counter: {N} (unpadded) or {N:width} (zero-padded)
- Counter modes: one global counter, or one counter per class
- Uniqueness against a set of labels already in use, with a bounded retry

Example:
    >>> generate_tags("{CLASS}-{N:3}", [TokenContext(CLASS="PUMP")] * 3)
    ['PUMP-001', 'PUMP-002', 'PUMP-003']
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from ..config.settings import get_setting
from ..errors import PatternExhausted, ValidationError

logger = logging.getLogger(__name__)

_COUNTER_TOKEN = re.compile(r"\{N(?::(\d+))?\}")
_WHITESPACE = re.compile(r"\s+")
_CLASS_PREFIX = re.compile(r"^Ifc", re.IGNORECASE)

# Recognized substrings -> short codes, first match wins
_SHORT_CODES = (
    ("pump", "PUMP"),
    ("valve", "VALVE"),
    ("tank", "TANK"),
    ("pipe", "PIPE"),
    ("proxy", "PROXY"),
)


class CounterMode(str, Enum):
    """How the {N} counter advances across a batch."""
    GLOBAL = "global"
    PER_CLASS = "perClass"


def shorten_classification(label: Optional[str]) -> str:
    """Short class code for the {CLASS} token (``IfcPipeSegment`` -> ``PIPE``)."""
    text = _CLASS_PREFIX.sub("", label or "IfcBuildingElementProxy")
    lowered = text.lower()
    for needle, code in _SHORT_CODES:
        if needle in lowered:
            return code
    return text.upper()


def _squash(value: Optional[str]) -> str:
    return _WHITESPACE.sub("", value or "")


@dataclass(frozen=True)
class TokenContext:
    """Values for the context tokens of one tag.

    All values are stored with whitespace removed.
    """

    CLASS: str = "PROXY"
    SITE: str = "SITE"
    BLDG: str = "BLDG"
    STRY: str = "STRY"
    CUSTOM: str = ""

    def __post_init__(self):
        for name in ("CLASS", "SITE", "BLDG", "STRY", "CUSTOM"):
            object.__setattr__(self, name, _squash(getattr(self, name)))

    @classmethod
    def from_names(
        cls,
        class_label: Optional[str] = None,
        site: Optional[str] = None,
        building: Optional[str] = None,
        storey: Optional[str] = None,
        custom: Optional[str] = None,
    ) -> "TokenContext":
        """Build a context from raw node names; missing names use the token's own name."""
        return cls(
            CLASS=shorten_classification(class_label),
            SITE=site if site is not None else "SITE",
            BLDG=building if building is not None else "BLDG",
            STRY=storey if storey is not None else "STRY",
            CUSTOM=custom or "",
        )

    def as_dict(self) -> Dict[str, str]:
        return {
            "CLASS": self.CLASS,
            "SITE": self.SITE,
            "BLDG": self.BLDG,
            "STRY": self.STRY,
            "CUSTOM": self.CUSTOM,
        }


def pattern_width(pattern: str) -> int:
    """Padding width of the first {N...} token, 0 when unpadded or absent."""
    match = _COUNTER_TOKEN.search(pattern)
    if match is None or match.group(1) is None:
        return 0
    return int(match.group(1))


def render_pattern(pattern: str, tokens: TokenContext, n: int) -> str:
    """
    Substitute every token of ``pattern`` once.

    Args:
        pattern: Pattern such as ``{CLASS}-{STRY}-{N:4}``
        tokens: Context token values
        n: Counter value

    Returns:
        Rendered label; every {N} occurrence uses the first one's width
    """
    out = pattern
    for name, value in tokens.as_dict().items():
        out = out.replace("{" + name + "}", value)

    width = pattern_width(pattern)
    number = str(n).zfill(width) if width > 0 else str(n)
    return _COUNTER_TOKEN.sub(number, out)


class TagGenerator:
    """Stateful tag generator for one batch.

    Counters live for the lifetime of the generator; each ``next_tag`` call
    advances the counter of the tag's class (or the shared counter) by
    ``step``, and again on every collision with an already-used label.
    """

    def __init__(
        self,
        pattern: str,
        start: int = 1,
        step: int = 1,
        mode: CounterMode = CounterMode.GLOBAL,
        unique: bool = True,
        used: Optional[Iterable[str]] = None,
        max_attempts: Optional[int] = None,
    ):
        self.pattern = (pattern or "").strip()
        if not self.pattern:
            raise ValidationError("Tag pattern must not be blank")

        self.start = start
        self.step = step
        self.mode = CounterMode(mode)
        self.unique = unique
        self.used: Set[str] = set(used or ())
        self.max_attempts = max_attempts if max_attempts is not None else get_setting('tag_max_attempts')

        self._global_counter = start
        self._class_counters: Dict[str, int] = {}

    def _next_number(self, class_key: str) -> int:
        if self.mode == CounterMode.GLOBAL:
            n = self._global_counter
            self._global_counter += self.step
            return n
        n = self._class_counters.get(class_key, self.start)
        self._class_counters[class_key] = n + self.step
        return n

    def next_tag(self, tokens: TokenContext) -> str:
        """
        Render the next free label for ``tokens``.

        Raises:
            PatternExhausted: If no unused label turns up within ``max_attempts`` renders
        """
        candidate = render_pattern(self.pattern, tokens, self._next_number(tokens.CLASS))
        if not self.unique:
            return candidate

        attempts = 1
        while candidate in self.used:
            if attempts >= self.max_attempts:
                raise PatternExhausted(self.pattern, attempts, candidate)
            candidate = render_pattern(self.pattern, tokens, self._next_number(tokens.CLASS))
            attempts += 1

        if attempts > 1:
            logger.debug(f"Tag '{candidate}' found after {attempts} attempts")
        self.used.add(candidate)
        return candidate


def generate_tags(
    pattern: str,
    contexts: Iterable[TokenContext],
    start: int = 1,
    step: int = 1,
    mode: CounterMode = CounterMode.GLOBAL,
    unique: bool = False,
    used: Optional[Iterable[str]] = None,
    max_attempts: Optional[int] = None,
) -> List[str]:
    """Generate one tag per context, in order."""
    generator = TagGenerator(
        pattern, start=start, step=step, mode=mode,
        unique=unique, used=used, max_attempts=max_attempts,
    )
    return [generator.next_tag(tokens) for tokens in contexts]

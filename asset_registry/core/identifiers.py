"""Identifier codec for IFC GlobalIds and local tree ids.

IFC GlobalIds are 128-bit UUIDs compressed into 22 characters of a 64-symbol
alphabet, six bits per character, most significant first. 22 x 6 = 132 bits,
so the leading character only ever carries the top two bits of the value.
"""

import re
import uuid
from typing import Union

from ..errors import InvalidIdentifier

GUID_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz_$"
GUID_LENGTH = 22

_HEX_PATTERN = re.compile(r"^[0-9a-fA-F]{32}$")
_GUID_PATTERN = re.compile(r"^[0-3][0-9A-Za-z_$]{21}$")


def new_uuid() -> uuid.UUID:
    """Return a fresh random UUID drawn from the OS CSPRNG."""
    return uuid.uuid4()


def compress(value: Union[uuid.UUID, str]) -> str:
    """Compress a 128-bit UUID into a 22-character IFC GlobalId.

    Args:
        value: ``uuid.UUID`` or hex text; ``-`` separators are ignored

    Returns:
        22-character identifier

    Raises:
        InvalidIdentifier: If the input is not exactly 32 hex digits
    """
    if isinstance(value, uuid.UUID):
        number = value.int
    elif isinstance(value, str):
        hex_text = value.replace("-", "")
        if not _HEX_PATTERN.match(hex_text):
            raise InvalidIdentifier(value)
        number = int(hex_text, 16)
    else:
        raise InvalidIdentifier(value)

    digits = []
    for position in range(GUID_LENGTH):
        shift = (GUID_LENGTH - 1 - position) * 6
        digits.append(GUID_ALPHABET[(number >> shift) & 0x3F])
    return "".join(digits)


def new_global_id() -> str:
    """Mint a new IFC GlobalId."""
    return compress(new_uuid())


def is_global_id(text: object) -> bool:
    """Check whether ``text`` is a well-formed compressed GlobalId."""
    return isinstance(text, str) and bool(_GUID_PATTERN.match(text))


def new_node_id(prefix: str) -> str:
    """Mint a local tree node id such as ``obj_3f2a9c1d7b04``."""
    return f"{prefix}_{new_uuid().hex[:12]}"

"""Typed failures raised by the registry core.

The core raises; it does not log or prompt. Presenting a failure to a user is
the host's job (see ``tools.registry_tools`` for the MCP envelope).
"""


class RegistryError(Exception):
    """Base exception for registry errors."""
    pass


class ValidationError(RegistryError):
    """A required field is blank (empty name, pattern, key...). Nothing was changed."""
    pass


class StructuralError(RegistryError):
    """Operation target is missing or of an incompatible kind. Nothing was changed."""
    pass


class MissingProject(StructuralError):
    """The snapshot has no Project node to export."""

    def __init__(self, message: str = "No Project node found (kind=Project)"):
        super().__init__(message)


class FormatError(RegistryError):
    """Malformed input: identifier text, hierarchy payload or persisted snapshot."""
    pass


class InvalidIdentifier(FormatError):
    """Identifier input is not exactly 128 bits (32 hex digits)."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(
            f"Identifier must be 32 hex characters after removing separators, got {value!r}"
        )


class ExhaustionError(RegistryError):
    """A bounded search ran out of attempts."""
    pass


class PatternExhausted(ExhaustionError):
    """The tag engine found no unused label within the attempt ceiling."""

    def __init__(self, pattern: str, attempts: int, last_candidate: str):
        self.pattern = pattern
        self.attempts = attempts
        self.last_candidate = last_candidate
        super().__init__(
            f"No unique label for pattern '{pattern}' after {attempts} attempts "
            f"(last candidate '{last_candidate}')"
        )


class ImportCancelled(RegistryError):
    """The host cancelled an in-flight import; no partial result was kept."""
    pass


class ConcurrentModification(RegistryError):
    """The workspace changed between reading a snapshot and swapping in a result."""

    def __init__(self, workspace_id: str, expected_revision: int, actual_revision: int):
        self.workspace_id = workspace_id
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision
        super().__init__(
            f"Workspace {workspace_id} was modified "
            f"(expected revision {expected_revision}, got {actual_revision})"
        )

"""Error taxonomy for ORC parsing.

Exceptions that can be raised inside a decode worker keep every constructor
argument in ``args`` so they survive a round trip through a process pool.
"""
from dataclasses import dataclass

from orc_ingest.domain import NativeKind, ResolvedType


class OrcParseError(Exception):
    pass


class CorruptFileError(OrcParseError):
    def __init__(self, path: str, reason: str):
        super().__init__(path, reason)
        self.path = path
        self.reason = reason

    def __str__(self) -> str:
        return f"Corrupt ORC file {self.path}: {self.reason}"


class EmptyFileError(OrcParseError):
    """The file holds at most the ORC header: zero rows, zero columns."""

    def __init__(self, path: str):
        super().__init__(path)
        self.path = path

    def __str__(self) -> str:
        return f"ORC file {self.path} contains a header but no data"


class InconsistentStripeSchemaError(OrcParseError):
    def __init__(self, path: str, stripe_index: int, expected: tuple[str, ...], found: tuple[str, ...]):
        super().__init__(path, stripe_index, expected, found)
        self.path = path
        self.stripe_index = stripe_index
        self.expected = expected
        self.found = found

    def __str__(self) -> str:
        return (
            f"Stripe {self.stripe_index} of {self.path} declares columns {list(self.found)}, "
            f"expected {list(self.expected)}. Files with differing column sets per stripe are not supported."
        )


class StripeDecodeError(OrcParseError):
    def __init__(self, path: str, stripe_index: int, reason: str):
        super().__init__(path, stripe_index, reason)
        self.path = path
        self.stripe_index = stripe_index
        self.reason = reason

    def __str__(self) -> str:
        return f"Failed to decode stripe {self.stripe_index} of {self.path}: {self.reason}"


class FileUnreadableError(OSError):
    pass


class ConfigurationFrozenError(ValueError):
    pass


class ConfigurationMismatchError(ValueError):
    pass


@dataclass(frozen=True)
class UnsupportedTypeOverride:
    """
    A rejected per-column type override.

    Collected during setup (never raised); the column keeps its inferred type and
    the message is echoed verbatim as a decode job warning.
    """
    column_index: int
    column_name: str
    native_kind: NativeKind
    requested: ResolvedType
    fallback: ResolvedType
    reason: str

    def __str__(self) -> str:
        return (
            f"Unsupported type override ({self.native_kind.label} -> {self.requested.label}). "
            f"Column {self.column_name} will be parsed as {self.fallback.label}"
        )

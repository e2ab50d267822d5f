from dataclasses import dataclass

from orc_ingest.domain import ColumnDescriptor, NativeKind, ResolvedType


_NUMERIC_OR_BAD = frozenset({ResolvedType.NUMERIC, ResolvedType.BAD})
_TIME_OR_BAD = frozenset({ResolvedType.TIME, ResolvedType.BAD})

# native kind -> resolved types the column may be overridden to
COMPATIBLE_OVERRIDES: dict[NativeKind, frozenset[ResolvedType]] = {
    NativeKind.INTEGER: _NUMERIC_OR_BAD,
    NativeKind.FLOAT: _NUMERIC_OR_BAD,
    NativeKind.BOOLEAN: _NUMERIC_OR_BAD,
    NativeKind.DECIMAL: _NUMERIC_OR_BAD,
    NativeKind.STRING: frozenset({ResolvedType.CATEGORICAL, ResolvedType.STRING, ResolvedType.BAD}),
    NativeKind.BINARY: frozenset({ResolvedType.BINARY, ResolvedType.BAD}),
    NativeKind.TIMESTAMP: _TIME_OR_BAD,
    NativeKind.DATE: _TIME_OR_BAD,
    NativeKind.BAD: frozenset({ResolvedType.BAD}),
}

_REJECTION_REASONS: dict[ResolvedType, str] = {
    ResolvedType.NUMERIC: "only numeric encodings can be parsed as numbers",
    ResolvedType.CATEGORICAL: "only string encodings have a defined label mapping",
    ResolvedType.STRING: "only string encodings can be parsed as text without a defined mapping",
    ResolvedType.BINARY: "only binary encodings can be parsed as raw bytes",
    ResolvedType.TIME: "only timestamp and date encodings can be parsed as time",
}


@dataclass(frozen=True)
class Accepted:
    column_index: int
    resolved_type: ResolvedType


@dataclass(frozen=True)
class Rejected:
    column_index: int
    requested: ResolvedType
    reason: str


def validate_override(column: ColumnDescriptor, requested: ResolvedType) -> Accepted | Rejected:
    """Decide whether ``column`` can be parsed as ``requested`` given its native encoding."""
    if requested in COMPATIBLE_OVERRIDES[column.native_kind]:
        return Accepted(column_index=column.index, resolved_type=requested)

    return Rejected(
        column_index=column.index,
        requested=requested,
        reason=f"{column.native_kind.value} column: {_REJECTION_REASONS[requested]}",
    )

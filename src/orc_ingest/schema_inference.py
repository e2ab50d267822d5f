from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from core.settings import CATEGORICAL_MAX_DOMAIN_SIZE
from orc_ingest.domain import ColumnDescriptor, FileMetadata, NativeKind, ResolvedType
from orc_ingest.errors import ConfigurationFrozenError, ConfigurationMismatchError, UnsupportedTypeOverride
from orc_ingest.type_overrides import Accepted, validate_override

logger = logging.getLogger(__name__)


# STRING is absent: it depends on cardinality, see infer_column_type
DEFAULT_RESOLUTION: dict[NativeKind, ResolvedType] = {
    NativeKind.INTEGER: ResolvedType.NUMERIC,
    NativeKind.FLOAT: ResolvedType.NUMERIC,
    NativeKind.BOOLEAN: ResolvedType.NUMERIC,
    NativeKind.DECIMAL: ResolvedType.NUMERIC,
    NativeKind.BINARY: ResolvedType.BINARY,
    NativeKind.TIMESTAMP: ResolvedType.TIME,
    NativeKind.DATE: ResolvedType.TIME,
    NativeKind.BAD: ResolvedType.BAD,
}


class ParseConfiguration:
    """
    Ordered resolved column types.

    Mutable while a caller prepares overrides; frozen by guess_setup before it is
    handed to a decode job. A None entry means "no override" in a prior
    configuration.
    """

    def __init__(self, column_names: Sequence[str], column_types: Sequence[ResolvedType | None]):
        if len(column_names) != len(column_types):
            raise ConfigurationMismatchError(
                f"{len(column_names)} column names but {len(column_types)} column types"
            )
        self._column_names = tuple(column_names)
        self._column_types = list(column_types)
        self._frozen = False

    @classmethod
    def unset(cls, column_names: Sequence[str]) -> ParseConfiguration:
        return cls(column_names, [None] * len(column_names))

    @property
    def column_names(self) -> tuple[str, ...]:
        return self._column_names

    @property
    def column_types(self) -> tuple[ResolvedType | None, ...]:
        return tuple(self._column_types)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._column_names)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParseConfiguration):
            return NotImplemented
        return self._column_names == other._column_names and self._column_types == other._column_types

    def __repr__(self) -> str:
        types = [t.value if t is not None else None for t in self._column_types]
        return f"ParseConfiguration({dict(zip(self._column_names, types))}, frozen={self._frozen})"

    def index_of(self, column: int | str) -> int:
        if isinstance(column, int):
            if not 0 <= column < len(self._column_names):
                raise IndexError(f"Column index {column} out of range for {len(self._column_names)} columns")
            return column
        try:
            return self._column_names.index(column)
        except ValueError:
            raise KeyError(f"Unknown column '{column}'") from None

    def set_column_type(self, column: int | str, resolved_type: ResolvedType | None) -> None:
        if self._frozen:
            raise ConfigurationFrozenError("Parse configuration is frozen")
        self._column_types[self.index_of(column)] = resolved_type

    def freeze(self) -> ParseConfiguration:
        self._frozen = True
        return self

    def copy(self) -> ParseConfiguration:
        """Unfrozen copy, for preparing overrides from a resolved configuration."""
        return ParseConfiguration(self._column_names, self._column_types)


@dataclass(frozen=True)
class ParseSetup:
    columns: tuple[ColumnDescriptor, ...]
    configuration: ParseConfiguration
    errors: tuple[UnsupportedTypeOverride, ...] = ()

    @property
    def error_messages(self) -> tuple[str, ...]:
        return tuple(str(e) for e in self.errors)


def infer_column_type(
    column: ColumnDescriptor,
    distinct_count: int | None,
    categorical_threshold: int = CATEGORICAL_MAX_DOMAIN_SIZE,
) -> ResolvedType:
    if column.native_kind is NativeKind.STRING:
        if distinct_count is not None and distinct_count < categorical_threshold:
            return ResolvedType.CATEGORICAL
        return ResolvedType.STRING
    return DEFAULT_RESOLUTION[column.native_kind]


def guess_setup(
    metadata: FileMetadata,
    prior: ParseConfiguration | None = None,
    *,
    categorical_threshold: int = CATEGORICAL_MAX_DOMAIN_SIZE,
) -> ParseSetup:
    """
    Resolve a frozen parse configuration for a file.

    Entries of ``prior`` that differ from the inferred type are validated against
    the column's native encoding: accepted ones win, rejected ones fall back to
    the inferred type and produce one UnsupportedTypeOverride each.
    """
    if prior is not None and len(prior) != len(metadata.columns):
        raise ConfigurationMismatchError(
            f"Configuration has {len(prior)} columns but {metadata.source.file_id} has {len(metadata.columns)}"
        )

    resolved: list[ResolvedType] = []
    errors: list[UnsupportedTypeOverride] = []

    for column in metadata.columns:
        default = infer_column_type(column, metadata.distinct_count(column.index), categorical_threshold)
        requested = prior.column_types[column.index] if prior is not None else None

        if requested is None or requested is default:
            resolved.append(default)
            continue

        verdict = validate_override(column, requested)
        if isinstance(verdict, Accepted):
            resolved.append(verdict.resolved_type)
            continue

        resolved.append(default)
        errors.append(
            UnsupportedTypeOverride(
                column_index=column.index,
                column_name=column.name,
                native_kind=column.native_kind,
                requested=requested,
                fallback=default,
                reason=verdict.reason,
            )
        )

    for error in errors:
        logger.warning("%s: %s (%s)", metadata.source.file_id, error, error.reason)

    configuration = ParseConfiguration(metadata.column_names, resolved).freeze()
    return ParseSetup(columns=metadata.columns, configuration=configuration, errors=tuple(errors))

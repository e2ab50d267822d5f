from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import cached_property, reduce
from pathlib import Path
from typing import Iterable, Iterator, Mapping

import pyarrow as pa


class NativeKind(str, Enum):
    """On-disk encoding family of a top-level ORC column."""
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    STRING = "string"
    BINARY = "binary"
    DECIMAL = "decimal"
    TIMESTAMP = "timestamp"
    DATE = "date"
    BAD = "bad"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ResolvedType(str, Enum):
    """Type a column is materialized as."""
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    STRING = "string"
    BINARY = "binary"
    TIME = "time"
    BAD = "bad"

    @property
    def label(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class FileKey:
    """
    Identity of an ORC file under a specific parse spec.

    file_metadata_signature:
      A cheap content proxy (filename + size + mtime).

    spec_hash:
      Included so changing the spec forces re-verification of the same file.
    """
    spec_name: str
    file_metadata_signature: str
    spec_hash: str


@dataclass(frozen=True)
class DiscoveredFile:
    """An ORC file discovered on disk, matched to a parse spec."""
    file_key: FileKey
    path: Path
    size_bytes: int
    mtime_utc: datetime  # naive UTC


@dataclass(frozen=True)
class SourceFile:
    """Immutable handle to an on-disk ORC file. Holds no OS resources."""
    path: Path
    byte_length: int
    num_rows: int
    stripe_row_ranges: tuple[tuple[int, int], ...] = ()

    @property
    def stripe_count(self) -> int:
        return len(self.stripe_row_ranges)

    @property
    def file_id(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    index: int
    native_kind: NativeKind
    nullable: bool = True
    bit_width: int | None = None
    arrow_type: pa.DataType | None = None


@dataclass(frozen=True)
class Stripe:
    """
    A row group of the file.

    local_distinct_values maps the ordinal of each string column to the distinct
    values seen in this stripe, or None when the stripe held more values than
    the reader tracks.
    """
    index: int
    row_offset: int
    row_count: int
    column_names: tuple[str, ...]
    local_distinct_values: Mapping[int, tuple[str, ...] | None] = field(default_factory=dict)


@dataclass(frozen=True)
class FileMetadata:
    """Everything the format reader learns about a file without decoding it into a dataset."""
    source: SourceFile
    columns: tuple[ColumnDescriptor, ...]
    stripes: tuple[Stripe, ...]

    @classmethod
    def empty(cls, source: SourceFile) -> "FileMetadata":
        return cls(source=source, columns=(), stripes=())

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def distinct_count(self, column_index: int) -> int | None:
        """Distinct values of a string column across all stripes; None if any stripe was untracked."""
        seen: set[str] = set()
        for stripe in self.stripes:
            values = stripe.local_distinct_values.get(column_index)
            if values is None:
                return None
            seen.update(values)
        return len(seen)


@dataclass(frozen=True)
class Domain:
    """Sorted, de-duplicated set of categorical labels with stable integer codes."""
    values: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(sorted(set(self.values))))

    @classmethod
    def from_values(cls, values: Iterable[str]) -> "Domain":
        return cls(tuple(values))

    @cached_property
    def codes(self) -> dict[str, int]:
        return {value: code for code, value in enumerate(self.values)}

    def code_of(self, value: str) -> int:
        return self.codes[value]

    def merge(self, other: "Domain") -> "Domain":
        return Domain(self.values + other.values)

    @staticmethod
    def merge_all(domains: Iterable["Domain"]) -> "Domain":
        return reduce(Domain.merge, domains, Domain())

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __getitem__(self, code: int) -> str:
        return self.values[code]


@dataclass(frozen=True)
class RunContext:
    """Per-run context."""
    run_id: str

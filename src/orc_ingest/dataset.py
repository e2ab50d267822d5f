from dataclasses import dataclass
from typing import Any

import pyarrow as pa

from orc_ingest.domain import Domain, ResolvedType


@dataclass(frozen=True)
class MaterializedColumn:
    """
    A decoded column: one arrow chunk per decode unit, in file order.

    Categorical columns hold int32 codes into ``domain``; time columns hold int64
    milliseconds since the Unix epoch; bad columns hold nulls only.
    """
    name: str
    resolved_type: ResolvedType
    data: pa.ChunkedArray
    domain: Domain | None = None

    def __len__(self) -> int:
        return len(self.data)

    @property
    def is_bad(self) -> bool:
        return self.resolved_type is ResolvedType.BAD

    @property
    def is_categorical(self) -> bool:
        return self.resolved_type is ResolvedType.CATEGORICAL

    @property
    def missing_count(self) -> int:
        return self.data.null_count

    def is_missing(self, row: int) -> bool:
        return not self.data[row].is_valid

    def to_pylist(self) -> list[Any]:
        """Cell values; categorical codes are resolved to their labels."""
        values = self.data.to_pylist()
        if self.domain is None:
            return values
        return [self.domain[code] if code is not None else None for code in values]


@dataclass(frozen=True)
class MaterializedDataset:
    key: str
    columns: tuple[MaterializedColumn, ...]
    num_rows: int

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    @property
    def types(self) -> tuple[ResolvedType, ...]:
        return tuple(c.resolved_type for c in self.columns)

    @property
    def num_columns(self) -> int:
        return len(self.columns)

    def column(self, column: int | str) -> MaterializedColumn:
        if isinstance(column, int):
            return self.columns[column]
        for candidate in self.columns:
            if candidate.name == column:
                return candidate
        raise KeyError(f"Unknown column '{column}'")

import logging
from dataclasses import dataclass, field
from itertools import groupby
from typing import Sequence

import numpy as np
import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.orc as orc

from orc_ingest.domain import Domain, NativeKind, ResolvedType, Stripe
from orc_ingest.errors import StripeDecodeError

logger = logging.getLogger(__name__)


MS_PER_DAY = 86_400_000

# timestamp unit -> divisor to milliseconds
_TIMESTAMP_UNIT_DIVISORS: dict[str, int] = {"ms": 1, "us": 1_000, "ns": 1_000_000}


@dataclass(frozen=True)
class ColumnPlan:
    """How one column of a stripe is decoded."""
    index: int
    name: str
    native_kind: NativeKind
    resolved_type: ResolvedType

    @property
    def storage_type(self) -> pa.DataType:
        if self.resolved_type is ResolvedType.NUMERIC:
            if self.native_kind in (NativeKind.INTEGER, NativeKind.BOOLEAN):
                return pa.int64()
            return pa.float64()
        return RESOLVED_TYPE_TO_ARROW_TYPE[self.resolved_type]


RESOLVED_TYPE_TO_ARROW_TYPE: dict[ResolvedType, pa.DataType] = {
    ResolvedType.NUMERIC: pa.float64(),
    ResolvedType.CATEGORICAL: pa.int32(),
    ResolvedType.STRING: pa.string(),
    ResolvedType.BINARY: pa.binary(),
    ResolvedType.TIME: pa.int64(),
    ResolvedType.BAD: pa.null(),
}


@dataclass(frozen=True)
class DecodeUnit:
    """A contiguous row range [row_start, row_stop) of one stripe."""
    ordinal: int
    stripe_index: int
    row_start: int
    row_stop: int

    @property
    def num_rows(self) -> int:
        return self.row_stop - self.row_start


@dataclass(frozen=True)
class DecodedUnit:
    """
    Result returned by a decode worker.

    Categorical arrays hold codes into the unit's own local domain; the job
    remaps them once every unit has reported.
    """
    ordinal: int
    stripe_index: int
    num_rows: int
    arrays: tuple[pa.Array, ...]
    local_domains: dict[int, Domain] = field(default_factory=dict)


def plan_decode_units(stripes: Sequence[Stripe], max_rows_per_unit: int | None = None) -> list[DecodeUnit]:
    units: list[DecodeUnit] = []
    for stripe in stripes:
        step = max_rows_per_unit if max_rows_per_unit else max(stripe.row_count, 1)
        for row_start in range(0, max(stripe.row_count, 1), step):
            row_stop = min(row_start + step, stripe.row_count)
            units.append(DecodeUnit(len(units), stripe.index, row_start, row_stop))
    return units


def to_epoch_millis(array: pa.Array) -> pa.Array:
    """Timestamps and dates as int64 milliseconds since the epoch, rounded towards negative infinity."""
    if pa.types.is_date32(array.type):
        days = pc.cast(pc.cast(array, pa.int32()), pa.int64())
        return pc.multiply(days, MS_PER_DAY)
    if pa.types.is_date64(array.type):
        return pc.cast(array, pa.int64())

    raw = pc.cast(array, pa.int64())
    if array.type.unit == "s":
        return pc.multiply(raw, 1_000)

    divisor = _TIMESTAMP_UNIT_DIVISORS[array.type.unit]
    if divisor == 1:
        return raw

    mask = raw.is_null().to_numpy(zero_copy_only=False)
    millis = np.floor_divide(raw.fill_null(0).to_numpy(), divisor)
    return pa.array(millis, type=pa.int64(), mask=mask)


def decode_column(array: pa.Array, plan: ColumnPlan) -> tuple[pa.Array, Domain | None]:
    """Decode one column of a stripe under its resolved type."""
    resolved_type = plan.resolved_type

    if resolved_type is ResolvedType.BAD:
        return pa.nulls(len(array)), None

    if resolved_type is ResolvedType.NUMERIC:
        if plan.native_kind is NativeKind.DECIMAL:
            # through text so each value is the correctly rounded double
            return pc.cast(pc.cast(array, pa.string()), pa.float64()), None
        return pc.cast(array, plan.storage_type, safe=False), None

    if resolved_type is ResolvedType.CATEGORICAL:
        values = pc.cast(array, pa.string())
        domain = Domain.from_values(pc.unique(values.drop_null()).to_pylist())
        codes = pc.index_in(values, value_set=pa.array(domain.values, type=pa.string()))
        return codes, domain

    if resolved_type is ResolvedType.TIME:
        return to_epoch_millis(array), None

    return pc.cast(array, plan.storage_type), None


def group_units_by_stripe(units: Sequence[DecodeUnit]) -> list[tuple[DecodeUnit, ...]]:
    """Consecutive units of the same stripe, as produced by plan_decode_units."""
    return [tuple(group) for _, group in groupby(units, key=lambda unit: unit.stripe_index)]


def _decode_slice(path: str, batch: pa.RecordBatch, unit: DecodeUnit, plans: Sequence[ColumnPlan]) -> DecodedUnit:
    batch = batch.slice(unit.row_start, unit.num_rows)

    arrays: list[pa.Array] = []
    local_domains: dict[int, Domain] = {}
    for plan in plans:
        try:
            decoded, domain = decode_column(batch.column(plan.index), plan)
        except (pa.ArrowException, ValueError) as e:
            logger.exception("Decoding column %s of stripe %s failed", plan.name, unit.stripe_index)
            raise StripeDecodeError(path, unit.stripe_index, f"column {plan.name}: {e}") from e

        arrays.append(decoded)
        if domain is not None:
            local_domains[plan.index] = domain

    return DecodedUnit(
        ordinal=unit.ordinal,
        stripe_index=unit.stripe_index,
        num_rows=unit.num_rows,
        arrays=tuple(arrays),
        local_domains=local_domains,
    )


def execute_decode_units(
    path: str,
    units: Sequence[DecodeUnit],
    plans: Sequence[ColumnPlan],
    column_names: tuple[str, ...],
) -> list[DecodedUnit]:
    """
    Decode the units of one stripe.

    The stripe is read once and sliced per unit. Opens the file read-only, so
    stripes can run in threads or worker processes. Read and decode failures
    are reported as StripeDecodeError.
    """
    stripe_index = units[0].stripe_index
    if any(unit.stripe_index != stripe_index for unit in units):
        raise ValueError("Units of several stripes passed to one decode task")

    row_stop = max(unit.row_stop for unit in units)
    logger.debug("Decoding %s stripe %s as %s units", path, stripe_index, len(units))

    try:
        with open(path, "rb") as source_file:
            batch = orc.ORCFile(source_file).read_stripe(stripe_index)
    except (pa.ArrowException, ValueError, OSError) as e:
        logger.exception("Reading stripe %s of %s failed", stripe_index, path)
        raise StripeDecodeError(path, stripe_index, f"unreadable stripe: {e}") from e

    found = tuple(batch.schema.names)
    if found != column_names:
        raise StripeDecodeError(path, stripe_index, f"stripe declares columns {list(found)}")

    if batch.num_rows < row_stop:
        raise StripeDecodeError(path, stripe_index, f"short read: expected {row_stop} rows, got {batch.num_rows}")

    return [_decode_slice(path, batch, unit, plans) for unit in units]

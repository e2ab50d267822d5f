"""
Verification oracle.

Decodes a file through an independent reference path (the pyarrow.dataset ORC
scanner, single threaded, values mapped in plain Python) and compares it cell by
cell with a MaterializedDataset produced by a decode job. Nothing here reuses the
decode job's conversion, domain merge or type resolution code.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Mapping

import pyarrow as pa
import pyarrow.dataset as ds

from core.settings import MAX_REPORTED_MISMATCHES, ORC_MAGIC
from orc_ingest.dataset import MaterializedColumn, MaterializedDataset
from orc_ingest.decode_job import DecodeOptions
from orc_ingest.domain import ResolvedType
from orc_ingest.errors import ConfigurationMismatchError, FileUnreadableError, OrcParseError
from orc_ingest.parse_dataset import parse_dataset
from orc_ingest.schema_inference import ParseConfiguration

logger = logging.getLogger(__name__)


EPOCH_DATE = date(1970, 1, 1)
MILLIS_PER_DAY = 24 * 60 * 60 * 1000
MILLIS_PER_SECOND = 1000

# timestamp unit -> (multiplier, divisor) to milliseconds
_MILLIS_SCALE: dict[str, tuple[int, int]] = {
    "s": (MILLIS_PER_SECOND, 1),
    "ms": (1, 1),
    "us": (1, 1000),
    "ns": (1, 1000 * 1000),
}

_INVALID_CODE = object()


class UnusableReferenceError(Exception):
    """The reference path cannot describe the file's structure."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class _IncomparableColumn(Exception):
    pass


@dataclass(frozen=True)
class ReferenceTable:
    names: tuple[str, ...]
    columns: tuple[pa.ChunkedArray, ...]
    num_rows: int


@dataclass(frozen=True)
class ComparisonResult:
    file_id: str
    usable: bool
    mismatch_count: int = 0
    mismatches_by_column: Mapping[str, int] = field(default_factory=dict)
    reason: str | None = None

    @property
    def failed(self) -> bool:
        return self.usable and self.mismatch_count > 0


@dataclass(frozen=True)
class DiscrepancyReport:
    files_tested: int
    mismatch_count: int
    failed_files: tuple[str, ...] = ()
    unusable_files: tuple[str, ...] = ()
    results: tuple[ComparisonResult, ...] = ()

    @property
    def passed(self) -> bool:
        return self.mismatch_count == 0

    def summary(self) -> str:
        if self.passed:
            return f"Parser test passed! Number of files parsed is {self.files_tested}"
        return (
            f"Number of ORC files failed to parse is: {len(self.failed_files)}, "
            f"mismatches = {self.mismatch_count}, failed files = {list(self.failed_files)}"
        )


def read_reference(path: Path) -> ReferenceTable:
    """
    Scan the whole file with the pyarrow.dataset ORC reader.

    Raises UnusableReferenceError when the file has no readable structure and
    lets I/O errors (missing file, permission denied) propagate.
    """
    if path.is_dir():
        raise FileUnreadableError(f"Not a file: {path}")

    with open(path, "rb") as f:
        head = f.read(len(ORC_MAGIC) + 1)
    if len(head) <= len(ORC_MAGIC):
        raise UnusableReferenceError("file holds no column or row data")

    # open() above surfaces missing or unreadable files; OSErrors from the scan are decoder failures
    try:
        dataset = ds.dataset(str(path), format="orc")
        schema = dataset.schema
        batches = list(dataset.to_batches(use_threads=False))
    except (pa.ArrowException, ValueError, OSError) as e:
        raise UnusableReferenceError(f"reference scan failed: {e}") from e

    names = tuple(schema.names)
    if not names:
        raise UnusableReferenceError("file declares no columns")

    for batch_index, batch in enumerate(batches):
        if tuple(batch.schema.names) != names:
            raise UnusableReferenceError(
                f"batch {batch_index} declares columns {batch.schema.names}, expected {list(names)}"
            )

    table = pa.Table.from_batches(batches, schema=schema)
    return ReferenceTable(names=names, columns=tuple(table.columns), num_rows=table.num_rows)


def _reference_cells(column: pa.ChunkedArray, resolved_type: ResolvedType) -> list[Any]:
    """Expected logical values of a reference column materialized as ``resolved_type``."""
    arrow_type = column.type
    values = column.to_pylist()

    if resolved_type is ResolvedType.NUMERIC:
        if pa.types.is_decimal(arrow_type):
            return [float(v) if v is not None else None for v in values]
        if pa.types.is_boolean(arrow_type):
            return [int(v) if v is not None else None for v in values]
        if pa.types.is_integer(arrow_type) or pa.types.is_floating(arrow_type):
            return values

    elif resolved_type is ResolvedType.TIME:
        if pa.types.is_date(arrow_type):
            return [(v - EPOCH_DATE).days * MILLIS_PER_DAY if v is not None else None for v in values]
        if pa.types.is_timestamp(arrow_type):
            multiplier, divisor = _MILLIS_SCALE[arrow_type.unit]
            ticks = column.cast(pa.int64()).to_pylist()
            return [v * multiplier // divisor if v is not None else None for v in ticks]

    elif resolved_type in (ResolvedType.CATEGORICAL, ResolvedType.STRING):
        if pa.types.is_string(arrow_type) or pa.types.is_large_string(arrow_type):
            return values

    elif resolved_type is ResolvedType.BINARY:
        if pa.types.is_binary(arrow_type) or pa.types.is_large_binary(arrow_type):
            return values

    raise _IncomparableColumn(f"{arrow_type} cannot be materialized as {resolved_type.value}")


def _dataset_cells(column: MaterializedColumn) -> list[Any]:
    values = column.data.to_pylist()
    if column.resolved_type is not ResolvedType.CATEGORICAL:
        return values

    labels = column.domain.values if column.domain is not None else ()
    return [
        None if code is None else labels[code] if 0 <= code < len(labels) else _INVALID_CODE
        for code in values
    ]


def _cells_equal(expected: Any, actual: Any) -> bool:
    if expected is None or actual is None:
        return expected is None and actual is None
    if isinstance(expected, float) and isinstance(actual, float) and math.isnan(expected):
        return math.isnan(actual)
    return expected == actual


def _count_column_mismatches(file_id: str, reference: pa.ChunkedArray, column: MaterializedColumn) -> int:
    try:
        expected = _reference_cells(reference, column.resolved_type)
    except _IncomparableColumn as e:
        logger.warning("%s: column %s is not comparable: %s", file_id, column.name, e)
        return len(reference)

    actual = _dataset_cells(column)
    mismatches = 0
    for row, (want, got) in enumerate(zip(expected, actual)):
        if _cells_equal(want, got):
            continue
        mismatches += 1
        if mismatches <= MAX_REPORTED_MISMATCHES:
            logger.warning(
                "%s: column %s row %s expected %r but dataset holds %r", file_id, column.name, row, want, got
            )
    return mismatches


def compare(path: str | Path, dataset: MaterializedDataset) -> ComparisonResult:
    """
    Compare ``dataset`` against an independent decode of ``path``.

    Never raises on a mismatch; a file the reference path cannot describe is
    reported as unusable. I/O errors propagate.
    """
    path = Path(path)
    file_id = path.name

    try:
        reference = read_reference(path)
    except UnusableReferenceError as e:
        logger.warning("%s is unusable for verification: %s", file_id, e.reason)
        return ComparisonResult(file_id=file_id, usable=False, reason=e.reason)

    if reference.names != dataset.names:
        reason = f"reference columns {list(reference.names)} differ from dataset columns {list(dataset.names)}"
        logger.warning("%s: %s", file_id, reason)
        return ComparisonResult(file_id=file_id, usable=True, mismatch_count=1, reason=reason)

    if reference.num_rows != dataset.num_rows:
        reason = f"reference has {reference.num_rows} rows, dataset has {dataset.num_rows}"
        logger.warning("%s: %s", file_id, reason)
        return ComparisonResult(file_id=file_id, usable=True, mismatch_count=1, reason=reason)

    mismatches_by_column: dict[str, int] = {}
    for reference_column, column in zip(reference.columns, dataset.columns):
        if column.is_bad:
            continue
        count = _count_column_mismatches(file_id, reference_column, column)
        if count:
            mismatches_by_column[column.name] = count

    return ComparisonResult(
        file_id=file_id,
        usable=True,
        mismatch_count=sum(mismatches_by_column.values()),
        mismatches_by_column=mismatches_by_column,
    )


def _unusable_reason(path: Path) -> str | None:
    try:
        read_reference(path)
    except UnusableReferenceError as e:
        return e.reason
    except OSError:
        return None
    return None


def _verify_file(
    path: Path,
    prior: ParseConfiguration | None,
    options: DecodeOptions | None,
) -> tuple[ComparisonResult, bool]:
    """Returns the result and whether the file was parsed and compared."""
    file_id = path.name
    if not path.exists():
        logger.warning("The following file was not found: %s", path)
        return ComparisonResult(file_id=file_id, usable=True, mismatch_count=1, reason="file not found"), False

    try:
        dataset = parse_dataset(path, prior, options=options)
    except OrcParseError as e:
        unusable_reason = _unusable_reason(path)
        if unusable_reason is not None:
            logger.warning("%s is unusable for verification: %s", file_id, unusable_reason)
            return ComparisonResult(file_id=file_id, usable=False, reason=unusable_reason), False
        logger.error("Parsing %s failed: %s", file_id, e)
        return ComparisonResult(file_id=file_id, usable=True, mismatch_count=1, reason=str(e)), False
    except ConfigurationMismatchError as e:
        logger.error("Configuration for %s does not fit the file: %s", file_id, e)
        return ComparisonResult(file_id=file_id, usable=True, mismatch_count=1, reason=str(e)), False
    except OSError as e:
        logger.error("Reading %s failed: %s", file_id, e)
        return ComparisonResult(file_id=file_id, usable=True, mismatch_count=1, reason=str(e)), False

    try:
        return compare(path, dataset), True
    except OSError as e:
        logger.error("Reading the reference copy of %s failed: %s", file_id, e)
        return ComparisonResult(file_id=file_id, usable=True, mismatch_count=1, reason=str(e)), False


def verify_files(
    paths: Iterable[str | Path],
    *,
    prior_configurations: Mapping[str, ParseConfiguration] | None = None,
    options: DecodeOptions | None = None,
) -> DiscrepancyReport:
    """
    Parse and verify every file.

    Missing files, parse errors and I/O errors count as one mismatch each and
    mark the file failed. Unusable files are listed but excluded from counting.
    ``prior_configurations`` is keyed by file name.
    """
    prior_configurations = prior_configurations or {}
    results: list[ComparisonResult] = []
    failed_files: set[str] = set()
    unusable_files: set[str] = set()
    mismatch_count = 0
    files_tested = 0

    for path in map(Path, paths):
        logger.info("ORC parser verifying %s", path)
        result, tested = _verify_file(path, prior_configurations.get(path.name), options)
        results.append(result)

        if not result.usable:
            unusable_files.add(result.file_id)
            continue

        if tested:
            files_tested += 1
        if result.failed:
            failed_files.add(result.file_id)
            mismatch_count += result.mismatch_count

    report = DiscrepancyReport(
        files_tested=files_tested,
        mismatch_count=mismatch_count,
        failed_files=tuple(sorted(failed_files)),
        unusable_files=tuple(sorted(unusable_files)),
        results=tuple(results),
    )
    if report.passed:
        logger.info(report.summary())
    else:
        logger.warning("There are verification errors. %s", report.summary())
    return report

import logging
from pathlib import Path
from typing import BinaryIO, Callable

import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.orc as orc

from core.settings import CATEGORICAL_MAX_DOMAIN_SIZE, ORC_MAGIC
from orc_ingest.domain import ColumnDescriptor, FileMetadata, NativeKind, SourceFile, Stripe
from orc_ingest.errors import CorruptFileError, EmptyFileError, FileUnreadableError, InconsistentStripeSchemaError

logger = logging.getLogger(__name__)


def native_kind_of(arrow_type: pa.DataType) -> tuple[NativeKind, int | None]:
    """Map the arrow type pyarrow reports for an ORC column to its native kind and bit width."""
    if pa.types.is_boolean(arrow_type):
        return NativeKind.BOOLEAN, 1
    if pa.types.is_integer(arrow_type):
        return NativeKind.INTEGER, arrow_type.bit_width
    if pa.types.is_floating(arrow_type):
        return NativeKind.FLOAT, arrow_type.bit_width
    if pa.types.is_decimal(arrow_type):
        return NativeKind.DECIMAL, arrow_type.bit_width
    if pa.types.is_timestamp(arrow_type):
        return NativeKind.TIMESTAMP, None
    if pa.types.is_date(arrow_type):
        return NativeKind.DATE, None
    if pa.types.is_string(arrow_type) or pa.types.is_large_string(arrow_type):
        return NativeKind.STRING, None
    if pa.types.is_binary(arrow_type) or pa.types.is_large_binary(arrow_type) or pa.types.is_fixed_size_binary(arrow_type):
        return NativeKind.BINARY, None
    # struct, list, map, union and anything newer
    return NativeKind.BAD, None


def check_header(path: Path) -> int:
    """
    Stat the file and check the ORC magic.

    Returns the byte length. Raises FileNotFoundError, FileUnreadableError,
    EmptyFileError or CorruptFileError.
    """
    if path.is_dir():
        raise FileUnreadableError(f"Not a file: {path}")

    try:
        byte_length = path.stat().st_size
        with open(path, "rb") as f:
            head = f.read(len(ORC_MAGIC))
    except PermissionError as e:
        raise FileUnreadableError(f"Cannot read {path}: {e}") from e

    if byte_length <= len(ORC_MAGIC) and ORC_MAGIC.startswith(head):
        raise EmptyFileError(str(path))

    if head != ORC_MAGIC:
        raise CorruptFileError(str(path), f"missing {ORC_MAGIC!r} header")

    return byte_length


class OrcFormatReader:
    """
    Reads an ORC file's footer, stripe index and per-stripe statistics.

    Stripes are read one at a time to check their column names and collect the
    distinct values of string columns; decoded values are discarded.
    """

    def __init__(
        self,
        *,
        orc_file_factory: Callable[[BinaryIO], orc.ORCFile] = orc.ORCFile,
        max_tracked_distinct: int = CATEGORICAL_MAX_DOMAIN_SIZE,
    ):
        self._orc_file_factory = orc_file_factory
        self._max_tracked_distinct = max_tracked_distinct

    def read(self, path: str | Path) -> FileMetadata:
        path = Path(path)
        byte_length = check_header(path)

        # check_header has already read this file; OSErrors below come from the ORC decoder
        with open(path, "rb") as source_file:
            try:
                orc_file = self._orc_file_factory(source_file)
                schema: pa.Schema = orc_file.schema
                footer_rows = int(orc_file.nrows)
                stripe_count = int(orc_file.nstripes)
            except (pa.ArrowException, ValueError, OSError) as e:
                raise CorruptFileError(str(path), f"unreadable footer: {e}") from e

            columns = tuple(self._describe_column(index, schema.field(index)) for index in range(len(schema)))
            stripes = self._read_stripes(path, orc_file, stripe_count, columns)

        row_count = sum(s.row_count for s in stripes)
        if row_count != footer_rows:
            raise CorruptFileError(
                str(path), f"footer declares {footer_rows} rows but stripes hold {row_count}"
            )

        source = SourceFile(
            path=path,
            byte_length=byte_length,
            num_rows=footer_rows,
            stripe_row_ranges=tuple((s.row_offset, s.row_offset + s.row_count) for s in stripes),
        )
        logger.debug(
            "Read %s: %s columns, %s stripes, %s rows", path.name, len(columns), len(stripes), footer_rows
        )
        return FileMetadata(source=source, columns=columns, stripes=stripes)

    def read_or_empty(self, path: str | Path) -> FileMetadata:
        """Like read(), but a header-only file yields empty metadata instead of EmptyFileError."""
        try:
            return self.read(path)
        except EmptyFileError:
            path = Path(path)
            logger.info("%s holds only an ORC header; treating it as an empty dataset", path.name)
            return FileMetadata.empty(SourceFile(path=path, byte_length=path.stat().st_size, num_rows=0))

    def _read_stripes(
        self,
        path: Path,
        orc_file: orc.ORCFile,
        stripe_count: int,
        columns: tuple[ColumnDescriptor, ...],
    ) -> tuple[Stripe, ...]:
        column_names = tuple(c.name for c in columns)
        string_columns = [c.index for c in columns if c.native_kind is NativeKind.STRING]

        stripes: list[Stripe] = []
        row_offset = 0
        for stripe_index in range(stripe_count):
            try:
                batch = orc_file.read_stripe(stripe_index)
            except (pa.ArrowException, ValueError, OSError) as e:
                raise CorruptFileError(str(path), f"unreadable stripe {stripe_index}: {e}") from e

            found = tuple(batch.schema.names)
            if found != column_names:
                raise InconsistentStripeSchemaError(str(path), stripe_index, column_names, found)

            local_distinct_values = {
                column_index: self._distinct_values(batch.column(column_index)) for column_index in string_columns
            }
            stripes.append(
                Stripe(
                    index=stripe_index,
                    row_offset=row_offset,
                    row_count=batch.num_rows,
                    column_names=found,
                    local_distinct_values=local_distinct_values,
                )
            )
            row_offset += batch.num_rows
        return tuple(stripes)

    @staticmethod
    def _describe_column(index: int, arrow_field: pa.Field) -> ColumnDescriptor:
        native_kind, bit_width = native_kind_of(arrow_field.type)
        return ColumnDescriptor(
            name=arrow_field.name,
            index=index,
            native_kind=native_kind,
            nullable=arrow_field.nullable,
            bit_width=bit_width,
            arrow_type=arrow_field.type,
        )

    def _distinct_values(self, column: pa.Array) -> tuple[str, ...] | None:
        unique = pc.unique(column.drop_null())
        if len(unique) > self._max_tracked_distinct:
            return None
        return tuple(unique.to_pylist())

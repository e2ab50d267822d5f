from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pyarrow as pa
import pyarrow.orc as orc
import pytest

SPLIT_ELIM_WORDS = ["zebra", "foo", "dog", "cat", "bar", "eat"]
SPLIT_ELIM_ROWS = 30


def split_elim_table() -> pa.Table:
    # five rows per word, encountered in non-sorted order
    words = [word for word in SPLIT_ELIM_WORDS for _ in range(SPLIT_ELIM_ROWS // len(SPLIT_ELIM_WORDS))]
    subtype = [i * 0.5 for i in range(SPLIT_ELIM_ROWS)]
    subtype[3] = float("nan")
    subtype[11] = None
    decimals = [Decimal(i * 1001) / Decimal(1000) for i in range(SPLIT_ELIM_ROWS)]
    decimals[17] = None

    return pa.table(
        {
            "userid": pa.array(range(SPLIT_ELIM_ROWS), type=pa.int64()),
            "string1": pa.array(words, type=pa.string()),
            "subtype": pa.array(subtype, type=pa.float64()),
            "decimal1": pa.array(decimals, type=pa.decimal128(10, 3)),
        }
    )


def mixed_types_table() -> pa.Table:
    return pa.table(
        {
            "tiny": pa.array([1, -2, None, 127], type=pa.int8()),
            "small": pa.array([300, None, -300, 0], type=pa.int16()),
            "medium": pa.array([70_000, 1, 2, None], type=pa.int32()),
            "ratio": pa.array([0.25, None, -1.5, 3.0], type=pa.float32()),
            "flag": pa.array([True, False, None, True], type=pa.bool_()),
            "blob": pa.array([b"\x00\x01", b"", None, b"orc"], type=pa.binary()),
            "day": pa.array(
                [date(1900, 1, 1), date(1970, 1, 1), None, date(2024, 2, 29)], type=pa.date32()
            ),
        }
    )


@pytest.fixture
def write_orc(tmp_path):
    def _write(name: str, table: pa.Table, **kwargs) -> Path:
        path = tmp_path / name
        orc.write_table(table, str(path), **kwargs)
        return path

    return _write


@pytest.fixture
def split_elim_path(write_orc) -> Path:
    return write_orc("split_elim.orc", split_elim_table())


@pytest.fixture
def mixed_types_path(write_orc) -> Path:
    return write_orc("mixed_types.orc", mixed_types_table())


@pytest.fixture
def timestamps_path(write_orc) -> Path:
    table = pa.table(
        {
            "id": pa.array([0, 1, 2, 3], type=pa.int64()),
            "ts": pa.array(
                [datetime(1969, 12, 31, 23, 59, 59, 999500), datetime(2020, 5, 17, 8, 30, 0, 123456), None, datetime(1970, 1, 1)],
                type=pa.timestamp("ns"),
            ),
        }
    )
    return write_orc("timestamps.orc", table)


@pytest.fixture
def zero_row_path(write_orc) -> Path:
    schema = pa.schema([("a", pa.int64()), ("b", pa.string())])
    return write_orc("zero_rows.orc", schema.empty_table())


@pytest.fixture
def header_only_path(tmp_path) -> Path:
    path = tmp_path / "header_only.orc"
    path.write_bytes(b"ORC")
    return path


@pytest.fixture
def zero_byte_path(tmp_path) -> Path:
    path = tmp_path / "zero_bytes.orc"
    path.write_bytes(b"")
    return path


@pytest.fixture
def truncated_path(split_elim_path, tmp_path) -> Path:
    data = split_elim_path.read_bytes()
    path = tmp_path / "truncated.orc"
    path.write_bytes(data[: len(data) // 2])
    return path


@pytest.fixture
def not_orc_path(tmp_path) -> Path:
    path = tmp_path / "not_orc.orc"
    path.write_bytes(b"PAR1" + b"\x00" * 64)
    return path


MULTI_STRIPE_ROWS = 60_000


def multi_stripe_table() -> pa.Table:
    # each word fills one contiguous block, so every stripe sees a subset
    block = MULTI_STRIPE_ROWS // len(SPLIT_ELIM_WORDS)
    return pa.table(
        {
            "userid": pa.array(range(MULTI_STRIPE_ROWS), type=pa.int64()),
            "word": pa.array([SPLIT_ELIM_WORDS[i // block] for i in range(MULTI_STRIPE_ROWS)], type=pa.string()),
            "score": pa.array([(i * 7919) % 10007 / 3.0 for i in range(MULTI_STRIPE_ROWS)], type=pa.float64()),
        }
    )


@pytest.fixture
def multi_stripe_path(write_orc) -> Path:
    return write_orc("multi_stripe.orc", multi_stripe_table(), stripe_size=64 * 1024, batch_size=1024)


@pytest.fixture
def strings_path(write_orc) -> Path:
    table = pa.table({"s": pa.array([f"row-{i}" for i in range(5000)], type=pa.string())})
    return write_orc("strings.orc", table)


@pytest.fixture
def corrupted_stripe_path(strings_path, tmp_path) -> Path:
    """Header and footer intact, stripe bytes overwritten."""
    data = bytearray(strings_path.read_bytes())
    data[10 : len(data) // 2] = b"\xff" * (len(data) // 2 - 10)
    path = tmp_path / "corrupted_stripe.orc"
    path.write_bytes(bytes(data))
    return path

import pytest

from orc_ingest.domain import ColumnDescriptor, NativeKind, ResolvedType
from orc_ingest.type_overrides import COMPATIBLE_OVERRIDES, Accepted, Rejected, validate_override


def _column(native_kind: NativeKind) -> ColumnDescriptor:
    return ColumnDescriptor(name="c", index=3, native_kind=native_kind)


def test_every_native_kind_has_an_entry():
    assert set(COMPATIBLE_OVERRIDES) == set(NativeKind)


@pytest.mark.parametrize("native_kind", list(NativeKind))
@pytest.mark.parametrize("requested", list(ResolvedType))
def test_validate_override_is_total(native_kind, requested):
    verdict = validate_override(_column(native_kind), requested)

    assert isinstance(verdict, (Accepted, Rejected))
    assert verdict.column_index == 3
    assert isinstance(verdict, Accepted) == (requested in COMPATIBLE_OVERRIDES[native_kind])


@pytest.mark.parametrize("native_kind", list(NativeKind))
def test_any_column_can_be_dropped(native_kind):
    assert validate_override(_column(native_kind), ResolvedType.BAD) == Accepted(3, ResolvedType.BAD)


@pytest.mark.parametrize("native_kind", [NativeKind.INTEGER, NativeKind.FLOAT, NativeKind.BOOLEAN, NativeKind.DECIMAL])
@pytest.mark.parametrize("requested", [ResolvedType.CATEGORICAL, ResolvedType.STRING])
def test_numeric_columns_cannot_become_labels(native_kind, requested):
    verdict = validate_override(_column(native_kind), requested)

    assert isinstance(verdict, Rejected)
    assert verdict.requested is requested
    assert native_kind.value in verdict.reason


def test_string_column_cannot_become_numeric():
    assert isinstance(validate_override(_column(NativeKind.STRING), ResolvedType.NUMERIC), Rejected)


@pytest.mark.parametrize("requested", [ResolvedType.CATEGORICAL, ResolvedType.STRING])
def test_string_column_switches_between_label_types(requested):
    assert validate_override(_column(NativeKind.STRING), requested) == Accepted(3, requested)


def test_binary_column_stays_binary():
    assert isinstance(validate_override(_column(NativeKind.BINARY), ResolvedType.STRING), Rejected)
    assert isinstance(validate_override(_column(NativeKind.BINARY), ResolvedType.BINARY), Accepted)


def test_time_columns_are_not_numbers():
    assert isinstance(validate_override(_column(NativeKind.TIMESTAMP), ResolvedType.NUMERIC), Rejected)
    assert isinstance(validate_override(_column(NativeKind.DATE), ResolvedType.TIME), Accepted)

from pathlib import Path

import pytest

from orc_ingest.domain import ColumnDescriptor, FileMetadata, NativeKind, ResolvedType, SourceFile, Stripe
from orc_ingest.errors import ConfigurationFrozenError, ConfigurationMismatchError
from orc_ingest.format_reader import OrcFormatReader
from orc_ingest.schema_inference import ParseConfiguration, guess_setup, infer_column_type


def _metadata(*kinds: NativeKind, distinct: dict[int, tuple[str, ...] | None] | None = None) -> FileMetadata:
    columns = tuple(ColumnDescriptor(name=f"c{i}", index=i, native_kind=kind) for i, kind in enumerate(kinds))
    stripe = Stripe(
        index=0,
        row_offset=0,
        row_count=10,
        column_names=tuple(c.name for c in columns),
        local_distinct_values=distinct or {},
    )
    source = SourceFile(path=Path("f.orc"), byte_length=100, num_rows=10, stripe_row_ranges=((0, 10),))
    return FileMetadata(source=source, columns=columns, stripes=(stripe,))


def test_default_types(split_elim_path):
    metadata = OrcFormatReader().read(split_elim_path)

    setup = guess_setup(metadata)

    assert setup.configuration.column_types == (
        ResolvedType.NUMERIC,
        ResolvedType.CATEGORICAL,
        ResolvedType.NUMERIC,
        ResolvedType.NUMERIC,
    )
    assert setup.configuration.is_frozen
    assert setup.errors == ()


def test_guess_setup_is_idempotent(split_elim_path):
    metadata = OrcFormatReader().read(split_elim_path)
    prior = ParseConfiguration.unset(metadata.column_names)
    prior.set_column_type("userid", ResolvedType.BAD)
    prior.set_column_type("subtype", ResolvedType.STRING)

    first = guess_setup(metadata, prior)
    second = guess_setup(metadata, first.configuration)

    assert second.configuration == first.configuration
    assert second.errors == ()


def test_override_scenario(split_elim_path):
    metadata = OrcFormatReader().read(split_elim_path)
    prior = ParseConfiguration.unset(metadata.column_names)
    prior.set_column_type(0, ResolvedType.BAD)
    prior.set_column_type(1, ResolvedType.CATEGORICAL)
    prior.set_column_type(2, ResolvedType.STRING)

    setup = guess_setup(metadata, prior)

    assert setup.configuration.column_types == (
        ResolvedType.BAD,
        ResolvedType.CATEGORICAL,
        ResolvedType.NUMERIC,
        ResolvedType.NUMERIC,
    )
    assert len(setup.errors) == 1
    error = setup.errors[0]
    assert (error.column_index, error.column_name) == (2, "subtype")
    assert error.fallback is ResolvedType.NUMERIC
    assert setup.error_messages == (
        "Unsupported type override (Float -> String). Column subtype will be parsed as Numeric",
    )


@pytest.mark.parametrize("requested", [ResolvedType.CATEGORICAL, ResolvedType.STRING])
def test_numeric_to_label_override_yields_one_error(requested):
    metadata = _metadata(NativeKind.INTEGER, NativeKind.FLOAT)
    prior = ParseConfiguration.unset(metadata.column_names)
    prior.set_column_type("c0", requested)

    setup = guess_setup(metadata, prior)

    assert [e.column_index for e in setup.errors] == [0]
    assert setup.configuration.column_types == (ResolvedType.NUMERIC, ResolvedType.NUMERIC)


def test_string_cardinality_decides_categorical():
    metadata = _metadata(NativeKind.STRING, distinct={0: ("a", "b", "c")})

    assert guess_setup(metadata).configuration.column_types == (ResolvedType.CATEGORICAL,)
    assert guess_setup(metadata, categorical_threshold=3).configuration.column_types == (ResolvedType.STRING,)


def test_untracked_string_column_is_string():
    column = ColumnDescriptor(name="s", index=0, native_kind=NativeKind.STRING)

    assert infer_column_type(column, None) is ResolvedType.STRING


def test_bad_native_column_resolves_to_bad():
    assert guess_setup(_metadata(NativeKind.BAD)).configuration.column_types == (ResolvedType.BAD,)


def test_prior_of_wrong_length_is_rejected():
    metadata = _metadata(NativeKind.INTEGER, NativeKind.FLOAT)

    with pytest.raises(ConfigurationMismatchError):
        guess_setup(metadata, ParseConfiguration.unset(["c0"]))


def test_frozen_configuration_cannot_change():
    configuration = ParseConfiguration(["a"], [ResolvedType.NUMERIC]).freeze()

    with pytest.raises(ConfigurationFrozenError):
        configuration.set_column_type("a", ResolvedType.BAD)

    copy = configuration.copy()
    copy.set_column_type("a", ResolvedType.BAD)
    assert not copy.is_frozen
    assert configuration.column_types == (ResolvedType.NUMERIC,)


def test_configuration_lookup_errors():
    configuration = ParseConfiguration.unset(["a", "b"])

    with pytest.raises(KeyError):
        configuration.index_of("missing")
    with pytest.raises(IndexError):
        configuration.index_of(2)
    with pytest.raises(ConfigurationMismatchError):
        ParseConfiguration(["a"], [])

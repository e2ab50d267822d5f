from glob import glob
import logging
import os
from typing import Literal, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.settings import DEFAULT_MAX_PARALLEL_DECODES, ORC_FILE_SUFFIX
from orc_ingest.decode_job import DecodeOptions
from orc_ingest.domain import FileMetadata, ResolvedType
from orc_ingest.schema_inference import ParseConfiguration

logger = logging.getLogger(__name__)


ResolvedTypeName = Literal["numeric", "categorical", "string", "binary", "time", "bad"]


class StrictBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)


class DecodeSpec(StrictBaseModel):
    max_parallel_decodes: int = Field(default=DEFAULT_MAX_PARALLEL_DECODES, ge=1)
    max_rows_per_unit: int | None = Field(default=None, ge=1)
    use_processes: bool = False


class OrcParseSpec(StrictBaseModel):
    name: str
    file_path_glob_pattern: str = f"*{ORC_FILE_SUFFIX}"

    # file column name -> requested type
    column_types: dict[str, ResolvedTypeName] = Field(default_factory=lambda: dict())

    decode: DecodeSpec = Field(default_factory=DecodeSpec)

    @model_validator(mode="after")
    def validate_spec(self) -> Self:
        if not self.name.strip():
            raise ValueError("Parse spec name must not be empty")
        if not self.file_path_glob_pattern.strip():
            raise ValueError("file_path_glob_pattern must not be empty")
        return self

    def build_prior_configuration(self, metadata: FileMetadata) -> ParseConfiguration | None:
        """Overrides as a prior configuration for guess_setup, or None when the spec has none."""
        if not self.column_types:
            return None

        configuration = ParseConfiguration.unset(metadata.column_names)
        unknown = sorted(set(self.column_types) - set(metadata.column_names))
        if unknown:
            raise ValueError(
                f"Parse spec '{self.name}' overrides columns {unknown} "
                f"that {metadata.source.file_id} does not have"
            )

        for column_name, type_name in self.column_types.items():
            configuration.set_column_type(column_name, ResolvedType(type_name))
        return configuration

    def decode_options(self) -> DecodeOptions:
        return DecodeOptions(
            max_parallel_decodes=self.decode.max_parallel_decodes,
            max_rows_per_unit=self.decode.max_rows_per_unit,
            use_processes=self.decode.use_processes,
        )


def load_parse_specs_from_directory(directory_path: str) -> list[OrcParseSpec]:
    file_paths = sorted(glob(os.path.join(directory_path, "*.yaml")))

    specs: dict[str, OrcParseSpec] = {}
    for file_path in file_paths:
        with open(file_path, "r") as file:
            spec_yaml = yaml.safe_load(file)
            try:
                spec = OrcParseSpec.model_validate(spec_yaml)

                if spec.name in specs:
                    raise ValueError(f"Duplicate parse spec name '{spec.name}' found in file: {file_path}")

                specs[spec.name] = spec

            except Exception as e:
                raise ValueError(f"Error loading parse spec from {file_path}: {e}") from e

    if not specs:
        logger.warning("No parse spec files found in directory: %s", directory_path)

    return list(specs.values())

import logging
from pathlib import Path

from orc_ingest.column_store import ColumnStore, InMemoryColumnStore
from orc_ingest.dataset import MaterializedDataset
from orc_ingest.decode_job import DecodeJob, DecodeOptions
from orc_ingest.domain import FileMetadata
from orc_ingest.format_reader import OrcFormatReader
from orc_ingest.schema_inference import ParseConfiguration, ParseSetup, guess_setup

logger = logging.getLogger(__name__)


def guess_file_setup(
    path: str | Path,
    prior: ParseConfiguration | None = None,
    *,
    reader: OrcFormatReader | None = None,
) -> tuple[FileMetadata, ParseSetup]:
    """Read a file's metadata and resolve its parse configuration. Header-only files yield an empty setup."""
    metadata = (reader or OrcFormatReader()).read_or_empty(path)
    return metadata, guess_setup(metadata, prior)


def fork_parse_dataset(
    path: str | Path,
    prior: ParseConfiguration | None = None,
    *,
    options: DecodeOptions | None = None,
    store: ColumnStore | None = None,
    reader: OrcFormatReader | None = None,
) -> DecodeJob:
    """
    Resolve the setup for ``path`` and start a decode job for it.

    Rejected overrides in ``prior`` do not stop the job; they become its warnings.
    """
    metadata, setup = guess_file_setup(path, prior, reader=reader)
    job = DecodeJob(metadata=metadata, setup=setup, store=store or InMemoryColumnStore(), options=options)
    logger.debug("Submitting decode job %s for %s", job.key, metadata.source.file_id)
    return job.start()


def parse_dataset(
    path: str | Path,
    prior: ParseConfiguration | None = None,
    *,
    options: DecodeOptions | None = None,
    store: ColumnStore | None = None,
) -> MaterializedDataset:
    return fork_parse_dataset(path, prior, options=options, store=store).get()

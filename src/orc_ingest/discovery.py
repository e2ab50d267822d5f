import fnmatch
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from orc_ingest.domain import DiscoveredFile, FileKey
from orc_ingest.parse_config import OrcParseSpec
from orc_ingest.utils import calculate_spec_hash

logger = logging.getLogger(__name__)


def discover_orc_files(data_dir: Path, specs: Sequence[OrcParseSpec]) -> list[DiscoveredFile]:
    """
    List files in ``data_dir`` matching a spec's glob, in name order.

    A file matched by several specs is reported once per spec.
    """
    discovered: list[DiscoveredFile] = []
    spec_hashes = {spec.name: calculate_spec_hash(spec) for spec in specs}

    with os.scandir(data_dir) as it:
        entries = sorted((entry for entry in it if entry.is_file()), key=lambda entry: entry.name)

    for entry in entries:
        for spec in specs:
            if not fnmatch.fnmatch(entry.name, spec.file_path_glob_pattern):
                continue

            stat = entry.stat()
            mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).replace(tzinfo=None)
            metadata_signature = f"{entry.name}_{stat.st_size}_{stat.st_mtime}"

            discovered.append(
                DiscoveredFile(
                    file_key=FileKey(
                        spec_name=spec.name,
                        file_metadata_signature=metadata_signature,
                        spec_hash=spec_hashes[spec.name],
                    ),
                    path=Path(entry.path).absolute(),
                    size_bytes=stat.st_size,
                    mtime_utc=mtime,
                )
            )

    logger.info("Discovery found %s files in %s", len(discovered), data_dir)
    return discovered

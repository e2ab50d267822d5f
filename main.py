import argparse
import logging
import os
import sys
import uuid
from collections import defaultdict
from logging.config import dictConfig
from pathlib import Path

from core.settings import LEDGER_DB_PATH, LOG_FOLDER, LOGGING_CONFIG, ORC_DATA_DIR, PARSE_CONFIG_DIR
from orc_ingest.discovery import discover_orc_files
from orc_ingest.domain import DiscoveredFile, RunContext
from orc_ingest.errors import OrcParseError
from orc_ingest.format_reader import OrcFormatReader
from orc_ingest.ledger_store import VerificationLedgerStore
from orc_ingest.parse_config import OrcParseSpec, load_parse_specs_from_directory
from orc_ingest.schema_inference import ParseConfiguration
from orc_ingest.verification import verify_files

os.makedirs(LOG_FOLDER, exist_ok=True)
dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)


def _prior_configurations(spec: OrcParseSpec, files: list[DiscoveredFile]) -> dict[str, ParseConfiguration]:
    if not spec.column_types:
        return {}

    reader = OrcFormatReader()
    priors: dict[str, ParseConfiguration] = {}
    for discovered in files:
        try:
            metadata = reader.read_or_empty(discovered.path)
        except (OrcParseError, OSError) as e:
            # verification reports the file itself
            logger.debug("No prior configuration for %s: %s", discovered.path.name, e)
            continue

        try:
            prior = spec.build_prior_configuration(metadata)
        except ValueError as e:
            logger.error("%s", e)
            continue
        if prior is not None:
            priors[discovered.path.name] = prior
    return priors


def run(run_context: RunContext, *, data_dir: Path, config_dir: Path, ledger_path: str) -> bool:
    specs = load_parse_specs_from_directory(str(config_dir))
    specs_by_name = {spec.name: spec for spec in specs}

    with VerificationLedgerStore(duckdb_path=ledger_path) as ledger:
        passed_keys = ledger.get_passed_file_keys()

        pending: dict[str, list[DiscoveredFile]] = defaultdict(list)
        for discovered in discover_orc_files(data_dir, specs):
            if discovered.file_key in passed_keys:
                logger.info("Skipping %s; already verified under spec %s", discovered.path.name, discovered.file_key.spec_name)
                continue
            pending[discovered.file_key.spec_name].append(discovered)

        all_passed = True
        for spec_name, files in pending.items():
            spec = specs_by_name[spec_name]
            logger.info("Verifying %s files for spec %s", len(files), spec_name)

            report = verify_files(
                [f.path for f in files],
                prior_configurations=_prior_configurations(spec, files),
                options=spec.decode_options(),
            )
            ledger.record_results(list(zip(files, report.results)), run_id=run_context.run_id)
            all_passed = all_passed and report.passed

    return all_passed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Parse ORC files and verify them against an independent reader.")
    parser.add_argument("--data-dir", type=Path, default=ORC_DATA_DIR)
    parser.add_argument("--config-dir", type=Path, default=PARSE_CONFIG_DIR)
    parser.add_argument("--ledger", default=str(LEDGER_DB_PATH))
    args = parser.parse_args(argv)

    if args.ledger != ":memory:":
        os.makedirs(Path(args.ledger).parent, exist_ok=True)

    run_context = RunContext(run_id=f"run_{uuid.uuid4().hex[:12]}")
    logger.info("Starting verification run %s", run_context.run_id)

    passed = run(run_context, data_dir=args.data_dir, config_dir=args.config_dir, ledger_path=args.ledger)
    return 0 if passed else 1


if __name__ == "__main__":
    sys.exit(main())

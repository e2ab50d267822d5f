import os
from typing import Any
from pathlib import Path

PROJECT_NAME = "orc_ingest"

# Paths
PROJECT_ROOT_DIR = Path(__file__).parent.parent.parent.resolve()

ORC_DATA_DIR = PROJECT_ROOT_DIR / "data" / "orc"
PARSE_CONFIG_DIR = PROJECT_ROOT_DIR / "configs"
LEDGER_DB_PATH = PROJECT_ROOT_DIR / "data" / "verification.duckdb"
LOG_FOLDER = PROJECT_ROOT_DIR / "logs"

# ORC layout
ORC_MAGIC = b"ORC"
ORC_FILE_SUFFIX = ".orc"

# Parsing
# String columns with fewer distinct values than this (across all stripes) are
# inferred as categorical; the reader stops tracking values past it.
CATEGORICAL_MAX_DOMAIN_SIZE = 10_000
DEFAULT_MAX_PARALLEL_DECODES = min(14, os.cpu_count() or 1)

# Verification
MAX_REPORTED_MISMATCHES = 5

# Ledger
LEDGER_SCHEMA = f"audit_{PROJECT_NAME}"
TABLE_VERIFICATION_RESULTS = "verification_results"


# Logging Configuration

LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": "INFO",
        },
        "rotating_file": {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "standard",
            "level": "DEBUG",
            "filename": str(LOG_FOLDER / "orc_ingest.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8",
        },
    },
    "loggers": {
        "": {  # root logger
            "handlers": ["console", "rotating_file"],
            "level": "DEBUG",
            "propagate": True
        },
    }

}

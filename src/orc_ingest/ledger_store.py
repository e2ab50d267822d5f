import logging
from contextlib import contextmanager
from typing import Iterator, Sequence

import duckdb

from core.settings import LEDGER_SCHEMA, TABLE_VERIFICATION_RESULTS
from orc_ingest.domain import DiscoveredFile, FileKey
from orc_ingest.utils import utc_now_naive
from orc_ingest.verification import ComparisonResult

logger = logging.getLogger(__name__)


class VerificationLedgerStore:
    """
    Verification ledger backed by DuckDB.

    DB is a CHECKPOINT:
      - one row per verified file per run
      - files whose latest result passed are skipped by later runs with the same FileKey

    Tables:
      <schema>.verification_results
    """

    def __init__(self, *, duckdb_path: str, auto_bootstrap: bool = True):
        self._duckdb_path = duckdb_path
        self._auto_bootstrap = auto_bootstrap

        self._connection: duckdb.DuckDBPyConnection | None = None

    def __enter__(self) -> "VerificationLedgerStore":
        if self._connection is not None:
            raise RuntimeError("Store connection already open")

        self._connection = duckdb.connect(self._duckdb_path)

        if self._auto_bootstrap:
            self._bootstrap()

        logger.debug("Ledger connected. duckdb=%s", self._duckdb_path)
        return self

    def __exit__(self, exc_type, exc_value, tb) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        finally:
            self._connection = None

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            raise RuntimeError("Store is not connected; use it as a context manager")
        return self._connection

    # ----------------------------
    # Public API
    # ----------------------------
    def get_passed_file_keys(self) -> set[FileKey]:
        """Keys whose most recent verification was usable and without mismatches."""
        conn = self._require_connection()
        rows = conn.execute(
            f"""
            SELECT spec_name, file_metadata_signature, spec_hash
            FROM {self._table()}
            QUALIFY ROW_NUMBER() OVER (
                PARTITION BY spec_name, file_metadata_signature, spec_hash
                ORDER BY verified_at_utc DESC
            ) = 1
            AND usable AND mismatch_count = 0;
            """
        ).fetchall()

        return {FileKey(spec_name=r[0], file_metadata_signature=r[1], spec_hash=r[2]) for r in rows}

    def record_results(
        self,
        results: Sequence[tuple[DiscoveredFile, ComparisonResult]],
        *,
        run_id: str,
    ) -> None:
        """Atomic: one row per (file, result)."""
        if not results:
            return

        now = utc_now_naive()
        conn = self._require_connection()

        rows = [
            (
                d.file_key.spec_name,
                d.file_key.file_metadata_signature,
                d.file_key.spec_hash,
                str(d.path),
                bool(r.usable),
                int(r.mismatch_count),
                r.reason,
                str(run_id),
                now,
            )
            for (d, r) in results
        ]

        with self.transaction(conn) as tx:
            tx.executemany(
                f"""
                INSERT INTO {self._table()}
                (spec_name, file_metadata_signature, spec_hash, file_path, usable, mismatch_count, reason, run_id, verified_at_utc)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        logger.debug("Recorded %s verification results for run %s", len(rows), run_id)

    # ----------------------------
    # Bootstrap / helpers
    # ----------------------------
    def _bootstrap(self) -> None:
        conn = self._require_connection()
        conn.execute(f"CREATE SCHEMA IF NOT EXISTS {LEDGER_SCHEMA}")
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self._table()} (
              spec_name                 VARCHAR NOT NULL,
              file_metadata_signature   VARCHAR NOT NULL,
              spec_hash                 VARCHAR NOT NULL,
              file_path                 VARCHAR NOT NULL,
              usable                    BOOLEAN NOT NULL,
              mismatch_count            BIGINT  NOT NULL,
              reason                    VARCHAR,
              run_id                    VARCHAR NOT NULL,
              verified_at_utc           TIMESTAMP NOT NULL
            );
            """
        )

    @staticmethod
    def _table() -> str:
        return f"{LEDGER_SCHEMA}.{TABLE_VERIFICATION_RESULTS}"

    @contextmanager
    def transaction(self, conn: duckdb.DuckDBPyConnection) -> Iterator[duckdb.DuckDBPyConnection]:
        conn.execute("BEGIN TRANSACTION")
        try:
            yield conn
        except Exception:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

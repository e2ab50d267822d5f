from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import pyarrow as pa
import pyarrow.compute as pc

from core.settings import DEFAULT_MAX_PARALLEL_DECODES
from orc_ingest.column_store import ColumnStore
from orc_ingest.dataset import MaterializedColumn, MaterializedDataset
from orc_ingest.decode_task import (
    ColumnPlan,
    DecodedUnit,
    DecodeUnit,
    execute_decode_units,
    group_units_by_stripe,
    plan_decode_units,
)
from orc_ingest.domain import Domain, FileMetadata, ResolvedType
from orc_ingest.errors import (
    ConfigurationMismatchError,
    InconsistentStripeSchemaError,
    OrcParseError,
    StripeDecodeError,
)
from orc_ingest.schema_inference import ParseSetup
from orc_ingest.utils import utc_now

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass(frozen=True)
class DecodeOptions:
    max_parallel_decodes: int = DEFAULT_MAX_PARALLEL_DECODES
    # stripes longer than this are split into several units
    max_rows_per_unit: int | None = None
    use_processes: bool = False
    poll_interval_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_parallel_decodes < 1:
            raise ValueError("max_parallel_decodes must be at least 1")
        if self.max_rows_per_unit is not None and self.max_rows_per_unit < 1:
            raise ValueError("max_rows_per_unit must be at least 1 when set")


class _JobCancelled(Exception):
    pass


def check_uniform_stripe_schema(metadata: FileMetadata) -> None:
    expected = metadata.column_names
    for stripe in metadata.stripes:
        if stripe.column_names != expected:
            raise InconsistentStripeSchemaError(
                str(metadata.source.path), stripe.index, expected, stripe.column_names
            )


def remap_codes(codes: pa.Array, local_domain: Domain, merged_domain: Domain) -> pa.Array:
    """Translate codes into a unit's local domain to codes into the merged domain."""
    mapping = pa.array([merged_domain.code_of(value) for value in local_domain], type=pa.int32())
    return pc.take(mapping, codes)


class DecodeJob:
    """
    Decodes every stripe of one file into a MaterializedDataset.

    Lifecycle: submitted -> running -> succeeded | failed (or cancelled).

    Each stripe is one task on an executor; it returns an immutable DecodedUnit
    per unit of that stripe. Once all units have reported, categorical domains
    are merged, chunks are written to the column store in file order and the
    dataset is published. A failing unit fails the whole job; nothing partial is
    ever visible to callers.
    """

    def __init__(
        self,
        *,
        metadata: FileMetadata,
        setup: ParseSetup,
        store: ColumnStore,
        options: DecodeOptions | None = None,
        key: str | None = None,
    ):
        configuration = setup.configuration
        if not configuration.is_frozen:
            raise ValueError("Parse configuration must be frozen before it is submitted")
        if configuration.column_names != metadata.column_names:
            raise ConfigurationMismatchError(
                f"Configuration columns {list(configuration.column_names)} do not match "
                f"{metadata.source.file_id} columns {list(metadata.column_names)}"
            )
        check_uniform_stripe_schema(metadata)

        self.metadata = metadata
        self.setup = setup
        self.store = store
        self.options = options or DecodeOptions()
        self.key = key or f"{metadata.source.path.stem}_{uuid.uuid4().hex[:12]}"
        self.plans = tuple(
            ColumnPlan(index=c.index, name=c.name, native_kind=c.native_kind, resolved_type=t)
            for c, t in zip(metadata.columns, configuration.column_types)
        )

        self.status = JobStatus.SUBMITTED
        self.submitted_at: datetime = utc_now()
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None

        self._error: BaseException | None = None
        self._future: Future[MaterializedDataset] = Future()
        self._cancel_requested = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    # ----------------------------
    # Public API
    # ----------------------------
    @property
    def warnings(self) -> tuple[str, ...]:
        """Configuration errors of the setup this job was submitted with, verbatim."""
        return self.setup.error_messages

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def future(self) -> Future[MaterializedDataset]:
        return self._future

    def start(self) -> DecodeJob:
        with self._lock:
            if self._thread is not None:
                raise RuntimeError(f"Decode job {self.key} already started")
            self._thread = threading.Thread(target=self._run, name=f"decode-{self.key}", daemon=True)
        self._thread.start()
        return self

    def get(self, timeout: float | None = None) -> MaterializedDataset:
        """Block until the job finishes. Raises the job's terminal error, or CancelledError."""
        return self._future.result(timeout)

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> bool:
        """
        Request cancellation.

        Returns False once the job has finished; a succeeded job keeps its result.
        """
        with self._lock:
            if self.status in TERMINAL_STATUSES:
                return False
            self._cancel_requested.set()
            if self.status is JobStatus.SUBMITTED:
                self._mark_cancelled()
        logger.info("Cancellation requested for decode job %s", self.key)
        return True

    # ----------------------------
    # Execution
    # ----------------------------
    def _run(self) -> None:
        with self._lock:
            if self.status is not JobStatus.SUBMITTED:
                return
            self.status = JobStatus.RUNNING
            self.started_at = utc_now()

        source = self.metadata.source
        logger.info(
            "Decode job %s started: %s (%s rows, %s stripes)",
            self.key, source.file_id, source.num_rows, source.stripe_count,
        )

        try:
            decoded = self._decode_units()
            dataset = self._materialize(decoded)
        except _JobCancelled:
            with self._lock:
                self._mark_cancelled()
        except Exception as e:
            with self._lock:
                self._mark_failed(e)
        else:
            with self._lock:
                if self._cancel_requested.is_set():
                    self._mark_cancelled()
                else:
                    self.status = JobStatus.SUCCEEDED
                    self.finished_at = utc_now()
                    self._future.set_result(dataset)
                    logger.info("Decode job %s succeeded: %s rows", self.key, dataset.num_rows)

    def _decode_units(self) -> list[DecodedUnit]:
        path = str(self.metadata.source.path)
        units = plan_decode_units(self.metadata.stripes, self.options.max_rows_per_unit)
        pending = group_units_by_stripe(units)
        in_flight: dict[Future[list[DecodedUnit]], tuple[DecodeUnit, ...]] = {}
        decoded: dict[int, DecodedUnit] = {}

        executor = self._make_executor()
        try:
            while pending or in_flight:
                if self._cancel_requested.is_set():
                    raise _JobCancelled()

                # Dispatch
                while len(in_flight) < self.options.max_parallel_decodes and pending:
                    stripe_units = pending.pop(0)
                    fut = executor.submit(
                        execute_decode_units, path, stripe_units, self.plans, self.metadata.column_names
                    )
                    in_flight[fut] = stripe_units

                # Collect
                done, _ = wait(in_flight.keys(), timeout=self.options.poll_interval_seconds, return_when=FIRST_COMPLETED)
                for fut in done:
                    stripe_units = in_flight.pop(fut)
                    for result in self._stripe_result(fut, stripe_units[0].stripe_index):
                        decoded[result.ordinal] = result
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        return [decoded[unit.ordinal] for unit in units]

    def _stripe_result(self, fut: Future[list[DecodedUnit]], stripe_index: int) -> list[DecodedUnit]:
        try:
            return fut.result()
        except OrcParseError:
            raise
        except Exception as e:
            raise StripeDecodeError(str(self.metadata.source.path), stripe_index, repr(e)) from e

    def _materialize(self, decoded: list[DecodedUnit]) -> MaterializedDataset:
        # Barrier passed: every unit has reported its local domains
        merged_domains: dict[int, Domain] = {
            plan.index: Domain.merge_all(unit.local_domains[plan.index] for unit in decoded)
            for plan in self.plans
            if plan.resolved_type is ResolvedType.CATEGORICAL
        }

        for unit in decoded:
            if self._cancel_requested.is_set():
                raise _JobCancelled()
            for plan in self.plans:
                chunk = unit.arrays[plan.index]
                if plan.index in merged_domains:
                    chunk = remap_codes(chunk, unit.local_domains[plan.index], merged_domains[plan.index])
                self.store.put_chunk(self.key, plan.index, unit.ordinal, chunk)

        columns = tuple(
            MaterializedColumn(
                name=plan.name,
                resolved_type=plan.resolved_type,
                data=pa.chunked_array(self.store.get_chunks(self.key, plan.index), type=plan.storage_type),
                domain=merged_domains.get(plan.index),
            )
            for plan in self.plans
        )
        return MaterializedDataset(key=self.key, columns=columns, num_rows=sum(u.num_rows for u in decoded))

    def _make_executor(self) -> Executor:
        if self.options.use_processes:
            return ProcessPoolExecutor(max_workers=self.options.max_parallel_decodes)
        return ThreadPoolExecutor(max_workers=self.options.max_parallel_decodes, thread_name_prefix=f"decode-{self.key}")

    # Callers hold self._lock
    def _mark_cancelled(self) -> None:
        self.status = JobStatus.CANCELLED
        self.finished_at = utc_now()
        self.store.remove(self.key)
        self._future.cancel()
        logger.info("Decode job %s cancelled", self.key)

    def _mark_failed(self, error: BaseException) -> None:
        self.status = JobStatus.FAILED
        self.finished_at = utc_now()
        self._error = error
        self.store.remove(self.key)
        self._future.set_exception(error)
        logger.error("Decode job %s failed: %s", self.key, error)

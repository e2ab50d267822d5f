import logging
import threading
from typing import Protocol

import pyarrow as pa

logger = logging.getLogger(__name__)


class ColumnStore(Protocol):
    """Keyed storage for typed column chunks, one entry per (dataset key, column, chunk ordinal)."""

    def put_chunk(self, key: str, column_index: int, ordinal: int, chunk: pa.Array) -> None:
        ...

    def get_chunks(self, key: str, column_index: int) -> list[pa.Array]:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self) -> set[str]:
        ...


class InMemoryColumnStore:
    """
    Process-local ColumnStore.

    Chunks are returned in ordinal order regardless of write order. Several jobs
    may share one store, so the key map is guarded by a lock.
    """

    def __init__(self) -> None:
        self._chunks: dict[str, dict[int, dict[int, pa.Array]]] = {}
        self._lock = threading.Lock()

    def put_chunk(self, key: str, column_index: int, ordinal: int, chunk: pa.Array) -> None:
        with self._lock:
            columns = self._chunks.setdefault(key, {})
            chunks = columns.setdefault(column_index, {})
            if ordinal in chunks:
                raise KeyError(f"Chunk {ordinal} of column {column_index} already written under {key}")
            chunks[ordinal] = chunk

    def get_chunks(self, key: str, column_index: int) -> list[pa.Array]:
        with self._lock:
            chunks = self._chunks.get(key, {}).get(column_index, {})
            return [chunks[ordinal] for ordinal in sorted(chunks)]

    def remove(self, key: str) -> None:
        with self._lock:
            if self._chunks.pop(key, None) is not None:
                logger.debug("Removed column chunks for %s", key)

    def keys(self) -> set[str]:
        with self._lock:
            return set(self._chunks)

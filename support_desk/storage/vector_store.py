"""An in-process vector index backed by NumPy.

Search is a brute-force cosine scan, O(n * d) per query for ``n`` records of
dimension ``d``. That is fine for hundreds to a few thousand chunks; past
that, swap the scan for an approximate nearest-neighbour structure behind
the same :meth:`VectorIndex.search` signature.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from ..errors import DimensionMismatchError
from ..models import DocumentSummary, SearchResult, VectorRecord
from .persistence import VectorPersistence

logger = logging.getLogger(__name__)

CATEGORIES = ("hr", "it", "general")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return ``dot(a, b) / (|a| * |b|)``, or ``0.0`` if either norm is zero."""

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape:
        raise DimensionMismatchError(vec_a.shape[-1], vec_b.shape[-1])
    magnitude = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if magnitude == 0.0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / magnitude)


@dataclass(frozen=True)
class _Snapshot:
    """Immutable view of the index; replaced wholesale on every mutation."""

    records: tuple
    matrix: Optional[np.ndarray]

    @property
    def dimension(self) -> Optional[int]:
        if self.matrix is None:
            return None
        return int(self.matrix.shape[1])


_EMPTY = _Snapshot(records=(), matrix=None)


def _build_snapshot(records: Iterable[VectorRecord]) -> _Snapshot:
    records = tuple(records)
    if not records:
        return _EMPTY
    matrix = np.asarray([record.embedding for record in records], dtype=np.float64)
    return _Snapshot(records=records, matrix=matrix)


class VectorIndex:
    """Store chunks with their embeddings and search them by cosine similarity.

    Mutations are serialised by a single writer lock. Each one builds a new
    immutable snapshot, persists it, and only then publishes it, so readers
    never observe a half-applied change and a failed save leaves the index
    untouched. Searches read whichever snapshot is current without locking.
    """

    def __init__(
        self,
        persistence: VectorPersistence | None = None,
        *,
        autosave: bool = True,
    ) -> None:
        self.persistence = persistence
        self.autosave = autosave
        self._write_lock = threading.Lock()
        self._snapshot = _EMPTY
        if persistence is not None:
            self._load()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------
    def _load(self) -> None:
        assert self.persistence is not None
        loaded = self.persistence.load()
        # The most common non-empty length wins; ties go to the earliest record.
        lengths = Counter(len(record.embedding) for record in loaded if record.embedding)
        dimension = lengths.most_common(1)[0][0] if lengths else None
        kept: List[VectorRecord] = []
        seen: set[str] = set()
        for record in loaded:
            if record.id in seen:
                logger.warning("Skipping duplicate vector id %s", record.id)
                continue
            if len(record.embedding) != dimension:
                logger.warning(
                    "Skipping vector %s with dimension %d (index uses %s)",
                    record.id,
                    len(record.embedding),
                    dimension,
                )
                continue
            seen.add(record.id)
            kept.append(record)
        self._snapshot = _build_snapshot(kept)
        if kept:
            logger.info("Restored %d vectors from persistence", len(kept))

    def _commit(self, snapshot: _Snapshot) -> None:
        """Persist ``snapshot`` (when enabled) and publish it. Caller holds the lock."""

        if self.autosave and self.persistence is not None:
            self.persistence.save(list(snapshot.records))
        self._snapshot = snapshot

    def save(self) -> None:
        """Write the current snapshot regardless of the autosave setting."""

        with self._write_lock:
            if self.persistence is not None:
                self.persistence.save(list(self._snapshot.records))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def _new_id(self, taken: set[str]) -> str:
        while True:
            candidate = f"vec_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"
            if candidate not in taken:
                return candidate

    def _prepare(
        self,
        items: Sequence[Mapping[str, Any]],
        current: _Snapshot,
    ) -> List[VectorRecord]:
        dimension = current.dimension
        taken = {record.id for record in current.records}
        upload_time = int(time.time() * 1000)
        prepared: List[VectorRecord] = []

        for item in items:
            embedding = [float(value) for value in np.asarray(item["embedding"], dtype=np.float64).ravel()]
            if not embedding:
                raise ValueError("Embeddings cannot be empty")
            if dimension is None:
                dimension = len(embedding)
            elif len(embedding) != dimension:
                raise DimensionMismatchError(dimension, len(embedding))

            record_id = self._new_id(taken)
            taken.add(record_id)
            metadata = dict(item.get("metadata") or {})
            metadata["uploadTime"] = upload_time
            prepared.append(
                VectorRecord(
                    id=record_id,
                    content=str(item["content"]),
                    embedding=embedding,
                    metadata=metadata,
                )
            )
        return prepared

    def add(self, content: str, embedding: Sequence[float], metadata: Mapping[str, Any] | None = None) -> str:
        """Store one record and return its generated id."""

        return self.add_batch([{"content": content, "embedding": embedding, "metadata": metadata}])[0]

    def add_batch(self, items: Sequence[Mapping[str, Any]]) -> List[str]:
        """Store many records with a single snapshot write.

        Either every item is stored or, when any item is invalid or the save
        fails, none is.
        """

        if not items:
            return []
        with self._write_lock:
            current = self._snapshot
            prepared = self._prepare(items, current)
            self._commit(_build_snapshot(current.records + tuple(prepared)))
        return [record.id for record in prepared]

    def delete_by_filename(self, filename: str) -> int:
        with self._write_lock:
            current = self._snapshot
            remaining = [record for record in current.records if record.filename != filename]
            removed = len(current.records) - len(remaining)
            if removed:
                self._commit(_build_snapshot(remaining))
        return removed

    def delete_by_id(self, record_id: str) -> bool:
        with self._write_lock:
            current = self._snapshot
            remaining = [record for record in current.records if record.id != record_id]
            if len(remaining) == len(current.records):
                return False
            self._commit(_build_snapshot(remaining))
        return True

    def clear(self) -> None:
        with self._write_lock:
            self._commit(_EMPTY)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def search(
        self,
        query_embedding: Sequence[float],
        *,
        top_k: int = 5,
        threshold: float = 0.6,
    ) -> List[SearchResult]:
        """Return up to ``top_k`` records with cosine similarity ``>= threshold``.

        Results are ordered by descending score; equal scores keep insertion
        order. A query whose dimension differs from the index is rejected.
        """

        snapshot = self._snapshot
        if snapshot.matrix is None or top_k <= 0:
            return []

        query_vec = np.asarray(query_embedding, dtype=np.float64).ravel()
        if query_vec.shape[0] != snapshot.dimension:
            raise DimensionMismatchError(snapshot.dimension, query_vec.shape[0])

        doc_vectors = snapshot.matrix
        magnitudes = np.linalg.norm(doc_vectors, axis=1) * np.linalg.norm(query_vec)
        dots = doc_vectors @ query_vec
        similarities = np.divide(
            dots, magnitudes, out=np.zeros_like(dots), where=magnitudes != 0
        )

        candidates = np.flatnonzero(similarities >= threshold)
        order = np.argsort(-similarities[candidates], kind="stable")[:top_k]
        return [
            SearchResult(
                content=snapshot.records[idx].content,
                score=float(np.clip(similarities[idx], 0.0, 1.0)),
                metadata=dict(snapshot.records[idx].metadata),
            )
            for idx in candidates[order]
        ]

    def get_all(self) -> List[VectorRecord]:
        return list(self._snapshot.records)

    def get(self, record_id: str) -> Optional[VectorRecord]:
        for record in self._snapshot.records:
            if record.id == record_id:
                return record
        return None

    def get_stats(self) -> Dict[str, Any]:
        records = self._snapshot.records
        category_count = {category: 0 for category in CATEGORIES}
        for record in records:
            category = record.metadata.get("category")
            if category in category_count:
                category_count[category] += 1
        filenames = list(dict.fromkeys(record.filename for record in records if record.filename))
        return {
            "totalDocuments": len(records),
            "filenames": filenames,
            "categoryCount": category_count,
        }

    def list_documents(self) -> List[DocumentSummary]:
        """Group records by filename, most recent upload first."""

        groups: Dict[str, Dict[str, Any]] = {}
        for record in self._snapshot.records:
            filename = record.filename
            if not filename:
                continue
            group = groups.get(filename)
            if group is None:
                group = groups[filename] = {
                    "category": record.category,
                    "chunk_count": 0,
                    "upload_time": int(record.metadata.get("uploadTime", 0)),
                    "builtin": bool(record.metadata.get("builtin", False)),
                }
            group["chunk_count"] += 1

        summaries = [DocumentSummary(filename=name, **group) for name, group in groups.items()]
        return sorted(summaries, key=lambda summary: summary.upload_time, reverse=True)

    def get_document(self, filename: str) -> List[VectorRecord]:
        """Return the chunks of ``filename`` ordered by chunk index."""

        chunks = [record for record in self._snapshot.records if record.filename == filename]
        return sorted(chunks, key=lambda record: int(record.metadata.get("chunkIndex", 0)))

    def has_builtin(self) -> bool:
        return any(record.metadata.get("builtin") for record in self._snapshot.records)

    # ------------------------------------------------------------------
    @property
    def chunk_count(self) -> int:
        return len(self._snapshot.records)

    @property
    def dimension(self) -> int | None:
        return self._snapshot.dimension

    def __len__(self) -> int:
        return self.chunk_count

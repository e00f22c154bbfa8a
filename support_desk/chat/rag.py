"""Retrieval-augmented generation helpers on top of :class:`VectorIndex`."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import numpy as np

from ..errors import IngestError
from ..models import SearchResult
from ..storage.vector_store import VectorIndex
from .llm import EmbeddingBackend

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "\n\n参考知识库内容：\n\n"


def build_context(results: Iterable[SearchResult]) -> str:
    """Format retrieved passages as a numbered block for the system prompt.

    Returns an empty string when there is nothing to cite, which callers
    treat as "leave the section out".
    """

    segments = []
    for idx, result in enumerate(results, start=1):
        segments.append(
            f"[{idx}] {result.content}\n"
            f"(相似度: {result.score * 100:.1f}% | 来源: {result.filename})\n\n"
        )
    if not segments:
        return ""
    return CONTEXT_HEADER + "".join(segments)


class Retriever:
    """Embed queries, search the index and feed new knowledge into it."""

    def __init__(self, index: VectorIndex, *, timeout: float = 30.0) -> None:
        self.index = index
        self.timeout = timeout

    async def retrieve(
        self,
        query: str,
        embedder: EmbeddingBackend,
        *,
        top_k: int = 5,
        threshold: float = 0.6,
    ) -> List[SearchResult]:
        """Return the passages most similar to ``query``.

        Retrieval is best effort: embedding failures, timeouts and search
        errors are logged and produce an empty list.
        """

        try:
            query_vec = await asyncio.wait_for(embedder.embed(query), timeout=self.timeout)
            results = await asyncio.to_thread(
                self.index.search, query_vec, top_k=top_k, threshold=threshold
            )
        except asyncio.TimeoutError:
            logger.warning("Query embedding timed out after %.1fs", self.timeout)
            return []
        except Exception:
            logger.exception("Retrieval failed for query %r", query[:50])
            return []

        logger.info("Retrieved %d passages for %r", len(results), query[:50])
        return results

    async def ingest(
        self,
        items: Sequence[Mapping[str, Any]],
        embedder: EmbeddingBackend,
    ) -> List[str]:
        """Embed ``items`` (``{"content", "metadata"}``) and store them together.

        Nothing is stored unless every item was embedded and indexed.
        """

        if not items:
            return []

        texts = [str(item["content"]) for item in items]
        logger.info("Generating embeddings for %d chunks", len(texts))
        try:
            embeddings = await embedder.embed_batch(texts)
            embeddings = np.asarray(embeddings, dtype=np.float64)
            if embeddings.ndim != 2 or embeddings.shape[0] != len(texts):
                raise ValueError("Embeddings must be a 2D array with one row per item")
            ids = await asyncio.to_thread(
                self.index.add_batch,
                [
                    {"content": text, "embedding": vector, "metadata": item.get("metadata") or {}}
                    for text, vector, item in zip(texts, embeddings, items)
                ],
            )
        except Exception as exc:
            logger.error("Ingest of %d chunks failed: %s", len(texts), exc)
            raise IngestError(str(exc)) from exc

        logger.info("Added %d chunks to the vector index", len(ids))
        return ids

    def delete_knowledge(self, filename: str) -> int:
        return self.index.delete_by_filename(filename)

    def stats(self) -> Dict[str, Any]:
        return self.index.get_stats()

    def clear(self) -> None:
        self.index.clear()

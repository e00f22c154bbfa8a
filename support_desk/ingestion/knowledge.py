"""Turn documents into chunk items ready for :meth:`Retriever.ingest`."""

from __future__ import annotations

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List

from ..config import Settings
from ..utils.chunking import Chunker, chunk_stats

logger = logging.getLogger(__name__)

HR_TERMS = ("薪资", "社保", "年假", "考勤", "入职", "离职", "绩效", "福利", "招聘", "培训")
IT_TERMS = ("电脑", "网络", "打印机", "VPN", "软件", "系统", "故障", "账号", "密码", "硬件")


def classify_document(content: str) -> str:
    """Guess whether a document is about HR, IT or neither."""

    hr_score = sum(1 for term in HR_TERMS if term in content)
    it_score = sum(1 for term in IT_TERMS if term in content)
    if hr_score > it_score:
        return "hr"
    if it_score > hr_score:
        return "it"
    return "general"


def chunker_from_settings(settings: Settings, *, max_chunk_size: int | None = None) -> Chunker:
    size = max_chunk_size or settings.max_chunk_size
    return Chunker(
        max_chunk_size=size,
        chunk_overlap=settings.chunk_overlap,
        min_chunk_size=min(settings.min_chunk_size, size),
        split_by_paragraph=settings.split_by_paragraph,
    )


def upload_items(
    text: str,
    *,
    filename: str,
    source_type: str,
    chunker: Chunker,
    category: str | None = None,
    document_id: str | None = None,
) -> tuple[str, str, List[Dict[str, Any]]]:
    """Chunk an uploaded file's text.

    Returns ``(document_id, category, items)``.
    """

    document_id = document_id or str(uuid.uuid4())
    category = category or classify_document(text)
    chunks = chunker.chunk(text, document_id, source_name=filename, source_type=source_type)
    logger.info("Chunked %s: %s", filename, chunk_stats(chunks))
    upload_time = int(time.time() * 1000)
    items = [
        {
            "content": chunk.content,
            "metadata": {
                "filename": filename,
                "uploadTime": upload_time,
                "chunkIndex": chunk.index,
                "category": category,
                "documentId": document_id,
                "builtin": False,
            },
        }
        for chunk in chunks
    ]
    return document_id, category, items


def load_builtin_knowledge(directory: str | Path, settings: Settings) -> List[Dict[str, Any]]:
    """Chunk every knowledge base JSON file in ``directory``.

    Each file holds ``{"name", "category", "documents": [{"id", "title",
    "content", "chunkSize"?}]}``. Files that cannot be parsed are skipped.
    """

    root = Path(directory)
    if not root.is_dir():
        logger.info("No built-in knowledge directory at %s", root)
        return []

    items: List[Dict[str, Any]] = []
    upload_time = int(time.time() * 1000)
    for path in sorted(root.glob("*.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            documents = data["documents"]
            name = data["name"]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Skipping knowledge file %s: %s", path, exc)
            continue

        category = data.get("category", "general")
        file_chunks = 0
        for doc in documents:
            chunker = chunker_from_settings(settings, max_chunk_size=doc.get("chunkSize"))
            chunks = chunker.chunk(doc["content"], doc["id"], source_name=doc["title"], source_type="json")
            file_chunks += len(chunks)
            items.extend(
                {
                    "content": chunk.content,
                    "metadata": {
                        "filename": f"{name}-{doc['title']}",
                        "uploadTime": upload_time,
                        "chunkIndex": chunk.index,
                        "category": category,
                        "documentId": doc["id"],
                        "title": doc["title"],
                        "builtin": True,
                    },
                }
                for chunk in chunks
            )
        logger.info("Loaded %d chunks from %s", file_chunks, path.name)

    logger.info("Total built-in chunks: %d", len(items))
    return items

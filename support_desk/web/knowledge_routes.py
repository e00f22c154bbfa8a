"""Knowledge base management: listing, upload, deletion and built-in init."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from ..errors import ConfigurationError, IngestError
from ..ingestion.files import extract_text, file_type, is_supported
from ..ingestion.knowledge import chunker_from_settings, upload_items
from ..services import Services, initialize_builtin_knowledge
from .dependencies import get_services
from .schemas import ApiKeyRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/knowledge", tags=["knowledge"])

PREVIEW_LENGTH = 500


def _resolve_key(services: Services, api_key: Optional[str]) -> str:
    key = api_key or services.settings.api_key
    if not key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="缺少 API 密钥")
    return key


@router.get("")
async def list_documents(services: Services = Depends(get_services)) -> Dict[str, Any]:
    stats = services.index.get_stats()
    return {
        "documents": [summary.to_dict() for summary in services.index.list_documents()],
        "totalChunks": stats["totalDocuments"],
        "totalVectors": stats["totalDocuments"],
        "categoryCount": stats["categoryCount"],
    }


@router.get("/stats")
async def knowledge_stats(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.index.get_stats()


@router.post("/upload")
async def upload_document(
    file: UploadFile = File(...),
    api_key: Optional[str] = Form(default=None, alias="apiKey"),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    filename = Path(file.filename or "").name
    if not filename or not is_supported(filename):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="不支持的文件格式")
    key = _resolve_key(services, api_key)

    data = await file.read(services.settings.max_upload_bytes + 1)
    if len(data) > services.settings.max_upload_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="文件过大")

    fd, tmp_name = tempfile.mkstemp(suffix=Path(filename).suffix.lower())
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        text = await asyncio.to_thread(extract_text, tmp_name)
    except (OSError, ValueError) as exc:
        logger.warning("Could not read upload %s: %s", filename, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"文件处理失败: {exc}") from exc
    finally:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass

    if not text.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="文件内容为空")
    logger.info("Extracted %d characters from %s", len(text), filename)

    document_id, category, items = upload_items(
        text,
        filename=filename,
        source_type=file_type(filename),
        chunker=chunker_from_settings(services.settings),
    )
    try:
        clients = services.clients_factory(key)
        await services.retriever.ingest(items, clients.embedder)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except IngestError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=f"文件处理失败: {exc}"
        ) from exc

    logger.info("Indexed %s as %s with %d chunks", filename, category, len(items))
    return {
        "documentId": document_id,
        "fileName": filename,
        "category": category,
        "chunkCount": len(items),
        "vectorsGenerated": len(items),
    }


@router.post("/initialize-builtin")
async def initialize_builtin(
    payload: ApiKeyRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    if services.index.has_builtin():
        return {"success": True, "message": "内置知识库已存在", "stats": services.index.get_stats()}

    key = _resolve_key(services, payload.api_key)
    try:
        added = await initialize_builtin_knowledge(services, key)
    except IngestError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=f"初始化失败: {exc}"
        ) from exc
    if not added:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="加载内置知识库失败")
    return {"success": True, "message": "内置知识库初始化成功", "stats": services.index.get_stats()}


@router.get("/{filename}/content")
async def document_content(filename: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    chunks = services.index.get_document(filename)
    if not chunks:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="文档不存在")

    content = "\n\n".join(chunk.content for chunk in chunks)
    first = chunks[0].metadata
    preview = content[:PREVIEW_LENGTH] + ("..." if len(content) > PREVIEW_LENGTH else "")
    return {
        "filename": filename,
        "category": first.get("category") or "general",
        "title": first.get("title") or filename,
        "builtin": bool(first.get("builtin", False)),
        "chunkCount": len(chunks),
        "content": content,
        "preview": preview,
    }


@router.delete("/{filename}")
async def delete_document(filename: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    deleted = await asyncio.to_thread(services.retriever.delete_knowledge, filename)
    logger.info("Deleted %d chunks for %s", deleted, filename)
    return {"success": True, "deletedChunks": deleted}

"""Streaming chat endpoint (server-sent events)."""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from ..chat.engine import ChatRequest, TurnStateMachine
from ..errors import ConfigurationError, UpstreamError
from ..models import ChatEvent, ChatTurn
from ..services import Services
from .dependencies import get_services
from .schemas import ChatStreamRequest, ImageChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: ChatEvent) -> str:
    return f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


async def _sse_stream(turn: TurnStateMachine) -> AsyncIterator[str]:
    async with aclosing(turn.events()) as events:
        async for event in events:
            yield format_sse(event)


@router.post("/stream", summary="Stream an answer with ticket and knowledge events")
async def chat_stream(
    payload: ChatStreamRequest,
    services: Services = Depends(get_services),
) -> StreamingResponse:
    if not payload.message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")

    request = ChatRequest(
        message=payload.message,
        session_id=payload.session_id or str(uuid.uuid4()),
        history=[ChatTurn(role=entry.role, content=entry.content) for entry in payload.conversation_history],
        api_key=payload.api_keys.model_scope_api_key if payload.api_keys else None,
        enable_rag=payload.enable_rag,
    )
    try:
        turn = services.orchestrator.start_turn(request)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return StreamingResponse(_sse_stream(turn), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/image", summary="Answer a question about an image")
async def chat_image(
    payload: ImageChatRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    if not payload.image_url.strip() or not payload.question.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="imageUrl and question are required"
        )

    api_key = payload.api_keys.model_scope_api_key if payload.api_keys else None
    try:
        clients = services.clients_factory(api_key)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        answer = await clients.chat_model.chat_with_image(payload.image_url, payload.question)
    except UpstreamError as exc:
        logger.error("Image chat failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=f"图片理解失败: {exc}"
        ) from exc
    return {"success": True, "response": answer}

"""Request payloads for the HTTP API."""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class HistoryEntry(BaseModel):
    role: Literal["user", "assistant"]
    content: Any


class ApiKeys(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model_scope_api_key: Optional[str] = Field(default=None, alias="modelScopeApiKey")


class ChatStreamRequest(BaseModel):
    """Body of ``POST /api/chat/stream``."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, description="User message to answer")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    conversation_history: List[HistoryEntry] = Field(default_factory=list, alias="conversationHistory")
    api_keys: Optional[ApiKeys] = Field(default=None, alias="apiKeys")
    enable_rag: bool = Field(default=True, alias="enableRAG")


class ImageChatRequest(BaseModel):
    """Body of ``POST /api/chat/image``."""

    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(default="", alias="imageUrl")
    question: str = ""
    api_keys: Optional[ApiKeys] = Field(default=None, alias="apiKeys")


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: Literal["hr", "it"]
    priority: Optional[Literal["low", "medium", "high", "urgent"]] = None


class TicketUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Literal["low", "medium", "high", "urgent"]] = None
    status: Optional[Literal["pending", "processing", "completed", "closed"]] = None


class ApiKeyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: Optional[str] = Field(default=None, alias="apiKey")


class ValidateKeysRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    modelscope_api_key: Optional[str] = Field(default=None, alias="modelscopeApiKey")

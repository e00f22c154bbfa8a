"""Core domain models for the support desk."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

Category = Literal["hr", "it", "general"]
TicketCategory = Literal["hr", "it"]
Priority = Literal["low", "medium", "high", "urgent"]
TicketStatus = Literal["pending", "processing", "completed", "closed"]
Role = Literal["user", "assistant"]
EventType = Literal["content", "sources", "ticket", "end", "error"]

TICKET_STATUSES = ("pending", "processing", "completed", "closed")
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
TICKET_CATEGORIES = ("hr", "it")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TextChunk:
    """A bounded segment of one document's text, ready for embedding."""

    id: str
    document_id: str
    content: str
    index: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorRecord:
    """A stored chunk together with its embedding."""

    id: str
    content: str
    embedding: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def filename(self) -> Optional[str]:
        return self.metadata.get("filename")

    @property
    def category(self) -> str:
        return self.metadata.get("category") or "general"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "embedding": list(self.embedding),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "VectorRecord":
        return cls(
            id=str(payload["id"]),
            content=str(payload["content"]),
            embedding=[float(value) for value in payload["embedding"]],
            metadata=dict(payload.get("metadata") or {}),
        )


@dataclass(frozen=True)
class SearchResult:
    """A retrieval result from the vector index."""

    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return self.metadata.get("filename") or "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "score": self.score, "metadata": dict(self.metadata)}


@dataclass(frozen=True)
class DocumentSummary:
    """All chunks that share one filename, as shown in the knowledge list."""

    filename: str
    category: Category
    chunk_count: int
    upload_time: int
    builtin: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "category": self.category,
            "chunkCount": self.chunk_count,
            "uploadTime": self.upload_time,
            "builtin": self.builtin,
        }


@dataclass
class Ticket:
    """A support request raised by a user or by the chat heuristic."""

    id: str
    title: str
    description: str
    category: TicketCategory
    priority: Priority
    status: TicketStatus = "pending"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Ticket":
        return cls(
            id=str(payload["id"]),
            title=payload["title"],
            description=payload["description"],
            category=payload["category"],
            priority=payload["priority"],
            status=payload.get("status", "pending"),
            created_at=datetime.fromisoformat(payload["createdAt"]),
            updated_at=datetime.fromisoformat(payload["updatedAt"]),
        )


@dataclass(frozen=True)
class ChatTurn:
    """One entry of the conversation history."""

    role: Role
    content: str


@dataclass(frozen=True)
class ChatEvent:
    """A tagged item of the chat output stream."""

    type: EventType
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        if self.type == "end":
            return {"type": "end"}
        if self.type == "sources":
            return {"type": "sources", "data": [result.to_dict() for result in self.data]}
        if self.type == "ticket":
            return {"type": "ticket", "data": self.data.to_dict()}
        return {"type": self.type, "data": self.data}

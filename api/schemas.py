from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import UUID

from pydantic import EmailStr, Field

from db.models import Conversation, Document, DocumentChunk, Message
from rag_chat.src.document_chat.types import CamelModel, SearchResult
from rag_chat.utils.config_loader import get_config

_rag = get_config()["rag"]
_upload = get_config()["upload"]


# ============================================
# Requests
# ============================================


class ConversationSettings(CamelModel):
    top_k: int = Field(_rag["top_k"], ge=1, le=20)
    threshold: float = Field(_rag["threshold"], ge=0, le=1)
    document_ids: Optional[List[UUID]] = None

    @classmethod
    def from_stored(cls, raw: Optional[dict]) -> "ConversationSettings":
        return cls.model_validate(raw or {})

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def document_id_strings(self) -> Optional[List[str]]:
        return [str(d) for d in self.document_ids] if self.document_ids else None


class CreateConversationRequest(CamelModel):
    title: Optional[str] = Field(None, max_length=_rag["max_title_length"])
    settings: Optional[ConversationSettings] = None


class SendMessageRequest(CamelModel):
    content: str = Field(..., min_length=1, max_length=_rag["max_message_length"])


class QuickChatRequest(CamelModel):
    content: str = Field(..., min_length=1, max_length=_rag["max_message_length"])
    top_k: Optional[int] = Field(None, ge=1, le=20)
    threshold: Optional[float] = Field(None, ge=0, le=1)
    document_ids: Optional[List[UUID]] = None


class CreateDocumentRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=_upload["max_title_length"])
    content: str = Field(..., min_length=1)
    filename: Optional[str] = None
    mime_type: Literal["text/plain", "text/markdown", "application/json", "text/csv"] = (
        "text/plain"
    )


class SignUpRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: Optional[str] = Field(None, max_length=100)


class SignInRequest(CamelModel):
    email: EmailStr
    password: str


# ============================================
# Responses
# ============================================


class MessageOut(CamelModel):
    id: str
    role: Literal["user", "assistant", "system"]
    content: str
    sources: Optional[List[SearchResult]] = None
    created_at: datetime

    @classmethod
    def from_row(cls, m: Message) -> "MessageOut":
        return cls(
            id=m.id,
            role=m.role,
            content=m.content,
            sources=m.sources,
            created_at=m.created_at,
        )


class ConversationOut(CamelModel):
    id: str
    title: Optional[str]
    settings: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    messages: List[MessageOut] = []

    @classmethod
    def from_row(cls, c: Conversation, messages: List[Message]) -> "ConversationOut":
        return cls(
            id=c.id,
            title=c.title,
            settings=c.settings,
            created_at=c.created_at,
            updated_at=c.updated_at,
            messages=[MessageOut.from_row(m) for m in messages],
        )


class DocumentOut(CamelModel):
    id: str
    title: str
    filename: str
    mime_type: str
    size: int
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    chunk_count: int

    @classmethod
    def from_row(cls, d: Document, chunk_count: int, **extra) -> "DocumentOut":
        return cls(
            id=d.id,
            title=d.title,
            filename=d.filename,
            mime_type=d.mime_type,
            size=d.size,
            metadata=d.doc_metadata,
            created_at=d.created_at,
            updated_at=d.updated_at,
            chunk_count=chunk_count,
            **extra,
        )


class UploadedDocumentOut(DocumentOut):
    status: Literal["processing"] = "processing"


class ChunkOut(CamelModel):
    id: str
    content: str
    token_count: Optional[int] = None
    metadata: Optional[dict[str, Any]] = None

    @classmethod
    def from_row(cls, c: DocumentChunk) -> "ChunkOut":
        return cls(id=c.id, content=c.content, token_count=c.token_count, metadata=c.chunk_metadata)


class DocumentDetailOut(DocumentOut):
    content: str
    chunks: List[ChunkOut]


class RecentDocumentOut(CamelModel):
    id: str
    title: str
    created_at: datetime
    chunk_count: int


class DocumentStatsOut(CamelModel):
    document_count: int
    chunk_count: int
    total_size_bytes: int
    recent_documents: List[RecentDocumentOut]


class UserOut(CamelModel):
    id: str
    email: str
    name: Optional[str] = None


class SessionOut(CamelModel):
    token: str
    expires_at: datetime
    user: UserOut

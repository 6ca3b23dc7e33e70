from typing import AsyncIterator, List
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.auth import AuthUser, require_auth
from api.errors import public_error_message
from api.responses import send_success
from api.schemas import (
    ConversationOut,
    ConversationSettings,
    CreateConversationRequest,
    MessageOut,
    QuickChatRequest,
    SendMessageRequest,
)
from api.sse import SSE_HEADERS, SSE_MEDIA_TYPE, format_sse, sse_error
from db.chat_repository import ChatRepository
from db.database import AsyncSessionLocal, get_db
from db.models import Conversation
from rag_chat.exception.custom_exception import ERROR_CODES, NotFoundError
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.src.document_chat.completion import CompletionService
from rag_chat.src.document_chat.types import SearchResult, StreamChunk
from rag_chat.utils.config_loader import get_config

router = APIRouter()

_completion_service: CompletionService | None = None


def get_completion_service() -> CompletionService:
    global _completion_service
    if _completion_service is None:
        _completion_service = CompletionService()
    return _completion_service


async def _owned_conversation(
    repo: ChatRepository, db: AsyncSession, conversation_id: UUID, user: AuthUser
) -> Conversation:
    conv = await repo.get_conversation(db, str(conversation_id), user.id)
    if conv is None:
        raise NotFoundError("Conversation not found", ERROR_CODES["CONVERSATION_NOT_FOUND"])
    return conv


def _history(conv: Conversation) -> List[dict]:
    return [{"role": m.role, "content": m.content} for m in conv.messages]


def _stored_sources(sources: List[SearchResult]) -> List[dict]:
    return [s.model_dump(by_alias=True, mode="json") for s in sources]


# ============================================
# Conversations
# ============================================


@router.get("/conversations")
async def get_conversations(user: AuthUser = Depends(require_auth), db=Depends(get_db)):
    """
    All conversations of the signed-in user, newest activity first,
    each with its latest message only.
    """
    repo = ChatRepository()
    rows = await repo.get_conversations(db, user.id)
    return send_success(
        [ConversationOut.from_row(c, [last] if last else []) for c, last in rows]
    )


@router.post("/conversations")
async def create_conversation(
    req: CreateConversationRequest,
    user: AuthUser = Depends(require_auth),
    db=Depends(get_db),
):
    repo = ChatRepository()
    conv = await repo.create_conversation(
        db,
        user.id,
        title=req.title,
        settings=req.settings.to_stored() if req.settings else None,
    )
    return send_success(ConversationOut.from_row(conv, []), 201)


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: UUID, user: AuthUser = Depends(require_auth), db=Depends(get_db)
):
    repo = ChatRepository()
    conv = await _owned_conversation(repo, db, conversation_id, user)
    return send_success(ConversationOut.from_row(conv, conv.messages))


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: UUID, user: AuthUser = Depends(require_auth), db=Depends(get_db)
):
    repo = ChatRepository()
    await repo.delete_conversation(db, str(conversation_id), user.id)
    return send_success({"deleted": True})


@router.patch("/conversations/{conversation_id}/settings")
async def update_settings(
    conversation_id: UUID,
    settings: ConversationSettings,
    user: AuthUser = Depends(require_auth),
    db=Depends(get_db),
):
    repo = ChatRepository()
    updated = await repo.update_conversation_settings(
        db, str(conversation_id), user.id, settings.to_stored()
    )
    if not updated:
        raise NotFoundError("Conversation not found", ERROR_CODES["CONVERSATION_NOT_FOUND"])
    return send_success({"updated": True})


# ============================================
# Messages
# ============================================


@router.post("/conversations/{conversation_id}/messages")
async def send_message(
    conversation_id: UUID,
    req: SendMessageRequest,
    user: AuthUser = Depends(require_auth),
    db=Depends(get_db),
    completion: CompletionService = Depends(get_completion_service),
):
    """
    Send a message and get the whole AI answer in one response.

    Pipeline:
      1. Verify the conversation belongs to the user
      2. Persist the user message
      3. Retrieve context + call the chat model (history excludes this message)
      4. Persist the assistant message with its sources
    """
    repo = ChatRepository()
    conv = await _owned_conversation(repo, db, conversation_id, user)
    history = _history(conv)
    settings = ConversationSettings.from_stored(conv.settings)

    user_message = await repo.add_message(db, conv.id, "user", req.content)

    result = await completion.complete(
        db,
        req.content,
        history=history,
        use_rag=True,
        top_k=settings.top_k,
        threshold=settings.threshold,
        document_ids=settings.document_id_strings(),
    )

    assistant_message = await repo.add_message(
        db, conv.id, "assistant", result.content, _stored_sources(result.sources)
    )

    return send_success(
        {
            "userMessage": MessageOut.from_row(user_message),
            "assistantMessage": MessageOut.from_row(assistant_message),
            "sources": result.sources,
        }
    )


async def relay_stream(
    events: AsyncIterator[StreamChunk],
    first: StreamChunk,
    stream_db: AsyncSession,
    conversation_id: str,
) -> AsyncIterator[str]:
    """
    Forward completion chunks as SSE frames.

    Content deltas are accumulated; on `done` the full answer is persisted and
    the frame carries the new message id. The answer is only written once the
    model has finished, never mid-stream.
    """
    repo = ChatRepository()
    parts: List[str] = []
    sources: List[SearchResult] = []
    chunk: StreamChunk | None = first
    try:
        while chunk is not None:
            if chunk.type == "content":
                parts.append(chunk.data)
                yield format_sse(chunk)
            elif chunk.type == "sources":
                sources = chunk.data
                yield format_sse(chunk)
            elif chunk.type == "done":
                message = await repo.add_message(
                    stream_db,
                    conversation_id,
                    "assistant",
                    "".join(parts),
                    _stored_sources(sources),
                )
                yield format_sse({"type": "done", "data": {"messageId": message.id}})
            chunk = await anext(events, None)
    except Exception as e:
        # headers are already sent, so the failure travels as the last event
        log.error("Stream failed | conversation_id=%s | error=%s", conversation_id, str(e))
        yield sse_error(public_error_message(e))
    finally:
        await events.aclose()
        await stream_db.close()


@router.post("/conversations/{conversation_id}/messages/stream")
async def send_message_stream(
    conversation_id: UUID,
    req: SendMessageRequest,
    user: AuthUser = Depends(require_auth),
    db=Depends(get_db),
    completion: CompletionService = Depends(get_completion_service),
):
    """
    Send a message and stream the AI answer as Server-Sent Events:
    `sources` first, then `content` deltas, then `done` with the saved message id.
    """
    repo = ChatRepository()
    conv = await _owned_conversation(repo, db, conversation_id, user)
    history = _history(conv)
    settings = ConversationSettings.from_stored(conv.settings)

    await repo.add_message(db, conv.id, "user", req.content)

    # the stream outlives this handler, so it gets its own session
    stream_db = AsyncSessionLocal()
    events = completion.stream(
        stream_db,
        req.content,
        history=history,
        use_rag=True,
        top_k=settings.top_k,
        threshold=settings.threshold,
        document_ids=settings.document_id_strings(),
    )

    # pull the first event here so retrieval failures still become HTTP errors
    try:
        first = await anext(events)
    except BaseException:
        await events.aclose()
        await stream_db.close()
        raise

    log.info("Streaming response | conversation_id=%s", conv.id)
    return StreamingResponse(
        relay_stream(events, first, stream_db, conv.id),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )


@router.post("/quick")
async def quick_chat(
    req: QuickChatRequest,
    db=Depends(get_db),
    completion: CompletionService = Depends(get_completion_service),
):
    """
    One-off question: RAG answer without a conversation, nothing persisted.
    """
    rag_cfg = get_config()["rag"]
    result = await completion.complete(
        db,
        req.content,
        use_rag=True,
        top_k=req.top_k if req.top_k is not None else rag_cfg["top_k"],
        threshold=req.threshold if req.threshold is not None else rag_cfg["threshold"],
        document_ids=[str(d) for d in req.document_ids] if req.document_ids else None,
    )
    return send_success({"content": result.content, "sources": result.sources})

from typing import AsyncIterator, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from sqlalchemy.ext.asyncio import AsyncSession

from rag_chat.exception.custom_exception import ERROR_CODES, RagChatException
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.prompts.prompt_library import CONTEXT_HEADER, PROMPT_REGISTRY, SYSTEM_PROMPT
from rag_chat.src.document_chat.retrieval import RetrievalService
from rag_chat.src.document_chat.types import (
    CompletionResult,
    CompletionUsage,
    SearchResult,
    StreamChunk,
)
from rag_chat.utils.config_loader import get_config
from rag_chat.utils.model_loader import ModelLoader


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _text_of(content) -> str:
    """Message content is a str for OpenAI, a list of parts for some providers."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def build_context(sources: List[SearchResult]) -> str:
    """Numbered context block appended to the system prompt, empty without sources."""
    if not sources:
        return ""
    return CONTEXT_HEADER + "\n\n".join(
        f"[{i + 1}] {s.content}" for i, s in enumerate(sources)
    )


def to_chat_history(history: Optional[List[dict]]) -> List[BaseMessage]:
    """Convert stored {role, content} pairs into LangChain messages."""
    out: List[BaseMessage] = []
    for m in history or []:
        if m["role"] == "assistant":
            out.append(AIMessage(m["content"]))
        elif m["role"] == "system":
            out.append(SystemMessage(m["content"]))
        else:
            out.append(HumanMessage(m["content"]))
    return out


class CompletionService:
    """
    RAG completion pipeline:
      1. vector search for the user message (optional)
      2. system prompt + numbered context, then history, then the message
      3. one call to the hosted chat model, whole or as a token stream
    No retries: a failed call surfaces as a single error.
    """

    def __init__(
        self,
        retrieval: Optional[RetrievalService] = None,
        llm: Optional[BaseChatModel] = None,
    ):
        self.retrieval = retrieval or RetrievalService()
        self._llm = llm
        self.qa_prompt = PROMPT_REGISTRY["context_qa"]
        self.model_name = get_config()["llm"]["chat"]["model_name"]

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = ModelLoader().load_llm("chat")
        return self._llm

    async def _retrieve(
        self,
        db: AsyncSession,
        user_message: str,
        top_k: int,
        threshold: float,
        document_ids: Optional[List[str]],
    ) -> List[SearchResult]:
        log.info(
            "Performing vector search | top_k=%d | threshold=%.2f | document_ids=%s",
            top_k,
            threshold,
            document_ids,
        )
        sources = await self.retrieval.search(
            db, user_message, top_k=top_k, threshold=threshold, document_ids=document_ids
        )
        for rank, s in enumerate(sources, start=1):
            log.info(
                "  #%d score=%.3f document_id=%s | %s",
                rank,
                s.score,
                s.document_id,
                _preview(s.content, 80),
            )
        if not sources:
            log.warning("No relevant chunks found above threshold")
        return sources

    def _inputs(
        self, user_message: str, history: Optional[List[dict]], sources: List[SearchResult]
    ) -> dict:
        return {
            "system_prompt": SYSTEM_PROMPT,
            "context": build_context(sources),
            "chat_history": to_chat_history(history),
            "input": user_message,
        }

    def _log_request(self, kind, user_message, history, use_rag, top_k, threshold, document_ids):
        log.info(
            "%s received | message=%r | use_rag=%s | top_k=%d | threshold=%.2f "
            "| documents=%s | history=%d",
            kind,
            _preview(user_message, 100),
            use_rag,
            top_k,
            threshold,
            document_ids if document_ids else "all documents",
            len(history or []),
        )

    async def complete(
        self,
        db: AsyncSession,
        user_message: str,
        history: Optional[List[dict]] = None,
        use_rag: bool = True,
        top_k: int = 5,
        threshold: float = 0.7,
        document_ids: Optional[List[str]] = None,
    ) -> CompletionResult:
        """
        Generate a chat completion with optional RAG context.
        """
        self._log_request(
            "Chat request", user_message, history, use_rag, top_k, threshold, document_ids
        )

        sources: List[SearchResult] = []
        if use_rag:
            sources = await self._retrieve(db, user_message, top_k, threshold, document_ids)

        inputs = self._inputs(user_message, history, sources)
        log.info(
            "Calling chat model | model=%s | messages=%d",
            self.model_name,
            len(inputs["chat_history"]) + 2,
        )

        chain = self.qa_prompt | self.llm
        try:
            resp = await chain.ainvoke(inputs)
        except RagChatException:
            raise
        except Exception as e:
            log.error("Chat completion failed | error=%s", str(e))
            raise RagChatException(
                "Chat completion failed", 500, ERROR_CODES["OPENAI_ERROR"]
            ) from e

        usage = None
        if getattr(resp, "usage_metadata", None):
            u = resp.usage_metadata
            usage = CompletionUsage(
                prompt_tokens=u.get("input_tokens", 0),
                completion_tokens=u.get("output_tokens", 0),
                total_tokens=u.get("total_tokens", 0),
            )

        result = CompletionResult(
            content=_text_of(resp.content),
            sources=sources,
            model=(resp.response_metadata or {}).get("model_name") or self.model_name,
            usage=usage,
        )

        log.info(
            "Chat response generated | response=%r | model=%s | usage=%s | sources=%d",
            _preview(result.content, 150),
            result.model,
            usage.model_dump() if usage else None,
            len(sources),
        )
        return result

    async def stream(
        self,
        db: AsyncSession,
        user_message: str,
        history: Optional[List[dict]] = None,
        use_rag: bool = True,
        top_k: int = 5,
        threshold: float = 0.7,
        document_ids: Optional[List[str]] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a chat completion with optional RAG context.

        Yields `sources` first (RAG only, possibly an empty list), then one
        `content` chunk per non-empty token delta, then `done` with the sources.
        """
        self._log_request(
            "Chat stream request", user_message, history, use_rag, top_k, threshold, document_ids
        )

        sources: List[SearchResult] = []
        if use_rag:
            sources = await self._retrieve(db, user_message, top_k, threshold, document_ids)
            yield StreamChunk(type="sources", data=sources)

        inputs = self._inputs(user_message, history, sources)
        log.info(
            "Starting chat model stream | model=%s | messages=%d",
            self.model_name,
            len(inputs["chat_history"]) + 2,
        )

        chain = self.qa_prompt | self.llm
        total = 0
        try:
            async for chunk in chain.astream(inputs):
                text = _text_of(chunk.content)
                if text:
                    total += len(text)
                    yield StreamChunk(type="content", data=text)
        except RagChatException:
            raise
        except Exception as e:
            log.error("Chat stream failed | error=%s", str(e))
            raise RagChatException(
                "Chat completion failed", 500, ERROR_CODES["OPENAI_ERROR"]
            ) from e

        log.info("Stream completed | response_chars=%d | sources=%d", total, len(sources))
        yield StreamChunk(type="done", data={"sources": sources})

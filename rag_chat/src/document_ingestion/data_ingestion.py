from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from db.database import AsyncSessionLocal
from db.document_repository import DocumentRepository
from db.models import Document
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.src.document_chat.retrieval import RetrievalService
from rag_chat.src.document_ingestion.chunking import chunk_text, estimate_tokens
from rag_chat.utils.config_loader import get_config


class DataIngestor:
    """
    Turns raw document text into stored chunks.

    - persists the document row with an `uploadedAt` metadata stamp
    - paragraph-chunks the text and stores one row per chunk with its index
    - embedding happens afterwards, outside the request (see embed_document)
    """

    def __init__(self, repo: Optional[DocumentRepository] = None):
        self.repo = repo or DocumentRepository()
        self.max_chunk_size = get_config()["upload"]["max_chunk_size"]

    async def ingest(
        self,
        db: AsyncSession,
        *,
        title: str,
        filename: str,
        mime_type: str,
        size: int,
        content: str,
    ) -> tuple[Document, int]:
        """
        Create the document and its chunks in one transaction; returns
        (document, chunk_count). Nothing is stored if any insert fails.
        """
        chunks = chunk_text(content, self.max_chunk_size)
        try:
            document = await self._store(db, title, filename, mime_type, size, content, chunks)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        log.info(
            "Document ingested | document_id=%s | chunks=%d | chars=%d",
            document.id,
            len(chunks),
            len(content),
        )
        return document, len(chunks)

    async def _store(self, db, title, filename, mime_type, size, content, chunks) -> Document:
        document = await self.repo.create_document(
            db,
            title=title,
            filename=filename,
            mime_type=mime_type,
            size=size,
            content=content,
            metadata={"uploadedAt": datetime.now(timezone.utc).isoformat()},
            commit=False,
        )
        await self.repo.create_chunks(
            db,
            document.id,
            [
                {
                    "content": text,
                    "token_count": estimate_tokens(text),
                    "metadata": {"chunkIndex": index},
                }
                for index, text in enumerate(chunks)
            ],
            commit=False,
        )
        return document


async def embed_document(document_id: str, retrieval: Optional[RetrievalService] = None) -> None:
    """
    Background task: embed all chunks of a document with a fresh DB session.
    Failures are logged only, the upload request has already returned.
    """
    retrieval = retrieval or RetrievalService()
    async with AsyncSessionLocal() as db:
        try:
            count = await retrieval.process_document_embeddings(db, document_id)
            log.info("Background embedding finished | document_id=%s | chunks=%d", document_id, count)
        except Exception as e:
            await db.rollback()
            log.error(
                "Failed to process embeddings | document_id=%s | error=%s",
                document_id,
                str(e),
            )

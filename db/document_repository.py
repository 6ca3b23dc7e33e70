from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rag_chat.logger import GLOBAL_LOGGER as log

from .models import Document, DocumentChunk

RECENT_DOCUMENTS = 5


def _chunk_count_subquery():
    return (
        select(DocumentChunk.document_id, func.count(DocumentChunk.id).label("chunk_count"))
        .group_by(DocumentChunk.document_id)
        .subquery()
    )


class DocumentRepository:
    """
    Repository for Document + DocumentChunk rows.
    Documents form one shared knowledge base, they are not owned by a user.
    """

    async def create_document(
        self,
        db: AsyncSession,
        title: str,
        filename: str,
        mime_type: str,
        size: int,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
        commit: bool = True,
    ) -> Document:
        doc = Document(
            title=title,
            filename=filename,
            mime_type=mime_type,
            size=size,
            content=content,
            doc_metadata=metadata,
        )
        db.add(doc)
        if commit:
            await db.commit()
        else:
            await db.flush()
        await db.refresh(doc)
        log.info("Document created | document_id=%s | file=%s", doc.id, filename)
        return doc

    async def create_chunks(
        self,
        db: AsyncSession,
        document_id: str,
        chunks: list[dict[str, Any]],
        commit: bool = True,
    ) -> int:
        """
        Bulk insert chunks. Each item: {content, token_count?, metadata?}.
        Embeddings are filled in later by the retrieval service.
        With commit=False the rows are only flushed, the caller owns the transaction.
        """
        db.add_all(
            [
                DocumentChunk(
                    document_id=document_id,
                    content=c["content"],
                    token_count=c.get("token_count"),
                    chunk_metadata=c.get("metadata"),
                )
                for c in chunks
            ]
        )
        if commit:
            await db.commit()
        else:
            await db.flush()
        log.info("Chunks created | document_id=%s | count=%d", document_id, len(chunks))
        return len(chunks)

    async def get_documents(self, db: AsyncSession) -> list[tuple[Document, int]]:
        counts = _chunk_count_subquery()
        out = await db.execute(
            select(Document, func.coalesce(counts.c.chunk_count, 0))
            .outerjoin(counts, counts.c.document_id == Document.id)
            .order_by(Document.created_at.desc())
        )
        rows = [(d, int(n)) for d, n in out.all()]
        log.info("Listing documents | count=%d", len(rows))
        return rows

    async def get_document(self, db: AsyncSession, document_id: str) -> Optional[Document]:
        out = await db.execute(
            select(Document)
            .options(selectinload(Document.chunks))
            .where(Document.id == document_id)
        )
        return out.scalar_one_or_none()

    async def delete_document(self, db: AsyncSession, document_id: str) -> int:
        # chunks go with it through ON DELETE CASCADE
        res = await db.execute(delete(Document).where(Document.id == document_id))
        await db.commit()
        log.info("Document deleted | document_id=%s | rows=%d", document_id, res.rowcount)
        return res.rowcount

    async def get_stats(self, db: AsyncSession) -> dict[str, Any]:
        document_count = await db.scalar(select(func.count(Document.id)))
        chunk_count = await db.scalar(select(func.count(DocumentChunk.id)))
        total_size = await db.scalar(select(func.coalesce(func.sum(Document.size), 0)))

        counts = _chunk_count_subquery()
        out = await db.execute(
            select(Document, func.coalesce(counts.c.chunk_count, 0))
            .outerjoin(counts, counts.c.document_id == Document.id)
            .order_by(Document.created_at.desc())
            .limit(RECENT_DOCUMENTS)
        )

        return {
            "document_count": document_count or 0,
            "chunk_count": chunk_count or 0,
            "total_size_bytes": int(total_size or 0),
            "recent_documents": [
                {
                    "id": d.id,
                    "title": d.title,
                    "created_at": d.created_at,
                    "chunk_count": int(n),
                }
                for d, n in out.all()
            ],
        }

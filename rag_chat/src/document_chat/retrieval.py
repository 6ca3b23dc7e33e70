from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import DocumentChunk
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.src.document_chat.embeddings import EmbeddingService
from rag_chat.src.document_chat.types import SearchResult


def filter_by_threshold(rows: Iterable, threshold: float) -> List[SearchResult]:
    """
    Keep rows whose similarity clears the threshold, preserving rank order.
    Rows expose id, content, document_id, chunk_metadata and similarity.
    """
    return [
        SearchResult(
            id=r.id,
            content=r.content,
            score=float(r.similarity),
            document_id=r.document_id,
            metadata=r.chunk_metadata or None,
        )
        for r in rows
        if float(r.similarity) >= threshold
    ]


class RetrievalService:
    """
    Vector search over document chunks with pgvector.

    - embeds the query with the same model the chunks were embedded with
    - orders chunks by cosine distance (`<=>`) and keeps the top_k
    - converts distance to similarity (1 - distance) and drops anything under
      the threshold
    """

    def __init__(self, embedding_service: Optional[EmbeddingService] = None):
        self.embedding_service = embedding_service or EmbeddingService()

    async def store_embedding(
        self, db: AsyncSession, chunk_id: str, embedding: List[float]
    ) -> None:
        await db.execute(
            update(DocumentChunk)
            .where(DocumentChunk.id == chunk_id)
            .values(embedding=embedding)
        )

    async def search(
        self,
        db: AsyncSession,
        query: str,
        top_k: int = 5,
        threshold: float = 0.7,
        document_ids: Optional[List[str]] = None,
    ) -> List[SearchResult]:
        result = await self.embedding_service.embed(query)

        distance = DocumentChunk.embedding.cosine_distance(result.embedding)
        stmt = select(
            DocumentChunk.id,
            DocumentChunk.content,
            DocumentChunk.document_id,
            DocumentChunk.chunk_metadata,
            (1 - distance).label("similarity"),
        ).where(DocumentChunk.embedding.is_not(None))

        if document_ids:
            stmt = stmt.where(DocumentChunk.document_id.in_(document_ids))

        stmt = stmt.order_by(distance).limit(top_k)

        rows = (await db.execute(stmt)).all()
        results = filter_by_threshold(rows, threshold)

        log.info(
            "Vector search | candidates=%d | kept=%d | top_k=%d | threshold=%.2f",
            len(rows),
            len(results),
            top_k,
            threshold,
        )
        return results

    async def process_document_embeddings(self, db: AsyncSession, document_id: str) -> int:
        """
        Embed every chunk of a document in one batch and store the vectors.
        Returns the number of chunks embedded.
        """
        out = await db.execute(
            select(DocumentChunk.id, DocumentChunk.content).where(
                DocumentChunk.document_id == document_id
            )
        )
        chunks = out.all()
        if not chunks:
            return 0

        embeddings = await self.embedding_service.embed_batch([c.content for c in chunks])

        for chunk, emb in zip(chunks, embeddings):
            await self.store_embedding(db, chunk.id, emb.embedding)
        await db.commit()

        log.info("Embeddings stored | document_id=%s | chunks=%d", document_id, len(chunks))
        return len(chunks)

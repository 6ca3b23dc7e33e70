from typing import List, Optional

from langchain_core.embeddings import Embeddings

from rag_chat.exception.custom_exception import ERROR_CODES, RagChatException
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.src.document_ingestion.chunking import estimate_tokens
from rag_chat.src.document_chat.types import EmbeddingResult
from rag_chat.utils.config_loader import get_config
from rag_chat.utils.model_loader import ModelLoader


class EmbeddingService:
    """
    Thin wrapper over the hosted embedding model.

    The LangChain embeddings client is built lazily so the API can start (and
    serve non-AI routes) without an API key.
    """

    def __init__(self, embeddings: Optional[Embeddings] = None):
        self._embeddings = embeddings

    @property
    def embeddings(self) -> Embeddings:
        if self._embeddings is None:
            self._embeddings = ModelLoader().load_embeddings()
        return self._embeddings

    async def embed(self, text: str) -> EmbeddingResult:
        """Generate the embedding for a single text."""
        try:
            vector = await self.embeddings.aembed_query(text)
        except RagChatException:
            raise
        except Exception as e:
            log.error("Embedding request failed | error=%s", str(e))
            raise RagChatException(
                "Embedding request failed", 500, ERROR_CODES["EMBEDDING_ERROR"]
            ) from e
        return EmbeddingResult(embedding=list(vector), token_count=estimate_tokens(text))

    async def embed_batch(self, texts: List[str]) -> List[EmbeddingResult]:
        """Generate embeddings for many texts in one request."""
        if not texts:
            return []
        try:
            vectors = await self.embeddings.aembed_documents(texts)
        except RagChatException:
            raise
        except Exception as e:
            log.error("Batch embedding request failed | count=%d | error=%s", len(texts), str(e))
            raise RagChatException(
                "Embedding request failed", 500, ERROR_CODES["EMBEDDING_ERROR"]
            ) from e

        log.info("Embedded batch | count=%d", len(texts))
        return [
            EmbeddingResult(embedding=list(v), token_count=estimate_tokens(t))
            for t, v in zip(texts, vectors)
        ]

    @staticmethod
    def get_dimension() -> int:
        return get_config()["embedding_model"]["dimension"]

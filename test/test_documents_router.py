import copy
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest

from rag_chat.exception.custom_exception import ERROR_CODES
from rag_chat.src.document_ingestion.chunking import chunk_text
from rag_chat.src.document_ingestion.data_ingestion import DataIngestor
from rag_chat.utils.config_loader import get_config

DOCUMENT_ID = "6a1f2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"
TEXT = "# Handbook\n\nFirst paragraph.\n\nSecond paragraph.\n\n" + "x" * 1200


@pytest.fixture
def ingest_repo(make_document):
    """Repository used by the ingestion pipeline."""
    repo = Mock()

    async def create_document(db, **fields):
        return make_document(title=fields["title"], content=fields["content"])

    repo.create_document = AsyncMock(side_effect=create_document)
    repo.create_chunks = AsyncMock()
    with patch(
        "rag_chat.src.document_ingestion.data_ingestion.DocumentRepository", return_value=repo
    ):
        yield repo


@pytest.fixture
def repo(make_document):
    """Repository used by the read/delete routes."""
    repo = Mock()
    repo.get_documents = AsyncMock(return_value=[(make_document(), 3)])
    repo.get_document = AsyncMock(return_value=make_document())
    repo.delete_document = AsyncMock(return_value=1)
    repo.get_stats = AsyncMock()
    with patch("api.routers.documents.DocumentRepository", return_value=repo):
        yield repo


@pytest.fixture
def embed_document():
    with patch("api.routers.documents.embed_document", new_callable=AsyncMock) as m:
        yield m


class TestUpload:
    def test_chunk_count_matches_generated_chunks(self, client, ingest_repo, embed_document):
        r = client.post(
            "/api/documents/upload",
            files={"file": ("handbook.md", TEXT.encode(), "text/markdown")},
        )

        assert r.status_code == 201
        data = r.json()["data"]
        expected = chunk_text(TEXT, get_config()["upload"]["max_chunk_size"])
        assert data["chunkCount"] == len(expected)
        assert data["status"] == "processing"
        assert data["title"] == "handbook"

        stored = ingest_repo.create_chunks.await_args.args[2]
        assert [c["content"] for c in stored] == expected
        assert [c["metadata"]["chunkIndex"] for c in stored] == list(range(len(expected)))
        embed_document.assert_awaited_once_with(data["id"])

    def test_title_form_field_wins(self, client, ingest_repo, embed_document):
        r = client.post(
            "/api/documents/upload",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            data={"title": "Team notes"},
        )
        assert r.status_code == 201
        assert ingest_repo.create_document.await_args.kwargs["title"] == "Team notes"

    def test_markdown_sent_as_octet_stream(self, client, ingest_repo, embed_document):
        r = client.post(
            "/api/documents/upload",
            files={"file": ("readme.md", b"hi", "application/octet-stream")},
        )
        assert r.status_code == 201
        assert ingest_repo.create_document.await_args.kwargs["mime_type"] == "text/markdown"

    def test_unsupported_type(self, client, ingest_repo, embed_document):
        r = client.post(
            "/api/documents/upload",
            files={"file": ("photo.png", b"\x89PNG", "image/png")},
        )

        assert r.status_code == 400
        assert r.json()["error"]["code"] == ERROR_CODES["FILE_TYPE_NOT_SUPPORTED"]
        ingest_repo.create_document.assert_not_awaited()
        embed_document.assert_not_awaited()

    def test_missing_file(self, client, ingest_repo, embed_document):
        r = client.post("/api/documents/upload", data={"title": "nothing"})

        assert r.status_code == 400
        assert r.json()["error"]["code"] == ERROR_CODES["FILE_REQUIRED"]

    def test_file_too_large(self, client, ingest_repo, embed_document):
        cfg = copy.deepcopy(get_config())
        cfg["upload"]["max_file_size"] = 4
        with patch("rag_chat.utils.file_io.get_config", return_value=cfg):
            r = client.post(
                "/api/documents/upload",
                files={"file": ("big.txt", b"0123456789", "text/plain")},
            )

        assert r.status_code == 413
        assert r.json()["error"]["code"] == ERROR_CODES["FILE_TOO_LARGE"]

    def test_pdf_text_extracted(self, client, ingest_repo, embed_document):
        with patch("rag_chat.utils.file_io._pdf_to_text", return_value="page one\n\npage two"):
            r = client.post(
                "/api/documents/upload",
                files={"file": ("report.pdf", b"%PDF-1.4", "application/pdf")},
            )

        assert r.status_code == 201
        assert ingest_repo.create_document.await_args.kwargs["content"] == "page one\n\npage two"


class TestCreateFromJson:
    def test_create(self, client, ingest_repo, embed_document):
        r = client.post("/api/documents", json={"title": "FAQ", "content": "Q\n\nA"})

        assert r.status_code == 201
        assert r.json()["data"]["chunkCount"] == 1
        assert ingest_repo.create_document.await_args.kwargs["filename"] == "FAQ.txt"
        embed_document.assert_awaited_once()

    def test_pdf_mime_rejected(self, client, ingest_repo, embed_document):
        r = client.post(
            "/api/documents",
            json={"title": "x", "content": "y", "mimeType": "application/pdf"},
        )
        assert r.status_code == 400


class TestReadAndDelete:
    def test_list(self, client, repo):
        r = client.get("/api/documents")

        assert r.status_code == 200
        [doc] = r.json()["data"]
        assert doc["chunkCount"] == 3
        assert doc["mimeType"] == "text/markdown"
        assert "uploadedAt" in doc["metadata"]

    def test_get_with_chunks(self, client, repo, make_document):
        doc = make_document()
        doc.chunks = [
            SimpleNamespace(id="c1", content="para one", token_count=2, chunk_metadata={"chunkIndex": 0})
        ]
        repo.get_document.return_value = doc

        r = client.get(f"/api/documents/{DOCUMENT_ID}")

        data = r.json()["data"]
        assert data["content"] == doc.content
        assert data["chunks"][0]["tokenCount"] == 2
        assert data["chunkCount"] == 1

    def test_get_unknown(self, client, repo):
        repo.get_document.return_value = None
        r = client.get(f"/api/documents/{DOCUMENT_ID}")
        assert r.status_code == 404
        assert r.json()["error"]["code"] == ERROR_CODES["DOCUMENT_NOT_FOUND"]

    def test_delete(self, client, repo):
        r = client.delete(f"/api/documents/{DOCUMENT_ID}")
        assert r.status_code == 200
        repo.delete_document.assert_awaited_once()

    def test_delete_unknown(self, client, repo):
        repo.delete_document.return_value = 0
        r = client.delete(f"/api/documents/{DOCUMENT_ID}")
        assert r.status_code == 404

    def test_stats(self, client, repo, make_document):
        doc = make_document()
        repo.get_stats.return_value = {
            "document_count": 2,
            "chunk_count": 7,
            "total_size_bytes": 2048,
            "recent_documents": [
                {"id": doc.id, "title": doc.title, "created_at": doc.created_at, "chunk_count": 4}
            ],
        }

        r = client.get("/api/documents/stats")

        data = r.json()["data"]
        assert (data["documentCount"], data["chunkCount"], data["totalSizeBytes"]) == (2, 7, 2048)
        assert data["recentDocuments"][0]["chunkCount"] == 4


async def test_background_embedding_failure_is_logged_not_raised():
    from rag_chat.src.document_ingestion.data_ingestion import embed_document

    session = AsyncMock()
    session_factory = Mock()
    session_factory.return_value.__aenter__ = AsyncMock(return_value=session)
    session_factory.return_value.__aexit__ = AsyncMock(return_value=False)
    retrieval = Mock()
    retrieval.process_document_embeddings = AsyncMock(side_effect=RuntimeError("quota"))

    with patch("rag_chat.src.document_ingestion.data_ingestion.AsyncSessionLocal", session_factory):
        await embed_document(DOCUMENT_ID, retrieval=retrieval)

    session.rollback.assert_awaited_once()


class TestIngestTransaction:
    @pytest.fixture
    def ingest_repo(self, make_document):
        repo = Mock()
        repo.create_document = AsyncMock(return_value=make_document())
        repo.create_chunks = AsyncMock()
        return repo

    async def test_document_and_chunks_committed_together(self, db_session, ingest_repo):
        _, count = await DataIngestor(repo=ingest_repo).ingest(
            db_session, title="t", filename="t.txt", mime_type="text/plain", size=3, content="a\n\nb"
        )

        assert count == 1
        assert ingest_repo.create_document.await_args.kwargs["commit"] is False
        assert ingest_repo.create_chunks.await_args.kwargs["commit"] is False
        db_session.commit.assert_awaited_once()
        db_session.rollback.assert_not_awaited()

    async def test_chunk_failure_leaves_no_document(self, db_session, ingest_repo):
        ingest_repo.create_chunks.side_effect = RuntimeError("insert failed")

        with pytest.raises(RuntimeError):
            await DataIngestor(repo=ingest_repo).ingest(
                db_session, title="t", filename="t.txt", mime_type="text/plain", size=1, content="a"
            )

        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()

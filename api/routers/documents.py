from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile

from api.responses import send_success
from api.schemas import (
    ChunkOut,
    CreateDocumentRequest,
    DocumentDetailOut,
    DocumentOut,
    DocumentStatsOut,
    UploadedDocumentOut,
)
from db.database import get_db
from db.document_repository import DocumentRepository
from rag_chat.exception.custom_exception import ERROR_CODES, NotFoundError, RagChatException
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.src.document_ingestion.data_ingestion import DataIngestor, embed_document
from rag_chat.utils.config_loader import get_config
from rag_chat.utils.file_io import read_uploaded_file, title_from_filename

router = APIRouter()


@router.get("")
async def get_documents(db=Depends(get_db)):
    repo = DocumentRepository()
    rows = await repo.get_documents(db)
    return send_success([DocumentOut.from_row(d, n) for d, n in rows])


@router.get("/stats")
async def get_stats(db=Depends(get_db)):
    """Counts and the five newest documents, for the dashboard."""
    repo = DocumentRepository()
    stats = await repo.get_stats(db)
    return send_success(DocumentStatsOut(**stats))


@router.get("/{document_id}")
async def get_document(document_id: UUID, db=Depends(get_db)):
    repo = DocumentRepository()
    doc = await repo.get_document(db, str(document_id))
    if doc is None:
        raise NotFoundError("Document not found", ERROR_CODES["DOCUMENT_NOT_FOUND"])
    return send_success(
        DocumentDetailOut.from_row(
            doc,
            len(doc.chunks),
            content=doc.content,
            chunks=[ChunkOut.from_row(c) for c in doc.chunks],
        )
    )


@router.post("")
async def create_document(
    req: CreateDocumentRequest,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
):
    """
    Create a document from JSON text; same chunk + embed pipeline as an upload.
    """
    ingestor = DataIngestor()
    content_bytes = len(req.content.encode("utf-8"))
    document, chunk_count = await ingestor.ingest(
        db,
        title=req.title,
        filename=req.filename or f"{req.title}.txt",
        mime_type=req.mime_type,
        size=content_bytes,
        content=req.content,
    )
    background_tasks.add_task(embed_document, document.id)
    return send_success(UploadedDocumentOut.from_row(document, chunk_count), 201)


@router.post("/upload")
async def upload_document(
    background_tasks: BackgroundTasks,
    file: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    db=Depends(get_db),
):
    """
    Upload endpoint:
      - validates type and size, extracts text
      - stores the document and its paragraph chunks
      - embeds the chunks in the background (status "processing")
    """
    max_title = get_config()["upload"]["max_title_length"]
    if title is not None and len(title) > max_title:
        raise RagChatException(
            f"title: must be at most {max_title} characters",
            400,
            ERROR_CODES["VALIDATION_ERROR"],
        )

    uploaded = await read_uploaded_file(file)

    ingestor = DataIngestor()
    document, chunk_count = await ingestor.ingest(
        db,
        title=title or title_from_filename(uploaded.filename),
        filename=uploaded.filename,
        mime_type=uploaded.mime_type,
        size=uploaded.size,
        content=uploaded.content,
    )

    background_tasks.add_task(embed_document, document.id)

    log.info(
        "Upload accepted, embedding scheduled | document_id=%s | chunks=%d",
        document.id,
        chunk_count,
    )
    return send_success(UploadedDocumentOut.from_row(document, chunk_count), 201)


@router.delete("/{document_id}")
async def delete_document(document_id: UUID, db=Depends(get_db)):
    repo = DocumentRepository()
    deleted = await repo.delete_document(db, str(document_id))
    if not deleted:
        raise NotFoundError("Document not found", ERROR_CODES["DOCUMENT_NOT_FOUND"])
    return send_success({"deleted": True})

"""FastAPI application entry point."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, File, Form, HTTPException, Response, UploadFile
from pydantic import BaseModel

from regextract.config import settings
from regextract.deliverables import DeliverableKind, JsonRenderer
from regextract.errors import (
    CompletionError,
    ConfigurationError,
    DocumentNotFoundError,
    InvalidUploadError,
    MalformedOutputError,
    NoObligationsError,
    RegExtractError,
)
from regextract.ingestion.upload import Registration, register_document
from regextract.models.document import CommencementDate, Document
from regextract.models.obligation import Obligation
from regextract.pipeline.document_dates import update_document_metadata
from regextract.pipeline.orchestrator import ClearResult, Pipeline, ProcessingOutcome
from regextract.stats import PlatformStats, SortOrder, archived_documents, platform_stats
from regextract.storage.base import Store
from regextract.storage.memory import InMemoryStore

logger = logging.getLogger(__name__)

app = FastAPI(
    title="RegExtract",
    description="Regulatory obligation extraction API",
    version="0.1.0",
)

store = InMemoryStore()
uploads: Dict[str, bytes] = {}
_pipeline: Optional[Pipeline] = None


class MetadataUpdate(BaseModel):
    title: Optional[str] = None
    document_type: Optional[str] = None
    effective_date: Optional[str] = None
    version: Optional[str] = None
    commencement_dates: Optional[List[CommencementDate]] = None


def get_store() -> Store:
    return store


def get_pipeline() -> Pipeline:
    """Build the OpenAI-backed pipeline on first use."""
    global _pipeline
    if _pipeline is None:
        try:
            _pipeline = Pipeline.from_settings(store)
        except ConfigurationError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _pipeline


def get_content(document_id: str) -> bytes:
    content = uploads.get(document_id)
    if content is None:
        raise HTTPException(status_code=404, detail="No uploaded file for this document.")
    return content


def to_http_error(exc: RegExtractError) -> HTTPException:
    if isinstance(exc, DocumentNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidUploadError, NoObligationsError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (CompletionError, MalformedOutputError)):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness check."""
    return {"status": "ok"}


@app.post("/upload", response_model=Registration)
async def upload(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    store: Store = Depends(get_store),
) -> Registration:
    """Register a PDF; identical bytes return the existing document."""
    content = await file.read()
    try:
        registration = await register_document(store, file.filename or "", content, title=title)
    except RegExtractError as exc:
        raise to_http_error(exc) from exc
    uploads.setdefault(registration.document.id, content)
    return registration


@app.post("/process/{document_id}", response_model=ProcessingOutcome)
async def process(
    document_id: str,
    force: bool = False,
    pipeline: Pipeline = Depends(get_pipeline),
) -> ProcessingOutcome:
    """Run the pipeline; ``force`` clears cached results first."""
    content = get_content(document_id)
    try:
        if force:
            return await pipeline.reprocess(document_id, content)
        return await pipeline.process(document_id, content)
    except RegExtractError as exc:
        logger.error("Processing %s failed: %s", document_id, exc)
        raise to_http_error(exc) from exc


@app.get("/documents", response_model=List[Document])
async def documents(
    search: Optional[str] = None,
    sort_by: SortOrder = "recent",
    store: Store = Depends(get_store),
) -> List[Document]:
    """Archived documents."""
    return await archived_documents(store, search=search, sort_by=sort_by)


@app.get("/documents/{document_id}", response_model=Document)
async def document_details(document_id: str, store: Store = Depends(get_store)) -> Document:
    document = await store.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document {document_id} not found")
    return document


@app.patch("/documents/{document_id}", response_model=Document)
async def update_metadata(
    document_id: str, payload: MetadataUpdate, store: Store = Depends(get_store)
) -> Document:
    try:
        return await update_document_metadata(store, document_id, **payload.model_dump(exclude_none=True))
    except RegExtractError as exc:
        raise to_http_error(exc) from exc


@app.get("/documents/{document_id}/obligations", response_model=List[Obligation])
async def obligations(document_id: str, store: Store = Depends(get_store)) -> List[Obligation]:
    if await store.get_document(document_id) is None:
        raise HTTPException(status_code=404, detail=f"Document {document_id} not found")
    return await store.list_obligations(document_id)


@app.post("/documents/{document_id}/clear-cache", response_model=ClearResult)
async def clear_cache(document_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> ClearResult:
    try:
        result = await pipeline.clear_document(document_id)
    except RegExtractError as exc:
        raise to_http_error(exc) from exc
    uploads.pop(document_id, None)
    return result


@app.post("/documents/{document_id}/dates", response_model=List[CommencementDate])
async def extract_dates(
    document_id: str, force: bool = False, pipeline: Pipeline = Depends(get_pipeline)
) -> List[CommencementDate]:
    content = get_content(document_id)
    try:
        return await pipeline.extract_document_dates(document_id, content, force=force)
    except RegExtractError as exc:
        raise to_http_error(exc) from exc


@app.post("/documents/{document_id}/deliverables/{kind}")
async def deliverable(
    document_id: str,
    kind: DeliverableKind,
    force: bool = False,
    pipeline: Pipeline = Depends(get_pipeline),
) -> Response:
    """Generate an RTM or functional spec and return it as a download."""
    renderer = JsonRenderer()
    try:
        body = await pipeline.deliverables.render(document_id, kind, renderer, force=force)
    except RegExtractError as exc:
        raise to_http_error(exc) from exc
    filename = f"{kind.value}-{document_id}.{renderer.extension}"
    return Response(
        content=body,
        media_type=renderer.media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/stats", response_model=PlatformStats)
async def stats(store: Store = Depends(get_store)) -> PlatformStats:
    return await platform_stats(store)


def main() -> None:
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()

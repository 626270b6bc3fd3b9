from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import uvicorn
from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .configuration import CMSConfig, get_settings
from .dispatcher import BuildDispatcher
from .document_store import DocumentStore
from .errors import CMSError
from .models import (
    ChangeEvent,
    ChangeType,
    CreateDocumentRequest,
    DocumentEnvelope,
    DocumentListEnvelope,
    StatusSnapshot,
    TriggerBuildRequest,
    TriggerBuildResponse,
    UpdateDocumentRequest,
)
from .watcher import MarkdownWatcher

logger = logging.getLogger(__name__)

MANUAL_TRIGGER_FILE = "manual trigger"

router = APIRouter(prefix="/api")


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_dispatcher(request: Request) -> BuildDispatcher:
    return request.app.state.dispatcher


def get_watcher(request: Request) -> MarkdownWatcher:
    return request.app.state.watcher


@router.get("/markdown-files", response_model=DocumentListEnvelope)
def list_markdown_files(store: DocumentStore = Depends(get_store)) -> DocumentListEnvelope:
    return DocumentListEnvelope(data=[document.to_payload() for document in store.list_documents()])


@router.get("/markdown-files/{document_id}", response_model=DocumentEnvelope)
def get_markdown_file(document_id: str, store: DocumentStore = Depends(get_store)) -> DocumentEnvelope:
    return DocumentEnvelope(data=store.get_document(document_id).to_payload())


@router.put("/markdown-files/{document_id}", response_model=DocumentEnvelope)
def update_markdown_file(
    document_id: str,
    payload: UpdateDocumentRequest,
    store: DocumentStore = Depends(get_store),
) -> DocumentEnvelope:
    document = store.update_document(document_id, payload.content, payload.frontmatter)
    return DocumentEnvelope(data=document.to_payload())


@router.post("/markdown-files", response_model=DocumentEnvelope, status_code=201)
def create_markdown_file(
    payload: CreateDocumentRequest,
    store: DocumentStore = Depends(get_store),
) -> DocumentEnvelope:
    document = store.create_document(payload.filename, payload.content, payload.frontmatter)
    return DocumentEnvelope(data=document.to_payload())


@router.post("/trigger-build", response_model=TriggerBuildResponse)
async def trigger_build(
    payload: Optional[TriggerBuildRequest] = Body(default=None),
    dispatcher: BuildDispatcher = Depends(get_dispatcher),
):
    # The service name only shapes the message; every configured webhook is notified
    service = payload.service if payload else None
    try:
        await dispatcher.dispatch(ChangeEvent(change_type=ChangeType.MANUAL, file_name=MANUAL_TRIGGER_FILE))
    except Exception:  # noqa: BLE001
        logger.exception("Error triggering build")
        return JSONResponse(status_code=500, content={"success": False, "error": "Failed to trigger build"})

    if service and service in dispatcher.webhooks:
        return TriggerBuildResponse(message=f"Build triggered for {service}")
    return TriggerBuildResponse(message="Build triggered for all configured services")


@router.get("/status", response_model=StatusSnapshot)
def status(watcher: MarkdownWatcher = Depends(get_watcher)) -> StatusSnapshot:
    return watcher.snapshot()


async def _cms_error_handler(request: Request, exc: CMSError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})


def _log_startup(settings: CMSConfig, dispatcher: BuildDispatcher) -> None:
    base = f"http://localhost:{settings.port}"
    logger.info("API server running on %s", base)
    logger.info("Markdown files endpoint: %s/api/markdown-files", base)
    logger.info("Manual build trigger: %s/api/trigger-build", base)
    logger.info("Server status: %s/api/status", base)
    if dispatcher.services:
        logger.info("Build webhooks configured for: %s", ", ".join(dispatcher.services))
    else:
        logger.warning("No build webhooks configured. Set environment variables to enable auto-deployment.")


def create_app(
    settings: Optional[CMSConfig] = None,
    dispatcher: Optional[BuildDispatcher] = None,
) -> FastAPI:
    settings = settings or get_settings()
    store = DocumentStore(settings.markdown_path)
    dispatcher = dispatcher or BuildDispatcher.from_settings(settings)
    watcher = MarkdownWatcher.from_settings(settings, dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        _log_startup(settings, dispatcher)
        if settings.watcher.enabled:
            await watcher.start()
        try:
            yield
        finally:
            await watcher.stop()

    app = FastAPI(title="Markdown CMS API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.dispatcher = dispatcher
    app.state.watcher = watcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CMSError, _cms_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(router)

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())

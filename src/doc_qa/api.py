"""HTTP adapter exposing ingestion, answering, corpus status and screening.

Routes:
- POST /api/ask     - answer a question; framed text stream by default, JSON when ``stream`` is false
- POST /api/ingest  - re-ingest the configured document (dev mode only)
- GET  /api/sources - ingestion status, counts and section headings
- POST /api/screen  - PHI and escalation warnings for a draft question
"""
from __future__ import annotations

from typing import Any, AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import iterate_in_threadpool, run_in_threadpool

from .answering import AnswerStream
from .compliance import detect_phi, escalation_warning, phi_warning
from .errors import (
    DocQAError,
    IngestionInProgress,
    InvalidQuestion,
    NoDataIngested,
    ProviderError,
    ProviderErrorKind,
    RetrievalError,
)
from .pipeline import DocQA

logger = structlog.get_logger(logger_name=__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}

_KIND_STATUS = {
    ProviderErrorKind.AUTH: 401,
    ProviderErrorKind.QUOTA: 429,
    ProviderErrorKind.UNAVAILABLE: 503,
    ProviderErrorKind.NETWORK: 503,
    ProviderErrorKind.MALFORMED: 502,
}


class AskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: Any = None
    top_k: int | None = Field(default=None, alias="topK", ge=1)
    strict: bool = True
    patient_response: bool = Field(default=False, alias="patientResponse")
    stream: bool = True


class ScreenRequest(BaseModel):
    text: str = ""


def status_for_error(exc: DocQAError) -> int:
    """Map a pipeline error to the HTTP status the adapter responds with."""
    if isinstance(exc, (InvalidQuestion, NoDataIngested)):
        return 400
    if isinstance(exc, IngestionInProgress):
        return 409
    if isinstance(exc, (ProviderError, RetrievalError)):
        return _KIND_STATUS.get(exc.kind, 500)
    return 500


def error_response(exc: DocQAError) -> JSONResponse:
    payload = exc.to_dict()
    payload["error"] = exc.user_message
    return JSONResponse(status_code=status_for_error(exc), content=payload)


def _doc_qa(request: Request) -> DocQA:
    return request.app.state.doc_qa


async def _framed_body(request: Request, stream: AnswerStream) -> AsyncIterator[bytes]:
    try:
        async for part in iterate_in_threadpool(stream.iter_bytes()):
            if await request.is_disconnected():
                logger.info("client_disconnected")
                break
            yield part
    finally:
        stream.close()


def create_app(doc_qa: DocQA | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        doc_qa: Pre-built application; built from environment settings when omitted.
    """
    if doc_qa is None:
        from .logging_setup import configure_logging
        from .pipeline import build_pipeline
        from .settings import load_settings, require_valid_settings

        settings = load_settings()
        configure_logging(settings.log_level, settings.log_json)
        doc_qa = build_pipeline(require_valid_settings(settings))

    app = FastAPI(title="Document Q&A", version="0.1.0")
    app.state.doc_qa = doc_qa
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(DocQAError)
    async def handle_doc_qa_error(request: Request, exc: DocQAError) -> JSONResponse:
        logger.warning("request_failed", path=request.url.path, error=exc.to_dict())
        return error_response(exc)

    @app.post("/api/ask")
    async def ask(body: AskRequest, request: Request):
        service = _doc_qa(request)
        options = {"top_k": body.top_k, "strict": body.strict, "patient_response": body.patient_response}

        if not body.stream:
            result = await run_in_threadpool(service.ask, body.question, **options)
            return JSONResponse(content=result.to_wire())

        answer_stream = await run_in_threadpool(service.ask_stream, body.question, **options)
        return StreamingResponse(
            _framed_body(request, answer_stream),
            media_type="text/plain; charset=utf-8",
            headers=STREAM_HEADERS,
        )

    @app.post("/api/ingest")
    async def ingest(request: Request):
        service = _doc_qa(request)
        if not service.settings.dev_mode:
            return JSONResponse(status_code=403, content={"error": "Ingestion is only available in dev mode"})

        result = await run_in_threadpool(service.ingest)
        if result.success:
            return {"message": "Document ingested successfully", **result.to_wire()}

        status = 409 if result.error_code == IngestionInProgress.error_code else 500
        return JSONResponse(status_code=status, content={"message": "Ingestion failed", **result.to_wire()})

    @app.get("/api/sources")
    async def sources(request: Request) -> dict[str, Any]:
        store = _doc_qa(request).store
        metadata = store.get_metadata()
        chunk_count = store.count()
        return {
            "ingested": chunk_count > 0,
            "documentName": metadata.document_name if metadata else None,
            "documentPath": metadata.document_path if metadata else None,
            "documentUrl": metadata.document_url if metadata else None,
            "chunkCount": chunk_count,
            "sectionCount": metadata.section_count if metadata else 0,
            "totalTokens": metadata.total_tokens if metadata else 0,
            "ingestedAt": metadata.ingested_at if metadata else None,
            "headings": store.unique_headings(),
        }

    @app.post("/api/screen")
    async def screen(body: ScreenRequest) -> dict[str, Any]:
        matches = detect_phi(body.text)
        return {
            "phi": {
                "detected": bool(matches),
                "types": list(dict.fromkeys(match.type for match in matches)),
                "warning": phi_warning(body.text),
            },
            "escalation": escalation_warning(body.text).to_wire(),
        }

    return app

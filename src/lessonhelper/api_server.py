"""
FastAPI service layer for the lesson helper.

Exposes book listing/upload, strict and smart task lookups, free-form chat,
image OCR, health and metrics endpoints.

Run with:
    uvicorn lessonhelper.api_server:create_app --factory --host 0.0.0.0 --port 3000
or:
    lessonhelper-server
"""
from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .ai_gateway import AIGateway
from .books import BookStore, InvalidBookError
from .config import Settings, console
from .metrics import MetricsCollector
from .observability import configure_logging, get_logger
from .ocr import InvalidImageError, OcrService
from .pdf_text import BookNotFoundError, PAGE_CACHE, PageOutOfRangeError
from .task_service import BadRequestError, TaskNotFoundError, TaskService

logger = get_logger(__name__)

_THREAD_POOL_WORKERS = 4  # PDF extraction workers
_ENDPOINTS = (
    "/api/books",
    "/api/upload-book",
    "/api/task/strict",
    "/api/task/smart",
    "/api/task/find",
    "/api/image-ocr",
    "/api/image-ocr/clear",
    "/metrics",
    "/health",
)


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StrictTaskRequest(_CamelModel):
    book: str | None = None
    page: int | str | None = None
    task_number: int | str | None = Field(default=None, alias="taskNumber")
    details: str | None = None
    subject: str | None = None
    model: str | None = None


class SmartTaskRequest(_CamelModel):
    book: str | None = None
    task_number: int | str | None = Field(default=None, alias="taskNumber")
    details: str | None = None
    question: str | None = None
    subject: str | None = None
    model: str | None = None


class FindTaskRequest(_CamelModel):
    book: str | None = None
    page: int | str | None = None
    task_number: int | str | None = Field(default=None, alias="taskNumber")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def _error(status_code: int, message: str, **context: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **context})


def error_response(exc: Exception) -> JSONResponse:
    """Converts a handler-level exception into a JSON error body."""
    if isinstance(exc, (BadRequestError, InvalidBookError, InvalidImageError)):
        return _error(400, str(exc))
    if isinstance(exc, BookNotFoundError):
        return _error(404, str(exc))
    if isinstance(exc, PageOutOfRangeError):
        return _error(404, str(exc), pageIndex=exc.page_index, numPages=exc.num_pages)
    if isinstance(exc, TaskNotFoundError):
        context = {}
        if exc.page_index is not None:
            context["pageIndex"] = exc.page_index
        if exc.num_pages is not None:
            context["numPages"] = exc.num_pages
        return _error(404, str(exc), **context)
    logger.error("request_failed", error=str(exc), error_type=exc.__class__.__name__)
    return _error(500, str(exc) or exc.__class__.__name__)


def _format_validation_error(exc: RequestValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return "Invalid request: " + "; ".join(problems) if problems else "Invalid request"


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(settings: Settings | None = None, gateway: AIGateway | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_path)
    PAGE_CACHE.resize(settings.page_cache_size)

    metrics = MetricsCollector()
    store = BookStore(settings.books_dir)
    ocr = OcrService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Opens the shared HTTP client and worker pool; closes them on shutdown."""
        executor = ThreadPoolExecutor(max_workers=_THREAD_POOL_WORKERS)
        client = None
        active_gateway = gateway
        if active_gateway is None:
            client = httpx.AsyncClient(timeout=settings.request_timeout_s)
            active_gateway = AIGateway(settings, client, metrics=metrics)
        if not active_gateway.configured:
            logger.warning("ai_api_key_missing", env=settings.api_key_env_name)
        store.ensure_ready()

        app.state.executor = executor
        app.state.gateway = active_gateway
        app.state.service = TaskService(settings, store, active_gateway, executor)
        logger.info(
            "service_started",
            provider=settings.ai_provider,
            model=settings.default_model,
            books_dir=str(settings.books_dir),
        )

        yield  # Application is running.

        if client is not None:
            await client.aclose()
        executor.shutdown(wait=False)

    app = FastAPI(
        title="Lesson Helper API",
        description="Finds textbook exercises and explains them with an AI tutor",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.store = store
    app.state.ocr = ocr

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(_request: Request, exc: RequestValidationError):
        return _error(400, _format_validation_error(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _http_handler(_request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    async def _offload(fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(getattr(app.state, "executor", None), fn, *args)

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health():
        active = getattr(app.state, "gateway", None)
        return {
            "ok": True,
            "status": "ok",
            "mode": "smart+strict",
            "port": settings.port,
            "provider": settings.ai_provider,
            "model": settings.default_model,
            "aiConfigured": bool(active.configured) if active is not None else bool(settings.api_key),
            "ocrEnabled": ocr.enabled,
            "endpoints": list(_ENDPOINTS),
        }

    @app.get("/metrics")
    async def metrics_endpoint():
        """Returns aggregated AI gateway metrics."""
        return metrics.get_summary()

    @app.get("/api/books")
    async def list_books():
        try:
            return {"books": store.list_books()}
        except Exception as exc:
            return error_response(exc)

    @app.post("/api/upload-book")
    async def upload_book(book: UploadFile | None = File(default=None)):
        if book is None or not book.filename:
            return _error(400, "File field 'book' was not sent")
        try:
            data = await book.read()
            filename = await _offload(store.save, book.filename, data)
            return {"ok": True, "filename": filename}
        except Exception as exc:
            return error_response(exc)

    @app.post("/api/task/strict")
    async def strict_task(body: StrictTaskRequest):
        try:
            return await app.state.service.strict_lookup(
                body.book,
                body.page,
                body.task_number,
                details=body.details,
                subject=body.subject,
                model=body.model,
            )
        except Exception as exc:
            return error_response(exc)

    @app.post("/api/task/smart")
    async def smart_task(body: SmartTaskRequest):
        try:
            return await app.state.service.smart_or_chat(
                book=body.book,
                task_number=body.task_number,
                details=body.details,
                question=body.question,
                subject=body.subject,
                model=body.model,
            )
        except Exception as exc:
            return error_response(exc)

    @app.post("/api/task/find")
    async def find_task(body: FindTaskRequest):
        """Fragment lookup without an AI call."""
        try:
            return await app.state.service.find_fragment(body.book, body.task_number, page=body.page)
        except Exception as exc:
            return error_response(exc)

    @app.post("/api/image-ocr")
    async def image_ocr(image: UploadFile | None = File(default=None)):
        if image is None:
            return _error(400, "Image file was not sent (field: image)")
        try:
            data = await image.read()
            return await _offload(ocr.recognize, data, image.filename or "")
        except Exception as exc:
            return error_response(exc)

    @app.post("/api/image-ocr/clear")
    async def clear_ocr_log():
        try:
            ocr.log.clear()
            return {"cleared": True}
        except Exception as exc:
            return error_response(exc)

    return app


def run():
    """Starts the API server with uvicorn."""
    import uvicorn

    settings = Settings.from_env()
    console.print(f"[green]Lesson helper running at http://{settings.host}:{settings.port}[/green]")
    if not settings.api_key:
        console.print(f"[yellow]{settings.api_key_env_name} is not set; AI answers will be unavailable.[/yellow]")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()

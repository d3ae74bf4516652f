"""
Selected Pages Service - Backend API
FastAPI app that emails selected PDF pages as images and serves the 7-day
shareable viewer for them. Storage backends: SQLite, JSON file, Google Sheets.

Run server:
uvicorn main:app --host 0.0.0.0 --port 8000
"""

import asyncio
import contextvars
import logging
import os
import time
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adapters import SelectionStore, build_selection_store
from core.email_sender import EmailDispatcher, SmtpMailer
from core.errors import PipelineError
from core.fetcher import DocumentFetcher, make_http_client
from core.renderer import Renderer, get_renderer
from models.selection import utcnow
from routers import pages, proxy, viewer
from settings import Settings, get_settings

APP_VERSION = "1.0"

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Request context for tracing
request_id_var = contextvars.ContextVar('request_id', default=None)


def build_mailer(settings: Settings) -> SmtpMailer:
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        secure=settings.smtp_secure,
        user=settings.smtp_user,
        password=settings.smtp_password,
        from_email=settings.resolved_from_email(),
        from_name=settings.smtp_from_name,
    )


def _error_body(message: str) -> dict:
    return {"error": message}


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[SelectionStore] = None,
    mailer: Optional[EmailDispatcher] = None,
    renderer: Optional[Renderer] = None,
    fetcher: Optional[DocumentFetcher] = None,
    clock: Callable[[], datetime] = utcnow,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FastAPI:
    """
    Build the app with its collaborators on app.state.

    Anything not passed in is built from settings: the store on startup,
    the rest right here. Tests pass fakes for all of them.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Selected Pages API",
        description="Email selected PDF pages as images and serve the shareable viewer",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    owns_http_client = fetcher is None
    if fetcher is None:
        fetcher = DocumentFetcher(make_http_client(settings.fetch_timeout_seconds))

    app.state.settings = settings
    app.state.store = store
    app.state.mailer = mailer or build_mailer(settings)
    app.state.renderer = renderer or get_renderer()
    app.state.fetcher = fetcher
    app.state.clock = clock
    app.state.sleep = sleep

    # ========== Request Tracing Middleware ==========
    @app.middleware("http")
    async def request_tracing_middleware(request, call_next):
        """Add request_id and timing to all requests."""
        request_id = str(uuid.uuid4())[:8]
        request_id_var.set(request_id)
        started = time.time()

        response = await call_next(request)

        latency_ms = round((time.time() - started) * 1000, 2)
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} "
            f"-> {response.status_code} ({latency_ms} ms)"
        )
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Pages-Downloaded"],
    )

    # ========== Error handlers ==========
    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request, exc: PipelineError):
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        logger.warning(f"Rejected request body: {errors}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(f"Invalid request: {where}: {message}" if where else f"Invalid request: {message}"),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("Internal server error"),
        )

    # ========== Endpoints ==========
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy" if app.state.store is not None else "starting",
            "backend": settings.storage_backend.lower(),
            "version": APP_VERSION,
        }

    app.include_router(pages.router)
    app.include_router(proxy.router)
    app.include_router(viewer.router)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Selected Pages API starting up...")
        if app.state.store is None:
            app.state.store = build_selection_store(settings)
        logger.info(f"Allowed origins: {settings.get_origins_list()}")
        logger.info(f"Viewer base URL: {settings.base_url}")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Selected Pages API shutting down...")
        if owns_http_client:
            await app.state.fetcher.client.aclose()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("main:app", host="0.0.0.0", port=port)

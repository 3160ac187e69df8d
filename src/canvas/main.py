"""
Canvas Main Application
=======================

FastAPI entry point for the image transformation server.

Uploaded originals are stored by content hash; fetches render a derived
image (auto-rotate, fit-resize, smart crop, watermark / caption, encode)
and memoize it in Redis.

Endpoints:
    POST /images         - Upload an original (multipart field 'image')
    GET  /images/{hash}  - Fetch a transformed image
    GET  /health         - Liveness probe
    GET  /metrics        - Cache, work pool and pipeline counters
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import UploadFile

from canvas.cache.keys import derive_cache_key, etag_for
from canvas.config import Settings, settings as default_settings
from canvas.errors import CanvasError, InvalidInput, NotFound
from canvas.models.params import TransformParams
from canvas.models.responses import ErrorResponse, HealthResponse, UploadResponse
from canvas.pipeline.orchestrator import Pipeline
from canvas.services import CacheFactory, Services


logger = logging.getLogger(__name__)

BROWSER_CACHE_CONTROL = "max-age=604800"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _get_pipeline(request: Request) -> Pipeline:
    return request.app.state.services.pipeline


def _image_headers(params: TransformParams, etag: str) -> dict:
    headers = {
        "ETag": etag,
        "Cache-Control": BROWSER_CACHE_CONTROL,
    }
    disposition = params.content_disposition()
    if disposition is not None:
        headers["Content-Disposition"] = disposition
    return headers


def _etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    if not if_none_match:
        return False
    candidates = [tag.strip() for tag in if_none_match.split(",")]
    return "*" in candidates or etag in candidates or f"W/{etag}" in candidates


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    cache_factory: Optional[CacheFactory] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration (default: the global settings loaded on import)
        cache_factory: Cache client builder (default: Redis from settings)
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager."""
        logger.info(f"Starting {settings.service.name} {settings.service.version}")
        logger.info(f"Upload dir: {settings.storage.upload_dir}")

        app.state.started_at = time.time()
        app.state.services = await Services.start(settings, cache_factory=cache_factory)

        logger.info("All components started")

        yield

        logger.info("Shutting down gracefully...")
        await app.state.services.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Canvas",
        description="On-the-fly image transformation server",
        version=settings.service.version,
        lifespan=lifespan,
    )

    # -------------------------------------------------------------------------
    # Middleware
    # -------------------------------------------------------------------------

    origins = settings.server.allowed_origins
    if not origins:
        logger.warning("CORS: all origins are allowed")
        origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        max_age=600,
    )

    if settings.server.enable_tracing:
        @app.middleware("http")
        async def trace_requests(request: Request, call_next):
            started = time.perf_counter()
            response = await call_next(request)
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"({(time.perf_counter() - started) * 1000:.1f}ms)"
            )
            return response

    # -------------------------------------------------------------------------
    # Error Handlers
    # -------------------------------------------------------------------------

    @app.exception_handler(CanvasError)
    async def canvas_error_handler(request: Request, exc: CanvasError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(InvalidInput(str(exc)).to_dict(), status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"{request.method} {request.url.path} raised {type(exc).__name__}")
        return JSONResponse(
            {"status_code": 500, "message": "Internal server error"},
            status_code=500,
        )

    # -------------------------------------------------------------------------
    # HTTP Endpoints
    # -------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Liveness probe - always 200 while the process is up."""
        return HealthResponse(ok=True)

    @app.get("/metrics")
    async def metrics(request: Request) -> JSONResponse:
        """Detailed counters for observability."""
        services: Services = request.app.state.services
        return JSONResponse({
            "uptime_seconds": round(time.time() - request.app.state.started_at, 1),
            "cache": services.cache.metrics.to_dict(),
            "workers": services.pool.metrics(),
            "pipeline": services.pipeline.metrics.to_dict(),
        })

    @app.post("/images", response_model=UploadResponse, responses=ERROR_RESPONSES)
    async def upload_image(request: Request) -> UploadResponse:
        """
        Save an uploaded original.

        Payload: multipart/form-data with a single file field named 'image'.
        Bodies declared larger than the upload limit are rejected before
        anything is read.
        """
        pipeline = _get_pipeline(request)

        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                raise InvalidInput(f"Invalid Content-Length: {content_length!r}")
            pipeline.check_upload_size(declared)

        try:
            form = await request.form()
        except Exception as e:
            raise InvalidInput(f"Malformed multipart body: {e}")

        try:
            field = form.get("image")
            if field is None:
                raise InvalidInput("Missing 'image' field")
            if not isinstance(field, UploadFile):
                raise InvalidInput("Field 'image' must be a file")

            # Chunked bodies carry no Content-Length; the spooled size is known
            if field.size is not None:
                pipeline.check_upload_size(field.size)
            data = await field.read()
        finally:
            await form.close()

        digest = await pipeline.ingest(data)
        return UploadResponse(hash=digest)

    @app.get("/images/{content_hash}", responses=ERROR_RESPONSES)
    async def get_image(content_hash: str, request: Request) -> Response:
        """
        Fetch a transformed image.

        Query parameters: width, height, quality, watermark, format,
        filename, overlay (see TransformParams).
        """
        pipeline = _get_pipeline(request)
        params = TransformParams.from_query(request.query_params)

        etag = etag_for(derive_cache_key(content_hash, params))
        if _etag_matches(request.headers.get("if-none-match"), etag):
            if not await pipeline.exists(content_hash):
                raise NotFound(f"Image {content_hash} was not found")
            return Response(status_code=304, headers=_image_headers(params, etag))

        rendered = await pipeline.fetch(content_hash, params)

        headers = _image_headers(params, etag)
        headers["X-Cache"] = "HIT" if rendered.cache_hit else "MISS"
        return Response(
            content=rendered.data,
            media_type=rendered.content_type,
            headers=headers,
        )

    return app


# =============================================================================
# FastAPI Application
# =============================================================================

app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================

def run() -> None:
    import uvicorn

    # PORT / CANVAS_PORT precedence is resolved by load_config
    uvicorn.run(
        "canvas.main:app",
        host=default_settings.server.host,
        port=default_settings.server.port,
        reload=False,
    )


if __name__ == "__main__":
    run()

"""
FastAPI application entry point for the certificate video generator.

Accepts a photo and a name, composites a circular photo and the name onto
the template video, and returns the rendered MP4.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from certgen import __version__
from certgen.config import get_settings
from certgen.routers import certificate, health
from certgen.services.certificate_pipeline import CertificateGenerator
from certgen.services.errors import GenerationError, RenderError, ServerConfigurationError

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Builds the generator and checks external tools on startup.
    """
    settings = get_settings()
    logger.info("Starting certificate video generator...")

    os.makedirs(settings.work_directory, exist_ok=True)
    logger.info(f"Work directory: {settings.work_directory}")
    logger.info(f"Max concurrent renders: {settings.max_render_workers}")

    generator = CertificateGenerator.from_settings(settings)
    app.state.generator = generator

    _verify_static_assets(generator)
    app.state.ffmpeg_status = await generator.renderer.check_ffmpeg()
    _log_ffmpeg_status(app.state.ffmpeg_status)

    logger.info("Certificate generator ready to accept requests.")

    yield

    logger.info("Shutting down certificate video generator...")
    app.state.generator = None
    logger.info("Shutdown complete")


def _verify_static_assets(generator: CertificateGenerator) -> None:
    """Warn early about missing bundled assets; requests will fail with 500."""
    assets = {
        "Template video": generator.template_path,
        "Font file": generator.font_path,
    }
    for description, path in assets.items():
        if os.path.isfile(path):
            logger.info(f"✓ {description} available: {path}")
        else:
            logger.warning(f"✗ {description} NOT FOUND at {path} - generation will fail")


def _log_ffmpeg_status(status) -> None:
    if not status.available:
        logger.warning("✗ FFmpeg NOT FOUND - rendering will fail")
        return
    logger.info(f"✓ {status.version}")
    if status.has_freetype:
        logger.info("✓ FFmpeg includes freetype (drawtext should work)")
    else:
        logger.warning("✗ FFmpeg may not have freetype - drawtext might fail")


# Create FastAPI application
app = FastAPI(
    title="Certificate Video Generator",
    description="""
Personalized certificate videos.

## Usage

`POST /generate` with a multipart form:
- `photo`: image file (JPEG, PNG, ...)
- `name`: text printed on the certificate

Returns `My_Certificate.mp4`, or `{"error": "..."}` on failure.
    """,
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    if isinstance(exc, (RenderError, ServerConfigurationError)):
        logger.error(f"{type(exc).__name__}: {exc.message} {exc.detail or ''}".rstrip())
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Server error"})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(certificate.router, tags=["Certificate"])


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "service": settings.app_name,
        "version": __version__,
        "status": "running",
        "docs": "/docs",
    }

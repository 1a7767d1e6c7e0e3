"""
Health and status endpoints.
"""

import os
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from certgen import __version__
from certgen.schemas.responses import HealthResponse, ReadinessResponse, StatusResponse

router = APIRouter()


@router.get("/api/status", response_model=StatusResponse)
async def api_status():
    """Liveness probe used by the frontend."""
    return StatusResponse(
        status="ok",
        time=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(status="healthy", version=__version__)


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Ready when both bundled assets are readable and FFmpeg can draw text.
    """
    generator = getattr(request.app.state, "generator", None)
    ffmpeg_status = getattr(request.app.state, "ffmpeg_status", None)

    template_ok = generator is not None and _readable(generator.template_path)
    font_ok = generator is not None and _readable(generator.font_path)
    ffmpeg_ok = ffmpeg_status is not None and ffmpeg_status.available
    freetype_ok = ffmpeg_ok and ffmpeg_status.has_freetype

    return ReadinessResponse(
        ready=template_ok and font_ok and ffmpeg_ok and freetype_ok,
        template_video=template_ok,
        font_file=font_ok,
        ffmpeg=ffmpeg_ok,
        freetype=freetype_ok,
        ffmpeg_version=ffmpeg_status.version if ffmpeg_status else None,
    )


def _readable(path) -> bool:
    return os.path.isfile(path) and os.access(path, os.R_OK)

"""
Response schemas for the certificate API.
"""

from typing import Optional

from pydantic import BaseModel, Field


class StatusResponse(BaseModel):
    """Lightweight liveness probe."""

    status: str = Field(..., description="Always 'ok' when the service is up")
    time: str = Field(..., description="Server time (ISO-8601, UTC)")


class ErrorResponse(BaseModel):
    """Structured error body returned for every failed request."""

    error: str = Field(..., description="Human-readable error message")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check: bundled assets and FFmpeg capabilities."""

    ready: bool
    template_video: bool = Field(..., description="Template video is present and readable")
    font_file: bool = Field(..., description="Font file is present and readable")
    ffmpeg: bool = Field(..., description="FFmpeg binary runs")
    freetype: bool = Field(..., description="FFmpeg supports drawtext")
    ffmpeg_version: Optional[str] = None

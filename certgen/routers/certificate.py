"""
Certificate generation endpoint.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool
from starlette.types import Receive, Scope, Send

from certgen.schemas.responses import ErrorResponse
from certgen.services.certificate_pipeline import (
    CertificateGenerator,
    GeneratedCertificate,
    GenerationRequest,
)
from certgen.services.errors import ArtifactIOError

logger = logging.getLogger(__name__)

router = APIRouter()


class CertificateFileResponse(FileResponse):
    """
    Streams a generated certificate, then releases its workspace.

    Release runs whether the stream completed or the client went away.
    """

    def __init__(self, certificate: GeneratedCertificate):
        super().__init__(
            certificate.output_path,
            media_type="video/mp4",
            filename=certificate.filename,
        )
        self.certificate = certificate

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            try:
                await run_in_threadpool(self.certificate.release)
            except ArtifactIOError as e:
                # Response already sent; nothing to report to the client
                logger.error(
                    f"[{self.certificate.request_id}] Workspace cleanup failed: {e.detail}"
                )


def get_generator(request: Request) -> CertificateGenerator:
    """Get the certificate generator from app state."""
    generator = getattr(request.app.state, "generator", None)
    if generator is None:
        raise HTTPException(
            status_code=503,
            detail="Certificate generator not initialized. Service not ready.",
        )
    return generator


@router.post(
    "/generate",
    response_class=FileResponse,
    responses={
        200: {"content": {"video/mp4": {}}, "description": "Rendered certificate video"},
        400: {"model": ErrorResponse, "description": "Missing or unreadable photo/name"},
        500: {"model": ErrorResponse, "description": "Server misconfiguration or render failure"},
        503: {"model": ErrorResponse, "description": "All render slots busy"},
    },
)
async def generate_certificate(
    request: Request,
    photo: Optional[UploadFile] = File(None, description="Photo to place in the circle"),
    name: Optional[str] = Form(None, description="Name to print on the certificate"),
):
    """
    Generate a personalized certificate video.

    Accepts a multipart form with `photo` (file) and `name` (text) and
    returns the rendered MP4 as `My_Certificate.mp4`.
    """
    generator = get_generator(request)

    photo_bytes: Optional[bytes] = None
    extension = ""
    if photo is not None:
        photo_bytes = await photo.read()
        extension = Path(photo.filename or "").suffix

    logger.info(
        f"Generate request received: name_length={len(name or '')}, "
        f"photo_bytes={len(photo_bytes or b'')}"
    )

    certificate = await generator.generate(
        GenerationRequest(
            raw_name=name or "",
            photo_bytes=photo_bytes,
            photo_extension=extension,
        )
    )
    return CertificateFileResponse(certificate)

"""
Error taxonomy for certificate generation.

Every error carries the HTTP status category it maps to and the message that
is safe to show the caller. Diagnostic detail stays on the exception (and in
the logs) only.
"""

from typing import Optional


class GenerationError(Exception):
    """Base class for failures surfaced to the caller."""

    status_code: int = 500
    default_message: str = "Server error"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        """Message returned to the caller."""
        return self.message


class InputValidationError(GenerationError):
    """Caller supplied a missing or empty photo or name."""

    status_code = 400
    default_message = "Invalid request"


class ImageDecodeError(GenerationError):
    """Uploaded photo is not a decodable raster image."""

    status_code = 400
    default_message = "Uploaded photo could not be decoded as an image"


class ServerConfigurationError(GenerationError):
    """Bundled static assets are missing or unreadable."""

    status_code = 500
    default_message = "Server is misconfigured"


class ArtifactIOError(GenerationError):
    """Workspace or artifact file operation failed."""

    status_code = 500
    default_message = "Failed to write intermediate files"


class RenderError(GenerationError):
    """External video engine failed, timed out, or produced no output."""

    status_code = 500
    default_message = "Failed to render certificate video"

    @property
    def public_message(self) -> str:
        # Engine diagnostics may leak paths; keep them server-side
        return self.default_message


class ServerBusyError(GenerationError):
    """No render slot became free within the queue timeout."""

    status_code = 503
    default_message = "Server is busy, please retry shortly"

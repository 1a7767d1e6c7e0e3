"""
Services for the certificate generator.

Includes:
- Workspace management (per-request scratch directories)
- Photo overlay compositing (OpenCV)
- Placement planning and FFmpeg filter graph building
- FFmpeg rendering
- Request orchestration
"""

from certgen.services.certificate_pipeline import (
    CertificateGenerator,
    GeneratedCertificate,
    GenerationRequest,
    RequestState,
)
from certgen.services.errors import (
    ArtifactIOError,
    GenerationError,
    ImageDecodeError,
    InputValidationError,
    RenderError,
    ServerBusyError,
    ServerConfigurationError,
)
from certgen.services.image_compositor import ImageCompositor
from certgen.services.placement_planner import PlacementPlanner, RenderPlan, sanitize_display_name
from certgen.services.process_runner import ProcessResult, ProcessRunner
from certgen.services.rendering_service import RenderingService, RenderResult
from certgen.services.workspace_service import Workspace, WorkspaceManager

__all__ = [
    # Orchestration
    "CertificateGenerator",
    "GenerationRequest",
    "GeneratedCertificate",
    "RequestState",
    # Pipeline stages
    "Workspace",
    "WorkspaceManager",
    "ImageCompositor",
    "PlacementPlanner",
    "RenderPlan",
    "sanitize_display_name",
    "RenderingService",
    "RenderResult",
    "ProcessRunner",
    "ProcessResult",
    # Errors
    "GenerationError",
    "InputValidationError",
    "ImageDecodeError",
    "ServerConfigurationError",
    "ArtifactIOError",
    "RenderError",
    "ServerBusyError",
]

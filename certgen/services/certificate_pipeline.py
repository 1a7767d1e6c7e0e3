"""
Certificate Pipeline - Orchestrates one certificate generation request.

Steps:
1. Workspace allocation (unique directory per request)
2. Validation (photo, name, bundled assets) before any expensive work
3. Circular photo overlay (OpenCV)
4. Placement planning and filter graph construction
5. FFmpeg render

The caller streams the resulting file and then releases it, which removes
the workspace. On any failure the workspace is removed before the error
propagates.
"""

import asyncio
import logging
import os
import re
import shutil
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Union

from certgen.config import Settings
from certgen.services.errors import (
    ArtifactIOError,
    GenerationError,
    InputValidationError,
    ServerBusyError,
    ServerConfigurationError,
)
from certgen.services.image_compositor import ImageCompositor
from certgen.services.placement_planner import PlacementPlanner, sanitize_display_name
from certgen.services.rendering_service import RenderingService
from certgen.services.workspace_service import WorkspaceManager

logger = logging.getLogger(__name__)

OVERLAY_FILENAME = "overlay_600.png"
OUTPUT_FILENAME = "output.mp4"
UPLOAD_BASENAME = "upload"

_SAFE_EXTENSION = re.compile(r"^\.?([A-Za-z0-9]{1,8})$")


class RequestState(str, Enum):
    """Lifecycle of a generation request."""

    CREATED = "created"
    WORKSPACE_ALLOCATED = "workspace_allocated"
    VALIDATED = "validated"
    OVERLAY_BUILT = "overlay_built"
    RENDERED = "rendered"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


@dataclass
class GenerationRequest:
    """Inbound request: raw name plus uploaded photo."""

    raw_name: str
    photo_bytes: Optional[bytes]
    photo_extension: str = ""


@dataclass
class GeneratedCertificate:
    """A rendered certificate awaiting delivery. Call release() when done."""

    request_id: str
    output_path: Path
    filename: str
    workspace_path: Path
    file_size_bytes: int
    state: RequestState = RequestState.STREAMING
    _cleanup: Optional[Callable[[], object]] = field(default=None, repr=False)

    @property
    def released(self) -> bool:
        return self._cleanup is None

    def release(self) -> None:
        """Destroy the workspace. Only the first call has any effect."""
        cleanup, self._cleanup = self._cleanup, None
        if cleanup is None:
            return
        try:
            cleanup()
        finally:
            self.state = RequestState.DONE
            logger.info(f"[{self.request_id}] State: {RequestState.DONE.value}")


def safe_extension(extension: str) -> str:
    """Reduce a client-supplied extension to '.abc' form, or '' if unusable."""
    match = _SAFE_EXTENSION.match(extension or "")
    return f".{match.group(1).lower()}" if match else ""


class CertificateGenerator:
    """
    Request orchestrator for certificate videos.

    All collaborators and asset locations are passed in explicitly so tests
    can inject temp roots, fake assets and a fake process runner.
    """

    def __init__(
        self,
        template_path: Union[str, Path],
        font_path: Union[str, Path],
        workspace_manager: WorkspaceManager,
        compositor: ImageCompositor,
        planner: PlacementPlanner,
        renderer: RenderingService,
        output_filename: str = "My_Certificate.mp4",
        max_concurrent_renders: int = 3,
        queue_timeout_seconds: Optional[float] = 30.0,
        probe_output: bool = True,
    ):
        self.template_path = Path(template_path)
        self.font_path = Path(font_path)
        self.workspace_manager = workspace_manager
        self.compositor = compositor
        self.planner = planner
        self.renderer = renderer
        self.output_filename = output_filename
        self.max_concurrent_renders = max_concurrent_renders
        self.queue_timeout_seconds = queue_timeout_seconds
        self.probe_output = probe_output

        # Bounds simultaneous CPU-heavy composite+render work
        self._semaphore = asyncio.Semaphore(max_concurrent_renders)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        renderer: Optional[RenderingService] = None,
    ) -> "CertificateGenerator":
        """Wire the default collaborators from settings."""
        layout = settings.get_layout()
        return cls(
            template_path=settings.template_video_path,
            font_path=settings.font_file_path,
            workspace_manager=WorkspaceManager(settings.work_directory),
            compositor=ImageCompositor.from_layout(layout),
            planner=PlacementPlanner(layout),
            renderer=renderer or RenderingService.from_settings(settings),
            output_filename=settings.output_filename,
            max_concurrent_renders=settings.max_render_workers,
            queue_timeout_seconds=settings.queue_timeout_seconds,
        )

    def _transition(self, request_id: str, state: RequestState) -> None:
        logger.info(f"[{request_id}] State: {state.value}")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, request: GenerationRequest) -> str:
        """
        Check inputs and bundled assets.

        Returns:
            Sanitized display name

        Raises:
            InputValidationError: Missing photo or name
            ServerConfigurationError: Missing template video or font
        """
        if not request.photo_bytes:
            raise InputValidationError("Photo is required (field name: photo)")

        display_name = sanitize_display_name(request.raw_name or "")
        if not display_name:
            raise InputValidationError("Name is required")

        if not _is_readable_file(self.template_path):
            logger.error(f"Template video missing or unreadable: {self.template_path}")
            raise ServerConfigurationError(
                "Template video missing on server", detail=str(self.template_path)
            )
        if not _is_readable_file(self.font_path):
            logger.error(f"Font file missing or unreadable: {self.font_path}")
            raise ServerConfigurationError(
                "Font file missing on server", detail=str(self.font_path)
            )

        return display_name

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _render_slot(self, request_id: str) -> AsyncIterator[None]:
        """Wait (bounded) for a free render slot."""
        if not await self._acquire_slot():
            logger.warning(
                f"[{request_id}] No render slot free after {self.queue_timeout_seconds}s "
                f"(max {self.max_concurrent_renders})"
            )
            raise ServerBusyError()
        try:
            yield
        finally:
            self._semaphore.release()

    async def _acquire_slot(self) -> bool:
        """
        Acquire a semaphore permit within the queue timeout.

        An acquire that completes as the timeout fires, or after the caller is
        cancelled, hands its permit straight back.
        """
        acquire = asyncio.ensure_future(self._semaphore.acquire())
        try:
            done, _ = await asyncio.wait({acquire}, timeout=self.queue_timeout_seconds)
        except asyncio.CancelledError:
            self._abandon(acquire)
            raise
        if acquire in done:
            return True
        self._abandon(acquire)
        return False

    def _abandon(self, acquire: "asyncio.Future[bool]") -> None:
        acquire.cancel()
        acquire.add_done_callback(self._return_permit)

    def _return_permit(self, acquire: "asyncio.Future[bool]") -> None:
        if not acquire.cancelled() and acquire.exception() is None:
            self._semaphore.release()

    async def generate(self, request: GenerationRequest) -> GeneratedCertificate:
        """
        Run the full pipeline for one request.

        Args:
            request: GenerationRequest with name and photo bytes

        Returns:
            GeneratedCertificate; the caller must release() it after streaming

        Raises:
            GenerationError: Any classified failure (workspace already removed)
        """
        request_id = self.workspace_manager.new_request_id()
        start_time = time.time()
        self._transition(request_id, RequestState.CREATED)

        try:
            async with self.workspace_manager.workspace(request_id) as lease:
                self._transition(request_id, RequestState.WORKSPACE_ALLOCATED)
                workspace = lease.path

                display_name = self.validate(request)
                self._transition(request_id, RequestState.VALIDATED)

                async with self._render_slot(request_id):
                    await self._store_upload(workspace, request)
                    font_path = await self._copy_font(workspace)

                    overlay_path = await self.compositor.compose_overlay(
                        request.photo_bytes, workspace / OVERLAY_FILENAME
                    )
                    self._transition(request_id, RequestState.OVERLAY_BUILT)

                    plan = self.planner.plan(
                        display_text=display_name,
                        font_path=font_path,
                        output_path=workspace / OUTPUT_FILENAME,
                    )
                    render_result = await self.renderer.render(
                        self.template_path, overlay_path, plan
                    )
                    self._transition(request_id, RequestState.RENDERED)

                if self.probe_output:
                    info = await self.renderer.probe(render_result.output_path)
                    if info:
                        logger.info(
                            f"[{request_id}] Output {info.width}x{info.height}, "
                            f"{info.duration_seconds:.2f}s"
                        )

                certificate = GeneratedCertificate(
                    request_id=request_id,
                    output_path=Path(render_result.output_path),
                    filename=self.output_filename,
                    workspace_path=workspace,
                    file_size_bytes=render_result.file_size_bytes,
                    _cleanup=lease.release,
                )
                # The certificate owns the workspace from here on
                lease.hand_off()

        except GenerationError as e:
            self._transition(request_id, RequestState.FAILED)
            logger.warning(
                f"[{request_id}] Generation failed ({type(e).__name__}): {e.message}"
            )
            raise
        except BaseException:
            self._transition(request_id, RequestState.FAILED)
            raise

        self._transition(request_id, RequestState.STREAMING)
        logger.info(
            f"[{request_id}] Certificate ready in {time.time() - start_time:.1f}s"
        )
        return certificate

    async def _store_upload(self, workspace: Path, request: GenerationRequest) -> Path:
        """Keep the uploaded photo inside the workspace so it shares its lifetime."""
        upload_path = workspace / f"{UPLOAD_BASENAME}{safe_extension(request.photo_extension)}"
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: upload_path.write_bytes(request.photo_bytes),
            )
        except OSError as e:
            raise ArtifactIOError(detail=f"Cannot store upload: {e}") from e
        return upload_path

    async def _copy_font(self, workspace: Path) -> Path:
        """Copy the font into the workspace so drawtext sees a controlled path."""
        font_copy = workspace / self.font_path.name
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: shutil.copy2(self.font_path, font_copy),
            )
        except OSError as e:
            raise ArtifactIOError(detail=f"Cannot copy font: {e}") from e
        return font_copy


def _is_readable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)

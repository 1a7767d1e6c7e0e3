"""
Rendering Service - FFmpeg-based certificate video rendering.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from certgen.config import Settings
from certgen.services.errors import RenderError
from certgen.services.placement_planner import RenderPlan
from certgen.services.process_runner import ProcessRunner

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    """Result of rendering operation."""

    output_path: str
    file_size_bytes: int
    render_time_seconds: float


@dataclass
class MediaInfo:
    """Geometry and duration of a rendered file."""

    width: int
    height: int
    duration_seconds: float


@dataclass
class FFmpegStatus:
    """Capabilities of the configured FFmpeg binary."""

    available: bool
    version: Optional[str] = None
    has_freetype: bool = False


class RenderingService:
    """
    Service for rendering certificates using FFmpeg.

    Features:
    - Template letterboxed onto the certificate canvas
    - Circular photo overlay and burned-in name via a single filter graph
    - H.264/AAC MP4 with faststart for progressive playback
    - Bounded render time
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        runner: Optional[ProcessRunner] = None,
        timeout_seconds: Optional[float] = 300.0,
        preset: str = "veryfast",
        crf: int = 18,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.runner = runner or ProcessRunner()
        self.timeout_seconds = timeout_seconds
        self.preset = preset
        self.crf = crf

    @classmethod
    def from_settings(
        cls, settings: Settings, runner: Optional[ProcessRunner] = None
    ) -> "RenderingService":
        return cls(
            ffmpeg_path=settings.ffmpeg_path,
            ffprobe_path=settings.ffprobe_path,
            runner=runner,
            timeout_seconds=settings.render_timeout_seconds,
            preset=settings.ffmpeg_preset,
            crf=settings.ffmpeg_crf,
        )

    def build_command(
        self,
        template_path: Union[str, Path],
        overlay_path: Union[str, Path],
        plan: RenderPlan,
    ) -> list[str]:
        """Assemble the FFmpeg invocation for a render plan."""
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-i", str(template_path),
            "-i", str(overlay_path),
            "-filter_complex", plan.filter_graph,
            "-map", f"[{plan.video_label}]",
            "-map", "0:a?",  # Template audio is optional
            "-c:v", "libx264",
            "-crf", str(self.crf),
            "-preset", self.preset,
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-movflags", "+faststart",  # moov atom up front for streaming
            "-shortest",
            plan.output_path,
        ]

    async def render(
        self,
        template_path: Union[str, Path],
        overlay_path: Union[str, Path],
        plan: RenderPlan,
    ) -> RenderResult:
        """
        Render the certificate video.

        Args:
            template_path: Template video (input 0)
            overlay_path: Circular photo PNG (input 1)
            plan: RenderPlan with filter graph and output path

        Returns:
            RenderResult with output path and metadata

        Raises:
            RenderError: On spawn failure, non-zero exit, timeout or missing output
        """
        output_path = Path(plan.output_path)
        cmd = self.build_command(template_path, overlay_path, plan)

        logger.info(f"Rendering certificate: {output_path.name} ({plan.canvas_width}x{plan.canvas_height})")
        start_time = time.time()

        try:
            result = await self.runner.run(cmd, timeout=self.timeout_seconds)
        except OSError as e:
            logger.error(f"Could not start FFmpeg ({self.ffmpeg_path}): {e}")
            raise RenderError(f"Could not start FFmpeg: {e}", detail=str(e)) from e

        if result.timed_out:
            error_msg = result.diagnostics()
            logger.error(f"FFmpeg timed out after {self.timeout_seconds}s: {error_msg}")
            raise RenderError(
                f"FFmpeg timed out after {self.timeout_seconds}s", detail=error_msg
            )

        if result.returncode != 0:
            error_msg = result.diagnostics()
            logger.error(f"FFmpeg failed (exit {result.returncode}): {error_msg}")
            raise RenderError(f"FFmpeg failed: {error_msg[:200]}", detail=error_msg)

        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise RenderError("Render failed: output file not created")

        file_size = output_path.stat().st_size
        elapsed = time.time() - start_time
        logger.info(
            f"Certificate rendered: {output_path} "
            f"({file_size / 1024 / 1024:.1f} MB in {elapsed:.1f}s)"
        )

        return RenderResult(
            output_path=str(output_path),
            file_size_bytes=file_size,
            render_time_seconds=elapsed,
        )

    async def probe(self, video_path: Union[str, Path]) -> Optional[MediaInfo]:
        """Get dimensions and duration using ffprobe. Returns None on failure."""
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height:format=duration",
            "-of", "json",
            str(video_path),
        ]
        try:
            result = await self.runner.run(cmd, timeout=30)
            if not result.ok:
                logger.warning(f"ffprobe failed for {video_path}: {result.diagnostics(300)}")
                return None
            data = json.loads(result.stdout.decode("utf-8"))
            stream = data["streams"][0]
            return MediaInfo(
                width=int(stream["width"]),
                height=int(stream["height"]),
                duration_seconds=float(data.get("format", {}).get("duration", 0.0)),
            )
        except (OSError, ValueError, KeyError, IndexError) as e:
            logger.warning(f"Failed to probe video {video_path}: {e}")
            return None

    async def check_ffmpeg(self) -> FFmpegStatus:
        """Check the FFmpeg binary runs and supports drawtext (freetype)."""
        try:
            result = await self.runner.run([self.ffmpeg_path, "-version"], timeout=10)
        except OSError as e:
            logger.warning(f"Could not run ffmpeg -version: {e}")
            return FFmpegStatus(available=False)

        if not result.ok:
            logger.warning(f"ffmpeg -version failed: {result.diagnostics(300)}")
            return FFmpegStatus(available=False)

        output = (result.stdout + result.stderr).decode("utf-8", errors="replace")
        version = output.splitlines()[0] if output else None
        has_freetype = bool(re.search(r"freetype", output, re.IGNORECASE))
        return FFmpegStatus(available=True, version=version, has_freetype=has_freetype)

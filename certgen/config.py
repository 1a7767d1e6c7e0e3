"""
Configuration module using Pydantic Settings for environment variable management.

Only deployment-specific values (asset locations, temp roots, concurrency and
timeouts) are exposed. The certificate look-and-feel is hardcoded so every
rendered video matches the template artwork.
"""

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

# Project root (parent of the certgen package); bundled media lives under it
PROJECT_ROOT = Path(__file__).resolve().parent.parent
MEDIA_DIR = PROJECT_ROOT / "media"


class CertificateLayout:
    """Certificate geometry and styling (hardcoded to match the template)."""

    # Output canvas
    canvas_width: int = 1240
    canvas_height: int = 1748

    # Circular photo overlay, positioned by its center
    overlay_size: int = 600
    overlay_center_x: int = 620
    overlay_center_y: int = 425

    # Decorative ring drawn inside the circle edge
    ring_radius: int = 295
    ring_width: int = 10
    ring_color: str = "#ff9933"  # Saffron

    # Name text, horizontally centered on text_anchor_x
    text_anchor_x: int = 620
    text_y: int = 820
    font_size: int = 70
    font_color: str = "#274245"

    @property
    def overlay_x(self) -> int:
        return self.overlay_center_x - self.overlay_size // 2

    @property
    def overlay_y(self) -> int:
        return self.overlay_center_y - self.overlay_size // 2


class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    Encoding and layout settings are hardcoded for consistency.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES
    # ============================================================

    # Application
    app_name: str = "certificate-video-generator"
    debug: bool = False
    log_level: str = "INFO"

    # Bundled static assets (shipped with the deployment)
    template_video_path: str = str(MEDIA_DIR / "certificate_vid_mu.mp4")
    font_file_path: str = str(MEDIA_DIR / "Montserrat-Bold.ttf")

    # Writable scratch root (serverless platforms only allow TMPDIR)
    runtime_tmp: str = Field(default_factory=lambda: os.environ.get("TMPDIR") or "/tmp")

    # Allowed browser origins
    cors_origins: list[str] = ["http://localhost:3000"]

    # External tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Performance tuning
    max_render_workers: int = 3  # Max simultaneous certificate generations
    render_timeout_seconds: float = 300.0  # Kill FFmpeg after this long
    queue_timeout_seconds: float = 30.0  # Max wait for a free render slot

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    @property
    def work_directory(self) -> str:
        return os.path.join(self.runtime_tmp, "work")

    @property
    def ffmpeg_preset(self) -> str:
        return "veryfast"

    @property
    def ffmpeg_crf(self) -> int:
        return 18

    @property
    def output_filename(self) -> str:
        return "My_Certificate.mp4"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    def get_layout(self) -> CertificateLayout:
        """Build the certificate layout."""
        return CertificateLayout()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

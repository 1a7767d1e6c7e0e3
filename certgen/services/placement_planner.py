"""
Placement Planner - Fixed geometry for the certificate and the FFmpeg filter graph.

The overlay and the name text are placed at fixed coordinates on a
1240x1748 canvas. The only per-request input is the sanitized name.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from certgen.config import CertificateLayout
from certgen.services.filter_graph import FilterGraphBuilder, normalize_filter_path

logger = logging.getLogger(__name__)

# Characters that terminate or corrupt quoted filter sub-expressions
STRIPPED_CHARACTERS = re.compile(r'[:"]')
# ASCII control characters (NUL aborts process spawning, newlines split lines)
CONTROL_CHARACTERS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_display_name(raw_name: str) -> str:
    """
    Normalize a user-supplied name for display.

    Strips ``:`` and ``"`` (and control characters), uppercases, then trims
    surrounding whitespace. Stripping happens before trimming so that
    applying the function twice gives the same result.

    Args:
        raw_name: Name as submitted by the caller

    Returns:
        Display text, possibly empty
    """
    if not raw_name:
        return ""
    name = STRIPPED_CHARACTERS.sub("", raw_name)
    name = CONTROL_CHARACTERS.sub("", name)
    return name.upper().strip()


@dataclass(frozen=True)
class RenderPlan:
    """Immutable values consumed by the rendering service."""

    canvas_width: int
    canvas_height: int
    overlay_x: int
    overlay_y: int
    display_text: str
    font_path: str
    filter_graph: str
    output_path: str
    video_label: str = "v"


class PlacementPlanner:
    """Computes overlay/text placement and the -filter_complex description."""

    def __init__(self, layout: CertificateLayout):
        self.layout = layout

    def plan(
        self,
        display_text: str,
        font_path: Union[str, Path],
        output_path: Union[str, Path],
    ) -> RenderPlan:
        """
        Build the render plan for one certificate.

        Args:
            display_text: Already-sanitized name
            font_path: Font file used by drawtext
            output_path: Where the rendered video goes

        Returns:
            RenderPlan with the complete filter graph
        """
        if not display_text:
            raise ValueError("Display text must not be empty")

        layout = self.layout
        font_path = normalize_filter_path(str(font_path))
        filter_graph = self.build_filter_graph(display_text, font_path)

        return RenderPlan(
            canvas_width=layout.canvas_width,
            canvas_height=layout.canvas_height,
            overlay_x=layout.overlay_x,
            overlay_y=layout.overlay_y,
            display_text=display_text,
            font_path=font_path,
            filter_graph=filter_graph,
            output_path=str(output_path),
        )

    def build_filter_graph(self, display_text: str, font_path: str) -> str:
        """
        Build the graph.

        Input 0 is the template video, input 1 the overlay PNG. Output pad
        ``[v]`` carries the finished video stream.
        """
        layout = self.layout
        width, height = layout.canvas_width, layout.canvas_height
        graph = FilterGraphBuilder()

        # Letterbox the template onto the canvas, centered, square pixels
        (
            graph.chain(["0:v"], "base")
            .stage("scale", width, height, force_original_aspect_ratio="decrease")
            .stage("pad", width, height, "(ow-iw)/2", "(oh-ih)/2", "black")
            .stage("setsar", 1)
        )

        graph.chain(["1:v"], "ovr").stage("format", "rgba")

        graph.chain(["base", "ovr"], "tmp").stage(
            "overlay", layout.overlay_x, layout.overlay_y, format="auto"
        )

        (
            graph.chain(["tmp"], "v")
            .stage(
                "drawtext",
                fontfile=font_path,
                text=display_text,
                expansion="none",
                fontcolor=layout.font_color,
                fontsize=layout.font_size,
                x=f"{layout.text_anchor_x}-text_w/2",
                y=layout.text_y,
            )
            .stage("format", "yuv420p")
        )

        return graph.build()

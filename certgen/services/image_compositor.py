"""
Image Compositor - Builds the circular photo overlay for the certificate.

Pipeline:
1. Decode arbitrary raster bytes (JPEG, PNG, WebP, ...) with OpenCV
2. "Cover" fit to a square: center-crop to the largest square, then scale
3. Alpha mask so only the inscribed circle is opaque
4. Decorative ring stroke on top
5. Encode as PNG with alpha
"""

import asyncio
import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np

from certgen.config import CertificateLayout
from certgen.services.errors import ArtifactIOError, ImageDecodeError

logger = logging.getLogger(__name__)

# Fractional bits for sub-pixel circle drawing
DRAW_SHIFT = 4
DRAW_SCALE = 1 << DRAW_SHIFT


def hex_to_bgr(color: str) -> tuple[int, int, int]:
    """Convert '#rrggbb' to an OpenCV BGR tuple."""
    value = color.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"Expected #rrggbb color, got {color!r}")
    r, g, b = (int(value[i:i + 2], 16) for i in (0, 2, 4))
    return b, g, r


class ImageCompositor:
    """
    Produces the circular, ringed photo overlay.

    Masking uses two drawn circles (filled for the alpha cutout, stroked for
    the border) instead of per-pixel distance computation.
    """

    def __init__(
        self,
        size: int = 600,
        ring_radius: int = 295,
        ring_width: int = 10,
        ring_color: str = "#ff9933",
    ):
        self.size = size
        self.ring_radius = ring_radius
        self.ring_width = ring_width
        self.ring_color = hex_to_bgr(ring_color)

    @classmethod
    def from_layout(cls, layout: CertificateLayout) -> "ImageCompositor":
        return cls(
            size=layout.overlay_size,
            ring_radius=layout.ring_radius,
            ring_width=layout.ring_width,
            ring_color=layout.ring_color,
        )

    async def compose_overlay(
        self, photo_bytes: bytes, output_path: Union[str, Path]
    ) -> Path:
        """Build the overlay in a worker thread (decode/resize are CPU-bound)."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.build_overlay(photo_bytes, output_path),
        )

    def build_overlay(self, photo_bytes: bytes, output_path: Union[str, Path]) -> Path:
        """
        Build the overlay PNG from raw photo bytes.

        Args:
            photo_bytes: Encoded image data
            output_path: Where to write the PNG

        Returns:
            Path to the written PNG

        Raises:
            ImageDecodeError: If the bytes are not a decodable image
            ArtifactIOError: If the PNG cannot be encoded or written
        """
        image = self.decode(photo_bytes)
        square = self.cover_fit(image)

        overlay = cv2.cvtColor(square, cv2.COLOR_BGR2BGRA)
        overlay[:, :, 3] = self.circle_mask()
        self.draw_ring(overlay)

        output_path = Path(output_path)
        self._write_png(overlay, output_path)
        logger.debug(f"Overlay written: {output_path} ({self.size}x{self.size})")
        return output_path

    def decode(self, photo_bytes: bytes) -> np.ndarray:
        """Decode image bytes to a 3-channel BGR array."""
        if not photo_bytes:
            raise ImageDecodeError(detail="Empty image data")

        buffer = np.frombuffer(photo_bytes, dtype=np.uint8)
        try:
            # IMREAD_COLOR normalizes grayscale/alpha inputs to BGR
            image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        except cv2.error as e:
            raise ImageDecodeError(detail=str(e)) from e

        if image is None or image.size == 0:
            raise ImageDecodeError(detail="Unrecognized image format")
        return image

    def cover_fit(self, image: np.ndarray) -> np.ndarray:
        """
        Fill a size x size square preserving aspect, cropping the overflow.

        The largest centered square is cropped from the source first, so the
        resize buffer is always size x size whatever the input aspect ratio.
        """
        height, width = image.shape[:2]
        side = min(width, height)
        x0 = (width - side) // 2
        y0 = (height - side) // 2
        square = image[y0:y0 + side, x0:x0 + side]

        # INTER_AREA for downscaling, INTER_CUBIC for upscaling
        interpolation = cv2.INTER_AREA if side > self.size else cv2.INTER_CUBIC
        resized = cv2.resize(square, (self.size, self.size), interpolation=interpolation)
        return np.ascontiguousarray(resized)

    def _center(self) -> tuple[int, int]:
        # Pixel centers sit at +0.5, so the geometric center is size/2 - 0.5
        c = round((self.size / 2 - 0.5) * DRAW_SCALE)
        return c, c

    def circle_mask(self) -> np.ndarray:
        """Anti-aliased filled circle inscribed in the square (radius size/2)."""
        mask = np.zeros((self.size, self.size), dtype=np.uint8)
        cv2.circle(
            mask,
            self._center(),
            round(self.size / 2 * DRAW_SCALE),
            255,
            thickness=-1,
            lineType=cv2.LINE_AA,
            shift=DRAW_SHIFT,
        )
        return mask

    def draw_ring(self, overlay: np.ndarray) -> None:
        """Stroke the decorative ring onto a BGRA overlay in place."""
        b, g, r = self.ring_color
        cv2.circle(
            overlay,
            self._center(),
            self.ring_radius * DRAW_SCALE,
            (b, g, r, 255),
            thickness=self.ring_width,
            lineType=cv2.LINE_AA,
            shift=DRAW_SHIFT,
        )

    def _write_png(self, overlay: np.ndarray, output_path: Path) -> None:
        ok, encoded = cv2.imencode(".png", overlay)
        if not ok:
            raise ArtifactIOError(detail=f"PNG encoding failed for {output_path}")
        try:
            output_path.write_bytes(encoded.tobytes())
        except OSError as e:
            raise ArtifactIOError(detail=f"Cannot write overlay {output_path}: {e}") from e

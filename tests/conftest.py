"""
Pytest configuration and fixtures.
"""

import json
import os
import string
import sys
from pathlib import Path
from typing import Callable, Optional

import cv2
import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from certgen.config import CertificateLayout
from certgen.services.certificate_pipeline import CertificateGenerator
from certgen.services.image_compositor import ImageCompositor
from certgen.services.placement_planner import PlacementPlanner
from certgen.services.process_runner import ProcessResult, ProcessRunner
from certgen.services.rendering_service import RenderingService
from certgen.services.workspace_service import WorkspaceManager

FAKE_VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42fake-certificate-video"


class FakeProcessRunner(ProcessRunner):
    """
    Stands in for FFmpeg/FFprobe.

    Records every command. For render commands it writes a small file at the
    output path (last argument) unless told to fail.
    """

    def __init__(
        self,
        returncode: int = 0,
        stderr: bytes = b"",
        timed_out: bool = False,
        write_output: bool = True,
        probe_result: Optional[dict] = None,
        version_output: bytes = b"ffmpeg version 6.1 --enable-libfreetype",
        on_render: Optional[Callable[[list[str]], None]] = None,
    ):
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        self.write_output = write_output
        self.probe_result = probe_result or {
            "streams": [{"width": 1240, "height": 1748}],
            "format": {"duration": "4.000000"},
        }
        self.version_output = version_output
        self.on_render = on_render
        self.commands: list[list[str]] = []
        self.timeouts: list[Optional[float]] = []

    @property
    def render_commands(self) -> list[list[str]]:
        return [cmd for cmd in self.commands if "-filter_complex" in cmd]

    async def run(self, cmd: list[str], timeout: Optional[float] = None) -> ProcessResult:
        self.commands.append(list(cmd))
        self.timeouts.append(timeout)

        if cmd[1:] == ["-version"]:
            return ProcessResult(returncode=0, stdout=self.version_output)

        if "-show_entries" in cmd:
            return ProcessResult(returncode=0, stdout=json.dumps(self.probe_result).encode())

        if self.on_render:
            self.on_render(cmd)
        if self.timed_out:
            return ProcessResult(returncode=-1, stderr=self.stderr, timed_out=True)
        if self.returncode == 0 and self.write_output:
            Path(cmd[-1]).write_bytes(FAKE_VIDEO_BYTES)
        return ProcessResult(returncode=self.returncode, stderr=self.stderr)


# ============================================================
# FFmpeg filter graph reader (mirrors libavutil av_get_token)
# ============================================================

WHITESPACES = " \n\t\r"
KEY_CHARS = set(string.ascii_letters + string.digits + "-_/.")


def av_get_token(buf: str, term: str) -> tuple[str, str]:
    """Read one token the way FFmpeg does; returns (token, remaining)."""
    out: list[str] = []
    end = 0
    i, n = 0, len(buf)
    while i < n and buf[i] in WHITESPACES:
        i += 1
    while i < n and buf[i] not in term:
        c = buf[i]
        i += 1
        if c == "\\" and i < n:
            out.append(buf[i])
            i += 1
            end = len(out)
        elif c == "'":
            while i < n and buf[i] != "'":
                out.append(buf[i])
                i += 1
            if i < n:
                i += 1
                end = len(out)
        else:
            out.append(c)
    while len(out) > end and out[-1] in WHITESPACES:
        out.pop()
    return "".join(out), buf[i:]


def parse_filter_options(args: str) -> tuple[list[str], dict[str, str]]:
    """Split a filter's argument string into positional and named values."""
    positional: list[str] = []
    named: dict[str, str] = {}
    while args:
        j = 0
        while j < len(args) and args[j] in KEY_CHARS:
            j += 1
        if j and j < len(args) and args[j] == "=":
            key = args[:j]
            named[key], args = av_get_token(args[j + 1:], ":")
        else:
            value, args = av_get_token(args, ":")
            positional.append(value)
        if args.startswith(":"):
            args = args[1:]
    return positional, named


def _read_labels(rest: str) -> tuple[list[str], str]:
    labels = []
    rest = rest.lstrip(WHITESPACES)
    while rest.startswith("["):
        close = rest.index("]")
        labels.append(rest[1:close])
        rest = rest[close + 1:].lstrip(WHITESPACES)
    return labels, rest


def parse_filter_graph(graph: str) -> list[dict]:
    """Parse a -filter_complex string into a flat list of filters."""
    filters = []
    rest = graph
    while rest:
        inputs, rest = _read_labels(rest)
        name, rest = av_get_token(rest, "=,;[")
        args = ""
        if rest.startswith("="):
            args, rest = av_get_token(rest[1:], "[],;")
        positional, named = parse_filter_options(args)
        outputs, rest = _read_labels(rest)
        filters.append(
            {
                "name": name,
                "args": positional,
                "options": named,
                "inputs": inputs,
                "outputs": outputs,
            }
        )
        if rest[:1] in (",", ";"):
            rest = rest[1:]
    return filters


@pytest.fixture(scope="session")
def read_filter_graph():
    """Parser that reads a filter graph back the way FFmpeg would."""
    return parse_filter_graph


# ============================================================
# Media fixtures
# ============================================================


def encode_image(image: np.ndarray, extension: str = ".jpg") -> bytes:
    ok, encoded = cv2.imencode(extension, image)
    assert ok
    return encoded.tobytes()


@pytest.fixture(scope="session")
def square_jpeg() -> bytes:
    """A 400x400 solid red JPEG."""
    image = np.zeros((400, 400, 3), dtype=np.uint8)
    image[:, :] = (0, 0, 255)
    return encode_image(image, ".jpg")


@pytest.fixture(scope="session")
def striped_png() -> bytes:
    """A 900x300 PNG: blue | red | green thirds."""
    image = np.zeros((300, 900, 3), dtype=np.uint8)
    image[:, :300] = (255, 0, 0)
    image[:, 300:600] = (0, 0, 255)
    image[:, 600:] = (0, 255, 0)
    return encode_image(image, ".png")


@pytest.fixture
def media_dir(tmp_path) -> Path:
    """Bundled assets stand-ins: template video and font file."""
    media = tmp_path / "media"
    media.mkdir()
    (media / "certificate_vid_mu.mp4").write_bytes(b"template")
    (media / "Montserrat-Bold.ttf").write_bytes(b"font")
    return media


@pytest.fixture
def work_root(tmp_path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def fake_runner() -> FakeProcessRunner:
    return FakeProcessRunner()


@pytest.fixture
def make_generator(media_dir, work_root):
    """Factory for a CertificateGenerator wired to temp dirs and a fake runner."""

    def _make(runner: Optional[ProcessRunner] = None, **kwargs) -> CertificateGenerator:
        layout = CertificateLayout()
        renderer = RenderingService(runner=runner or FakeProcessRunner(), timeout_seconds=5)
        return CertificateGenerator(
            template_path=kwargs.pop("template_path", media_dir / "certificate_vid_mu.mp4"),
            font_path=kwargs.pop("font_path", media_dir / "Montserrat-Bold.ttf"),
            workspace_manager=WorkspaceManager(work_root),
            compositor=ImageCompositor.from_layout(layout),
            planner=PlacementPlanner(layout),
            renderer=renderer,
            **kwargs,
        )

    return _make


def workspace_entries(work_root: Path) -> list[Path]:
    """Workspaces currently on disk."""
    if not work_root.exists():
        return []
    return list(work_root.iterdir())

"""
Tests for the request orchestrator.
"""

import asyncio
from pathlib import Path

import pytest

from certgen.config import Settings
from certgen.services.certificate_pipeline import (
    CertificateGenerator,
    GenerationRequest,
    RequestState,
    safe_extension,
)
from certgen.services.errors import (
    ArtifactIOError,
    ImageDecodeError,
    InputValidationError,
    RenderError,
    ServerBusyError,
    ServerConfigurationError,
)

from conftest import FAKE_VIDEO_BYTES, FakeProcessRunner, workspace_entries


def run(generator, **request_kwargs):
    request_kwargs.setdefault("photo_extension", ".jpg")
    return asyncio.run(generator.generate(GenerationRequest(**request_kwargs)))


class TestSafeExtension:
    """Tests for upload extension handling."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            (".JPG", ".jpg"),
            ("png", ".png"),
            (".webp", ".webp"),
            ("", ""),
            ("../../etc", ""),
            (".a/b", ""),
            (".averyveryverylongext", ""),
        ],
    )
    def test_safe_extension(self, raw, expected):
        assert safe_extension(raw) == expected


class TestCertificateGenerator:
    """Tests for CertificateGenerator."""

    def test_success(self, make_generator, square_jpeg, work_root):
        runner = FakeProcessRunner()
        generator = make_generator(runner)

        certificate = run(generator, raw_name="jane doe", photo_bytes=square_jpeg)

        assert certificate.filename == "My_Certificate.mp4"
        assert certificate.output_path.read_bytes() == FAKE_VIDEO_BYTES
        assert certificate.state == RequestState.STREAMING
        assert certificate.workspace_path.parent == work_root
        assert certificate.workspace_path.name == certificate.request_id

        # Name reached the filter graph sanitized
        graph = runner.render_commands[0][runner.render_commands[0].index("-filter_complex") + 1]
        assert "text='JANE DOE'" in graph

        certificate.release()
        assert certificate.released
        assert certificate.state == RequestState.DONE
        assert not certificate.workspace_path.exists()
        assert workspace_entries(work_root) == []

    def test_release_is_idempotent(self, make_generator, square_jpeg, work_root):
        certificate = run(make_generator(), raw_name="jane", photo_bytes=square_jpeg)

        certificate.release()
        certificate.release()

        assert workspace_entries(work_root) == []

    def test_workspace_contents_during_render(self, make_generator, square_jpeg):
        seen = {}

        def inspect(cmd):
            # Second -i is the overlay, which lives in the workspace
            overlay = Path(cmd[cmd.index("-i", cmd.index("-i") + 1) + 1])
            seen["files"] = sorted(p.name for p in overlay.parent.iterdir())

        generator = make_generator(FakeProcessRunner(on_render=inspect))
        certificate = run(generator, raw_name="jane", photo_bytes=square_jpeg, photo_extension=".JPG")
        certificate.release()

        assert seen["files"] == ["Montserrat-Bold.ttf", "overlay_600.png", "upload.jpg"]

    def test_render_uses_copied_font(self, make_generator, square_jpeg, read_filter_graph):
        runner = FakeProcessRunner()
        certificate = run(make_generator(runner), raw_name="jane", photo_bytes=square_jpeg)

        cmd = runner.render_commands[0]
        filters = read_filter_graph(cmd[cmd.index("-filter_complex") + 1])
        drawtext = next(f for f in filters if f["name"] == "drawtext")
        assert drawtext["options"]["fontfile"] == str(certificate.workspace_path / "Montserrat-Bold.ttf")
        certificate.release()

    def test_missing_photo(self, make_generator, work_root):
        with pytest.raises(InputValidationError, match="Photo is required"):
            run(make_generator(), raw_name="jane", photo_bytes=None)
        assert workspace_entries(work_root) == []

    def test_empty_photo(self, make_generator, work_root):
        with pytest.raises(InputValidationError, match="Photo is required"):
            run(make_generator(), raw_name="jane", photo_bytes=b"")
        assert workspace_entries(work_root) == []

    @pytest.mark.parametrize("name", ["", "   ", ":", '"', ': "'])
    def test_missing_name(self, make_generator, square_jpeg, work_root, name):
        with pytest.raises(InputValidationError, match="Name is required") as exc_info:
            run(make_generator(), raw_name=name, photo_bytes=square_jpeg)
        assert exc_info.value.status_code == 400
        assert workspace_entries(work_root) == []

    def test_missing_template(self, make_generator, square_jpeg, media_dir, work_root):
        (media_dir / "certificate_vid_mu.mp4").unlink()
        runner = FakeProcessRunner()

        with pytest.raises(ServerConfigurationError, match="Template video missing") as exc_info:
            run(make_generator(runner), raw_name="jane", photo_bytes=square_jpeg)

        assert exc_info.value.status_code == 500
        assert runner.commands == []
        assert workspace_entries(work_root) == []

    def test_missing_font(self, make_generator, square_jpeg, media_dir, work_root):
        (media_dir / "Montserrat-Bold.ttf").unlink()

        with pytest.raises(ServerConfigurationError, match="Font file missing"):
            run(make_generator(), raw_name="jane", photo_bytes=square_jpeg)
        assert workspace_entries(work_root) == []

    def test_photo_checked_before_assets(self, make_generator, media_dir, work_root):
        (media_dir / "certificate_vid_mu.mp4").unlink()

        with pytest.raises(InputValidationError):
            run(make_generator(), raw_name="jane", photo_bytes=None)

    def test_undecodable_photo(self, make_generator, work_root):
        runner = FakeProcessRunner()

        with pytest.raises(ImageDecodeError) as exc_info:
            run(make_generator(runner), raw_name="jane", photo_bytes=b"plain text, not a photo")

        assert exc_info.value.status_code == 400
        assert runner.commands == []
        assert workspace_entries(work_root) == []

    def test_render_failure(self, make_generator, square_jpeg, work_root):
        runner = FakeProcessRunner(returncode=1, stderr=b"Unknown encoder 'libx264'")

        with pytest.raises(RenderError) as exc_info:
            run(make_generator(runner), raw_name="jane", photo_bytes=square_jpeg)

        assert "libx264" in exc_info.value.detail
        assert workspace_entries(work_root) == []

    def test_render_timeout(self, make_generator, square_jpeg, work_root):
        with pytest.raises(RenderError, match="timed out"):
            run(make_generator(FakeProcessRunner(timed_out=True)), raw_name="jane", photo_bytes=square_jpeg)
        assert workspace_entries(work_root) == []

    def test_two_runs_do_not_collide(self, make_generator, square_jpeg, work_root):
        generator = make_generator()

        first = run(generator, raw_name="jane doe", photo_bytes=square_jpeg)
        second = run(generator, raw_name="jane doe", photo_bytes=square_jpeg)

        assert first.request_id != second.request_id
        assert first.workspace_path != second.workspace_path
        assert first.output_path.is_file() and second.output_path.is_file()
        assert len(workspace_entries(work_root)) == 2

        first.release()
        assert second.output_path.is_file()
        second.release()
        assert workspace_entries(work_root) == []

    def test_concurrent_requests(self, make_generator, square_jpeg, work_root):
        generator = make_generator(max_concurrent_renders=2)

        async def many():
            requests = [
                generator.generate(GenerationRequest(raw_name=f"user {i}", photo_bytes=square_jpeg))
                for i in range(4)
            ]
            return await asyncio.gather(*requests)

        certificates = asyncio.run(many())

        assert len({c.workspace_path for c in certificates}) == 4
        for certificate in certificates:
            certificate.release()
        assert workspace_entries(work_root) == []

    def test_busy_when_no_slot_frees_up(self, make_generator, square_jpeg, work_root):
        generator = make_generator(max_concurrent_renders=1, queue_timeout_seconds=0.05)

        async def saturated():
            await generator._semaphore.acquire()
            try:
                return await generator.generate(
                    GenerationRequest(raw_name="jane", photo_bytes=square_jpeg)
                )
            finally:
                generator._semaphore.release()

        with pytest.raises(ServerBusyError) as exc_info:
            asyncio.run(saturated())

        assert exc_info.value.status_code == 503
        assert workspace_entries(work_root) == []

    def test_slot_acquired_as_timeout_fires_is_returned(self, make_generator, square_jpeg, mocker):
        generator = make_generator(max_concurrent_renders=1)

        async def acquire_then_report_timeout(tasks, timeout=None):
            # The free permit is taken during this yield, yet a timeout is reported
            await asyncio.sleep(0)
            return set(), set(tasks)

        mocker.patch(
            "certgen.services.certificate_pipeline.asyncio.wait",
            side_effect=acquire_then_report_timeout,
        )

        async def scenario():
            with pytest.raises(ServerBusyError):
                await generator.generate(GenerationRequest(raw_name="jane", photo_bytes=square_jpeg))
            await asyncio.sleep(0)
            return generator._semaphore.locked()

        assert asyncio.run(scenario()) is False

    def test_slot_freed_after_busy_failure(self, make_generator, square_jpeg, work_root):
        generator = make_generator(max_concurrent_renders=1, queue_timeout_seconds=0.05)

        async def scenario():
            await generator._semaphore.acquire()
            with pytest.raises(ServerBusyError):
                await generator.generate(GenerationRequest(raw_name="jane", photo_bytes=square_jpeg))
            generator._semaphore.release()
            return await generator.generate(GenerationRequest(raw_name="jane", photo_bytes=square_jpeg))

        certificate = asyncio.run(scenario())
        certificate.release()
        assert not generator._semaphore.locked()
        assert workspace_entries(work_root) == []

    def test_workspace_acquired_through_scope(self, make_generator, square_jpeg, mocker):
        generator = make_generator()
        scope = mocker.spy(generator.workspace_manager, "workspace")

        certificate = run(generator, raw_name="jane", photo_bytes=square_jpeg)

        scope.assert_called_once_with(certificate.request_id)
        assert certificate.workspace_path.is_dir()
        certificate.release()
        assert not certificate.workspace_path.exists()

    def test_cleanup_failure_keeps_render_error(self, make_generator, square_jpeg, mocker):
        generator = make_generator(FakeProcessRunner(returncode=1, stderr=b"boom"))
        mocker.patch.object(
            generator.workspace_manager,
            "destroy_workspace",
            side_effect=ArtifactIOError(detail="rmtree failed"),
        )

        with pytest.raises(RenderError):
            run(generator, raw_name="jane", photo_bytes=square_jpeg)

    def test_from_settings(self, media_dir, tmp_path):
        settings = Settings(
            template_video_path=str(media_dir / "certificate_vid_mu.mp4"),
            font_file_path=str(media_dir / "Montserrat-Bold.ttf"),
            runtime_tmp=str(tmp_path / "rt"),
            max_render_workers=5,
        )
        generator = CertificateGenerator.from_settings(settings)

        assert generator.workspace_manager.work_root == tmp_path / "rt" / "work"
        assert generator.max_concurrent_renders == 5
        assert generator.output_filename == "My_Certificate.mp4"
        assert generator.compositor.size == 600

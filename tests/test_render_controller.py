"""
Tests for the render controller: durations, progress, lifecycle and cleanup
"""

import math
import threading
import time
from datetime import datetime

import pytest

import compositor
from avatar_sprite import Avatar
from conftest import FakeEncoderBackend, fake_audio, fake_video
from errors import EncoderError, LoadError, RunCancelled
from render_controller import (
    PlanKind, RenderController, RenderPlan, RenderSession, RunStatus, compute_total_duration,
)
from source_track import MediaResource
from thumbnail_preroll import ThumbnailPreroll
from timing import WallClock


def controller_for(config, plan, decoder, mixer, backend=None, **kwargs):
    return RenderController(
        config, plan,
        encoder_backend=backend or FakeEncoderBackend(),
        decoder=decoder, mixer=mixer, **kwargs,
    )


class TestTotalDuration:

    def test_longest_source_wins(self):
        assert compute_total_duration(0.0, [12.0]) == 12.0
        assert compute_total_duration(0.0, [3.0, 12.0, 7.5]) == 12.0

    def test_preroll_hold_is_added(self):
        assert compute_total_duration(1.0, [12.0]) == 13.0

    def test_text_only(self):
        assert compute_total_duration(0.5, [], text_duration=4.0) == 4.5

    def test_nothing_to_record(self):
        with pytest.raises(ValueError):
            compute_total_duration(0.0, [])


class TestRenderPlan:

    def test_kind_follows_attached_components(self):
        plan = RenderPlan.for_text("x = 1", "demo.py", "python")
        assert plan.kind == PlanKind.VIDEO
        plan.with_narration(fake_audio(2.0))
        assert plan.kind == PlanKind.FULLCLIP
        plan.with_avatar(Avatar())
        assert plan.kind == PlanKind.SHORTS

    def test_output_filename(self):
        plan = RenderPlan.for_text("x = 1", "my script.py")
        name = plan.output_filename(datetime(2024, 3, 5, 14, 7, 9))
        assert name == "code-stream-my-script-20240305-140709.mp4"

    def test_needs_text_or_video(self):
        with pytest.raises(ValueError):
            RenderPlan.for_text("   ").validate()
        RenderPlan().with_video(fake_video(1.0)).validate()

    def test_video_fit_is_validated(self):
        with pytest.raises(ValueError):
            RenderPlan().with_video(fake_video(1.0), fit="stretch")


class TestRunStatus:

    def test_forward_transitions_only(self):
        session = RenderSession()
        session.transition(RunStatus.PREPARING)
        with pytest.raises(RuntimeError):
            session.transition(RunStatus.IDLE)
        with pytest.raises(RuntimeError):
            session.transition(RunStatus.FINALIZING)

    def test_failed_is_terminal(self):
        session = RenderSession()
        session.transition(RunStatus.PREPARING)
        session.transition(RunStatus.FAILED)
        with pytest.raises(RuntimeError):
            session.transition(RunStatus.RECORDING)
        with pytest.raises(RuntimeError):
            session.transition(RunStatus.FAILED)


class TestSuccessfulRun:

    @pytest.mark.asyncio
    async def test_text_stream_run(self, config, decoder, mixer, sample_code):
        progress = []
        backend = FakeEncoderBackend()
        controller = controller_for(
            config, RenderPlan.for_text(sample_code, "hello.py", "python"),
            decoder, mixer, backend,
            progress_callback=lambda pct, msg: progress.append(pct),
        )
        artifact = await controller.run()

        assert artifact.mime_type == "video/mp4"
        assert artifact.size_bytes > 0
        assert artifact.duration_seconds == pytest.approx(len(sample_code) / config.chars_per_second)
        assert controller.session.history == [
            RunStatus.IDLE, RunStatus.PREPARING, RunStatus.RECORDING,
            RunStatus.FINALIZING, RunStatus.COMPLETED,
        ]
        assert progress == sorted(progress)
        assert progress[-1] == 100
        assert backend.start_calls == 1
        assert backend.frame_bytes == config.width * config.height * 3

    @pytest.mark.asyncio
    async def test_narration_sets_duration_and_audio_offset(self, config, decoder, mixer, sample_code):
        plan = (
            RenderPlan.for_text(sample_code)
            .with_narration(fake_audio(1.2))
            .with_preroll(ThumbnailPreroll(title="Intro", hold_seconds=0.5))
        )
        controller = controller_for(config, plan, decoder, mixer)
        artifact = await controller.run()

        assert artifact.duration_seconds == pytest.approx(1.7)
        tracks, offset, total = mixer.calls[0]
        assert len(tracks) == 1
        assert offset == 0.5
        assert total == pytest.approx(1.7)

    @pytest.mark.asyncio
    async def test_video_starts_when_preroll_ends(self, config, decoder, mixer):
        plan = (
            RenderPlan()
            .with_video(fake_video(1.0))
            .with_preroll(ThumbnailPreroll(title="Intro", hold_seconds=0.5))
        )
        controller = controller_for(config, plan, decoder, mixer)
        await controller.run()

        sampled = decoder.opened[0].frame_times
        assert sampled[0] == pytest.approx(0.0)
        assert sampled == sorted(sampled)
        assert max(sampled) < 1.0

    @pytest.mark.asyncio
    async def test_auto_captions_span_narration(self, config, decoder, mixer, sample_code):
        script = "one two three four five six seven eight"
        plan = (
            RenderPlan.for_text(sample_code)
            .with_narration(fake_audio(2.0), script=script)
            .with_auto_captions("words")
        )
        controller = controller_for(config, plan, decoder, mixer)
        await controller.run()

        assert [c.text for c in plan.captions] == ["one two three four", "five six seven eight"]
        assert plan.captions[-1].end == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_resources_released(self, config, decoder, mixer, sample_code):
        avatar = Avatar(source=b"not an image")
        plan = RenderPlan.for_text(sample_code).with_narration(fake_audio(0.5)).with_avatar(avatar)
        controller = controller_for(config, plan, decoder, mixer)
        await controller.run()

        assert decoder.opened[0].closed
        assert mixer.released
        assert avatar.image is None
        assert not list(config.temp_dir.glob("track_*"))


class TestFailedRun:

    @pytest.mark.asyncio
    async def test_load_error_never_starts_encoder(self, config, decoder, mixer, sample_code):
        backend = FakeEncoderBackend()
        plan = RenderPlan.for_text(sample_code).with_narration(MediaResource(b"garbage", "audio/mpeg"))
        controller = controller_for(config, plan, decoder, mixer, backend)

        with pytest.raises(LoadError):
            await controller.run()
        assert backend.start_calls == 0
        assert controller.session.status == RunStatus.FAILED
        assert controller.session.error.startswith("Failed at step 1/")

    @pytest.mark.asyncio
    async def test_wrong_media_type_is_a_load_error(self, config, decoder, mixer):
        plan = RenderPlan().with_video(MediaResource(b"duration=1", "audio/mpeg"))
        controller = controller_for(config, plan, decoder, mixer)
        with pytest.raises(LoadError):
            await controller.run()
        assert controller.session.status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel_mid_recording(self, config, decoder, mixer, sample_code):
        cancel = threading.Event()
        backend = FakeEncoderBackend()

        def on_progress(percent, message):
            if percent >= 20:
                cancel.set()

        controller = controller_for(
            config, RenderPlan.for_text(sample_code), decoder, mixer, backend,
            progress_callback=on_progress, cancel_event=cancel,
        )
        with pytest.raises(RunCancelled):
            await controller.run()
        assert controller.session.status == RunStatus.FAILED
        assert backend.start_calls == 1
        assert backend.aborted
        assert controller.capture.chunks == []

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, config, decoder, mixer, sample_code):
        cancel = threading.Event()
        cancel.set()
        backend = FakeEncoderBackend()
        controller = controller_for(
            config, RenderPlan.for_text(sample_code), decoder, mixer, backend, cancel_event=cancel,
        )
        with pytest.raises(RunCancelled):
            await controller.run()
        assert backend.start_calls == 0

    @pytest.mark.asyncio
    async def test_encoder_error_fails_run(self, config, decoder, mixer, sample_code):
        backend = FakeEncoderBackend(fail_after=3)
        controller = controller_for(config, RenderPlan.for_text(sample_code), decoder, mixer, backend)

        with pytest.raises(EncoderError):
            await controller.run()
        session = controller.session
        assert session.history[-1] == RunStatus.FAILED
        assert RunStatus.FINALIZING not in session.history
        assert "encoder crashed" in session.error
        assert mixer.released


class TestFrameCount:

    @pytest.mark.asyncio
    async def test_one_frame_per_virtual_tick(self, config, decoder, mixer, sample_code):
        backend = FakeEncoderBackend()
        plan = (
            RenderPlan.for_text(sample_code)
            .with_narration(fake_audio(1.2))
            .with_preroll(ThumbnailPreroll(title="Intro", hold_seconds=0.5))
        )
        controller = controller_for(config, plan, decoder, mixer, backend)
        await controller.run()
        assert backend.frames == 17

    @pytest.mark.asyncio
    async def test_slow_ticks_repeat_frames_under_wall_clock(
        self, config, decoder, mixer, sample_code, monkeypatch
    ):
        painted = []
        original_paint = compositor.FrameCompositor.paint

        def slow_paint(self, frame_time):
            painted.append(frame_time.elapsed_ms)
            time.sleep(0.25)
            return original_paint(self, frame_time)

        monkeypatch.setattr(compositor.FrameCompositor, "paint", slow_paint)
        backend = FakeEncoderBackend()
        plan = RenderPlan.for_text(sample_code).with_narration(fake_audio(1.0))
        controller = controller_for(
            config, plan, decoder, mixer, backend, clock=WallClock(config.fps),
        )
        artifact = await controller.run()

        # Video length matches the run length even though far fewer frames were painted
        assert backend.frames == math.ceil(artifact.duration_seconds * config.fps)
        assert len(painted) < backend.frames


class TestProgress:

    @pytest.mark.asyncio
    async def test_full_progress_only_once_artifact_exists(self, config, decoder, mixer, sample_code):
        progress = []
        controller = controller_for(
            config, RenderPlan.for_text(sample_code), decoder, mixer,
            progress_callback=lambda pct, msg: progress.append((pct, msg)),
        )
        await controller.run()

        assert [msg for pct, msg in progress if pct == 100] == ["Complete!"]
        assert max(pct for pct, msg in progress[:-1]) == 99

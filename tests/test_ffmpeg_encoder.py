"""
End-to-end render through the real ffmpeg encoder and moviepy decoding
"""

import os
import shutil
import subprocess

import numpy as np
import pytest
from moviepy import AudioClip
from moviepy.config import FFMPEG_BINARY

from audio_mixer import AudioMixer
from capture_session import CODEC_PREFERENCES, CaptureState, FfmpegEncoderBackend
from render_controller import RenderController, RenderPlan
from source_track import MediaResource

HAS_FFMPEG = bool(FFMPEG_BINARY) and (shutil.which(FFMPEG_BINARY) is not None or os.path.isfile(FFMPEG_BINARY))

pytestmark = pytest.mark.skipif(not HAS_FFMPEG, reason="ffmpeg binary not available")


@pytest.fixture
def narration(tmp_path):
    path = tmp_path / "tone.wav"
    clip = AudioClip(
        lambda t: np.array([np.sin(440 * 2 * np.pi * t), np.sin(440 * 2 * np.pi * t)]).T,
        duration=1.0, fps=44100,
    )
    clip.write_audiofile(str(path), fps=44100, logger=None)
    return MediaResource.from_file(path, "audio/wav")


def streams(path):
    result = subprocess.run(
        [FFMPEG_BINARY, "-hide_banner", "-i", str(path)],
        capture_output=True, text=True, timeout=60,
    )
    return result.stderr


class TestFfmpegEncoder:

    def test_h264_aac_is_supported(self):
        assert FfmpegEncoderBackend().is_supported(CODEC_PREFERENCES[0])

    @pytest.mark.asyncio
    async def test_render_has_video_and_audio(self, config, narration, sample_code, tmp_path):
        backend = FfmpegEncoderBackend()
        plan = RenderPlan.for_text(sample_code, "hello.py", "python").with_narration(narration)
        controller = RenderController(
            config, plan, encoder_backend=backend, mixer=AudioMixer(config.temp_dir),
        )
        artifact = await controller.run()

        assert artifact.negotiated_mime_type.startswith("video/mp4")
        assert artifact.duration_seconds == pytest.approx(1.0, abs=0.05)
        assert controller.capture.state == CaptureState.FINALIZED
        assert backend._threads == []

        path = artifact.save_to(tmp_path / "out.mp4")
        info = streams(path)
        assert "Video:" in info
        assert "Audio:" in info

    @pytest.mark.asyncio
    async def test_abort_stops_process(self, config, sample_code):
        backend = FfmpegEncoderBackend()
        controller = RenderController(
            config, RenderPlan.for_text(sample_code), encoder_backend=backend,
            mixer=AudioMixer(config.temp_dir),
        )
        controller.capture.negotiate()
        await controller.capture.start(now=0.0)
        controller.capture.abort()

        assert backend.process.poll() is not None
        assert backend._threads == []

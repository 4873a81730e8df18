"""
Pytest configuration and shared fixtures for the codestream tests
"""

import os
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from capture_session import EncoderEvent, EventKind
from config import RenderConfig
from source_track import MediaResource


# ============================================
# Fake media decoding
# ============================================

class FakeMedia:
    """Stands in for a moviepy clip: duration, solid-colour frames, close()"""

    def __init__(self, duration, size=(64, 36), color=(200, 30, 30)):
        self.duration = duration
        self.size = size
        self.color = color
        self.audio = None
        self.closed = False
        self.frame_times = []

    def get_frame(self, t):
        self.frame_times.append(t)
        w, h = self.size
        frame = np.zeros((h, w, 3), dtype=np.uint8)
        frame[:, :] = self.color
        return frame

    def close(self):
        self.closed = True


class FakeDecoder:
    """
    Decoder reading "duration=<seconds>" from the resource bytes.

    Any other payload fails to decode, like a corrupt file would.
    """

    def __init__(self):
        self.opened = []

    def __call__(self, kind, path, with_audio):
        payload = Path(path).read_text(errors="replace")
        if not payload.startswith("duration="):
            raise ValueError("unrecognised media payload")
        media = FakeMedia(float(payload.split("=", 1)[1]))
        self.opened.append(media)
        return media


def fake_audio(duration, name="narration.mp3"):
    return MediaResource(f"duration={duration}".encode(), "audio/mpeg", name)


def fake_video(duration, name="clip.mp4"):
    return MediaResource(f"duration={duration}".encode(), "video/mp4", name)


# ============================================
# Fake encoder backend
# ============================================

class FakeEncoderBackend:
    """
    In-memory encoder: every frame written produces one DATA event of
    bytes_per_frame bytes; stopping emits the flush payload then STOP.
    """

    def __init__(self, supported=None, bytes_per_frame=10, fail_after=None, flush=b"END", stop_error=None):
        self.supported = supported
        self.bytes_per_frame = bytes_per_frame
        self.fail_after = fail_after
        self.flush = flush
        self.start_calls = 0
        self.frames = 0
        self.frame_bytes = None
        self.profile = None
        self.audio_path = None
        self.events = None
        self.stop_requested = False
        self.aborted = False
        self.checked = []
        self.stop_error = stop_error
        self.joined = 0

    def is_supported(self, profile):
        self.checked.append(profile)
        return True if self.supported is None else self.supported(profile)

    async def start(self, profile, size, fps, audio_path, events):
        self.start_calls += 1
        self.profile = profile
        self.size = size
        self.audio_path = audio_path
        self.events = events

    def write_frame(self, data):
        self.frames += 1
        self.frame_bytes = len(data)
        if self.fail_after is not None and self.frames > self.fail_after:
            self.events.put_nowait(EncoderEvent(EventKind.ERROR, message="encoder crashed"))
            return
        self.events.put_nowait(EncoderEvent(EventKind.DATA, b"x" * self.bytes_per_frame))

    def request_stop(self):
        self.stop_requested = True
        if self.stop_error is not None:
            raise self.stop_error
        if self.flush:
            self.events.put_nowait(EncoderEvent(EventKind.DATA, self.flush))
        self.events.put_nowait(EncoderEvent(EventKind.STOP))

    def join(self, timeout=None):
        self.joined += 1

    def abort(self):
        self.aborted = True


class FakeMixer:
    """Records what would be mixed without touching moviepy"""

    def __init__(self):
        self.calls = []
        self.released = False

    def mixdown(self, tracks, offset, total_duration, message_cb=None):
        self.calls.append((list(tracks), offset, total_duration))
        return None

    def release(self):
        self.released = True


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def config(tmp_path):
    """Small frame, low fps configuration so runs stay fast"""
    return RenderConfig(
        width=180,
        height=320,
        fps=10,
        temp_dir=tmp_path / "temp",
        output_dir=tmp_path / "output",
        db_path=tmp_path / "codestream.db",
    )


@pytest.fixture
def decoder():
    return FakeDecoder()


@pytest.fixture
def backend():
    return FakeEncoderBackend()


@pytest.fixture
def mixer():
    return FakeMixer()


@pytest.fixture
def sample_code():
    return (
        "def greet(name):\n"
        "    # say hello\n"
        "    return f\"Hello {name}\"\n"
        "\n"
        "print(greet(\"world\"))\n"
    )

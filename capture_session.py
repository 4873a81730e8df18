"""
Capture session - codec negotiation, encoder lifecycle, chunk buffering and
final artifact assembly.

Frames painted by the compositor are piped as raw RGB into an ffmpeg
process together with the mixed audio. ffmpeg muxes a streamable container
to stdout; a reader thread hands those bytes to the event loop as
EncoderEvent messages, which the session groups into one chunk per slice
interval of capture time.
"""

import asyncio
import re
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from moviepy.config import FFMPEG_BINARY
from PIL import Image

from config import SLICE_INTERVAL, VIDEO_BITRATE, AUDIO_BITRATE, ENCODER_PRESET
from errors import AssemblyError, CodecNegotiationExhausted, EncoderError

READ_SIZE = 64 * 1024
JOIN_TIMEOUT = 5.0


@dataclass(frozen=True)
class CodecProfile:
    container: str
    video_codec: Optional[str]
    audio_codec: Optional[str]
    mime_type: str

    @property
    def label(self) -> str:
        return f"{self.container}/{self.video_codec or 'default'}/{self.audio_codec or 'default'}"


# Most compatible first
CODEC_PREFERENCES: Tuple[CodecProfile, ...] = (
    CodecProfile("mp4", "libx264", "aac", "video/mp4;codecs=avc1.42E01E,mp4a.40.2"),
    CodecProfile("mp4", "libx264", None, "video/mp4;codecs=avc1.42E01E"),
    CodecProfile("webm", "libvpx-vp9", "libopus", "video/webm;codecs=vp9,opus"),
    CodecProfile("webm", "libvpx", "libopus", "video/webm;codecs=vp8,opus"),
)
GENERIC_PROFILE = CodecProfile("webm", None, None, "video/webm")
CANONICAL_MIME_TYPE = "video/mp4"


def negotiate_codec(
    is_supported: Callable[[CodecProfile], bool],
    preferences: Sequence[CodecProfile] = CODEC_PREFERENCES,
) -> CodecProfile:
    """First profile the backend supports; raises CodecNegotiationExhausted if none is"""
    for profile in preferences:
        if is_supported(profile):
            return profile
    raise CodecNegotiationExhausted(
        f"None of {len(preferences)} preferred codec profiles is supported"
    )


class EventKind(str, Enum):
    DATA = "data"
    STOP = "stop"
    ERROR = "error"


@dataclass
class EncoderEvent:
    kind: EventKind
    data: bytes = b""
    message: str = ""


@dataclass
class OutputArtifact:
    """The finished video handed back to the caller"""
    data: bytes
    mime_type: str
    duration_seconds: float
    size_bytes: int
    # What the encoder actually produced; mime_type is always the canonical label
    negotiated_mime_type: str = ""

    def save_to(self, path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


@lru_cache(maxsize=None)
def _ffmpeg_listing(binary: str, flag: str) -> str:
    try:
        result = subprocess.run(
            [binary, "-hide_banner", flag],
            capture_output=True, text=True, timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        print(f"      [CaptureSession] Could not query ffmpeg {flag}: {e}")
        return ""
    return result.stdout


def _listed(listing: str, name: str) -> bool:
    return re.search(rf"^\s*\S+\s+{re.escape(name)}\s", listing, re.MULTILINE) is not None


class FfmpegEncoderBackend:
    """Encoder backend running one ffmpeg process per recording"""

    def __init__(
        self,
        ffmpeg_binary: str = FFMPEG_BINARY,
        video_bitrate: str = VIDEO_BITRATE,
        audio_bitrate: str = AUDIO_BITRATE,
        preset: str = ENCODER_PRESET,
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.video_bitrate = video_bitrate
        self.audio_bitrate = audio_bitrate
        self.preset = preset
        self.process: Optional[subprocess.Popen] = None
        self._stderr_tail: deque = deque(maxlen=20)
        self._threads: List[threading.Thread] = []

    def is_supported(self, profile: CodecProfile) -> bool:
        encoders = _ffmpeg_listing(self.ffmpeg_binary, "-encoders")
        muxers = _ffmpeg_listing(self.ffmpeg_binary, "-muxers")
        if not _listed(muxers, profile.container):
            return False
        for codec in (profile.video_codec, profile.audio_codec):
            if codec and not _listed(encoders, codec):
                return False
        return True

    def build_command(self, profile: CodecProfile, size, fps: int, audio_path=None) -> List[str]:
        width, height = size
        cmd = [
            self.ffmpeg_binary, "-y", "-hide_banner", "-loglevel", "error",
            "-f", "rawvideo", "-vcodec", "rawvideo",
            "-s", f"{width}x{height}", "-pix_fmt", "rgb24", "-r", str(fps),
            "-i", "-",
        ]
        if audio_path:
            cmd += ["-i", str(audio_path), "-map", "0:v", "-map", "1:a"]
        if profile.video_codec:
            cmd += ["-c:v", profile.video_codec]
        if profile.video_codec == "libx264":
            cmd += ["-preset", self.preset]
        cmd += ["-b:v", self.video_bitrate, "-pix_fmt", "yuv420p"]
        if audio_path:
            if profile.audio_codec:
                cmd += ["-c:a", profile.audio_codec]
            cmd += ["-b:a", self.audio_bitrate]
        if profile.container == "mp4":
            # Fragmented mp4 can be written to a pipe
            cmd += ["-movflags", "frag_keyframe+empty_moov+default_base_moof"]
        cmd += ["-f", profile.container, "pipe:1"]
        return cmd

    async def start(self, profile: CodecProfile, size, fps: int, audio_path, events: asyncio.Queue):
        loop = asyncio.get_running_loop()
        cmd = self.build_command(profile, size, fps, audio_path)
        print(f"      [CaptureSession] Starting ffmpeg ({profile.label})")
        self.process = subprocess.Popen(
            cmd, stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
        )

        def post(event: EncoderEvent):
            try:
                loop.call_soon_threadsafe(events.put_nowait, event)
            except RuntimeError as e:
                # Loop already closed; nobody is waiting for this event
                print(f"      [CaptureSession] Dropped {event.kind.value} event: {e}")

        def read_output():
            while True:
                data = self.process.stdout.read1(READ_SIZE)
                if not data:
                    break
                post(EncoderEvent(EventKind.DATA, data))
            returncode = self.process.wait()
            if returncode == 0:
                post(EncoderEvent(EventKind.STOP))
            else:
                tail = " | ".join(self._stderr_tail) or "no diagnostics"
                post(EncoderEvent(EventKind.ERROR, message=f"ffmpeg exited with code {returncode}: {tail}"))

        def drain_stderr():
            for line in iter(self.process.stderr.readline, b""):
                self._stderr_tail.append(line.decode("utf-8", errors="replace").strip())

        self._threads = [
            threading.Thread(target=read_output, daemon=True),
            threading.Thread(target=drain_stderr, daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def write_frame(self, data: bytes):
        self.process.stdin.write(data)

    def request_stop(self):
        """Close stdin; ffmpeg flushes, exits and the reader posts the stop event"""
        if self.process is not None and not self.process.stdin.closed:
            self.process.stdin.close()

    def join(self, timeout: float = JOIN_TIMEOUT):
        """Wait for the reader threads to finish after the process has exited"""
        for thread in self._threads:
            thread.join(timeout)
            if thread.is_alive():
                print(f"      [CaptureSession] Encoder thread still running after {timeout:.0f}s")
        self._threads = []

    def abort(self):
        if self.process is None:
            return
        if self.process.poll() is None:
            self.process.kill()
        try:
            self.process.stdin.close()
        except OSError as e:
            print(f"      [CaptureSession] Error closing encoder input: {e}")
        self.process.wait()
        self.join()


class CaptureState(str, Enum):
    IDLE = "idle"
    NEGOTIATED = "negotiated"
    RECORDING = "recording"
    STOPPING = "stopping"
    FINALIZED = "finalized"
    FAILED = "failed"


class CaptureSession:
    """
    One recording: Idle -> Negotiated -> Recording -> Stopping -> Finalized.

    Any encoder error moves the session to Failed and discards every chunk
    buffered so far; no truncated output is ever assembled.
    """

    def __init__(
        self,
        backend,
        size,
        fps: int,
        slice_interval: float = SLICE_INTERVAL,
        preferences: Sequence[CodecProfile] = CODEC_PREFERENCES,
    ):
        self.backend = backend
        self.size = size
        self.fps = fps
        self.slice_interval = slice_interval
        self.preferences = preferences

        self.state = CaptureState.IDLE
        self.profile: Optional[CodecProfile] = None
        self.chunks: List[bytes] = []
        self._pending = bytearray()
        self._events: Optional[asyncio.Queue] = None
        self._slice_started = 0.0
        self._flushed = False
        self._started = False

    @property
    def negotiated_codec(self) -> Optional[CodecProfile]:
        return self.profile

    @property
    def buffered_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    def _require(self, *states: CaptureState):
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise RuntimeError(f"Capture session is {self.state.value}, expected {allowed}")

    def negotiate(self) -> CodecProfile:
        self._require(CaptureState.IDLE)
        try:
            self.profile = negotiate_codec(self.backend.is_supported, self.preferences)
        except CodecNegotiationExhausted as e:
            print(f"      [CaptureSession] {e}; falling back to generic {GENERIC_PROFILE.container}")
            self.profile = GENERIC_PROFILE
        self.state = CaptureState.NEGOTIATED
        print(f"      [CaptureSession] Negotiated {self.profile.mime_type}")
        return self.profile

    async def start(self, audio_path=None, now: float = 0.0):
        self._require(CaptureState.NEGOTIATED)
        self._events = asyncio.Queue()
        try:
            await self.backend.start(self.profile, self.size, self.fps, audio_path, self._events)
        except OSError as e:
            raise self._fail(f"Encoder could not be started: {e}") from e
        self._started = True
        self._slice_started = now
        self.state = CaptureState.RECORDING

    def write_frame(self, surface: Image.Image):
        self._require(CaptureState.RECORDING)
        try:
            self.backend.write_frame(surface.tobytes())
        except OSError as e:
            raise self._fail(f"Encoder rejected frame: {e}") from e

    def pump(self, now: float):
        """Consume pending encoder events; close a chunk once a slice interval has elapsed"""
        self._require(CaptureState.RECORDING)
        self._drain()
        if now - self._slice_started >= self.slice_interval:
            self._close_slice()
            self._slice_started = now

    async def stop(self, now: Optional[float] = None):
        """Ask the encoder to flush and wait for its stop signal"""
        self._require(CaptureState.RECORDING)
        self._drain()
        self._close_slice()
        self.state = CaptureState.STOPPING
        try:
            self.backend.request_stop()
        except OSError as e:
            raise self._fail(f"Encoder could not be flushed: {e}") from e

        while True:
            event = await self._events.get()
            if event.kind == EventKind.ERROR:
                raise self._fail(event.message)
            if event.kind == EventKind.DATA:
                self._pending.extend(event.data)
            else:
                break
        self.backend.join()
        # The flush arrives as one final chunk
        self._close_slice()
        self._flushed = True
        print(f"      [CaptureSession] Encoder flushed, {len(self.chunks)} chunks buffered")

    def finalize(self, duration_seconds: float) -> OutputArtifact:
        """Concatenate the chunks exactly once into the output artifact"""
        if self.state == CaptureState.FINALIZED:
            raise AssemblyError("Capture session was already finalized")
        if self.state != CaptureState.STOPPING or not self._flushed:
            raise AssemblyError(f"Cannot finalize a capture session that is {self.state.value}")
        if not self.chunks:
            self.state = CaptureState.FAILED
            raise AssemblyError("Encoder produced no data")

        data = b"".join(self.chunks)
        self.chunks = []
        self.state = CaptureState.FINALIZED
        return OutputArtifact(
            data=data,
            mime_type=CANONICAL_MIME_TYPE,
            duration_seconds=duration_seconds,
            size_bytes=len(data),
            negotiated_mime_type=self.profile.mime_type,
        )

    def abort(self):
        """Kill the encoder if running and drop everything buffered"""
        if self.state == CaptureState.FINALIZED:
            return
        if self._started:
            self.backend.abort()
            self._started = False
        self.chunks = []
        self._pending.clear()
        self.state = CaptureState.FAILED

    def _drain(self):
        while not self._events.empty():
            event = self._events.get_nowait()
            if event.kind == EventKind.ERROR:
                raise self._fail(event.message)
            if event.kind == EventKind.DATA:
                self._pending.extend(event.data)
            else:
                # Encoder stopped on its own before we asked it to
                raise self._fail("Encoder stopped unexpectedly")

    def _close_slice(self):
        if self._pending:
            self.chunks.append(bytes(self._pending))
            self._pending.clear()

    def _fail(self, message: str) -> EncoderError:
        discarded = len(self.chunks)
        self.abort()
        print(f"      [CaptureSession] Encoder error: {message} ({discarded} chunks discarded)")
        return EncoderError(message)

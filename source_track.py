"""
Source tracks - externally supplied audio/video resources the compositor samples from
"""

import asyncio
import mimetypes
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from PIL import Image
from moviepy import AudioFileClip, VideoFileClip

from config import FPS, TEMP_DIR
from errors import LoadError
from timing import WallClock


class TrackKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class ReadyState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class MediaResource:
    """Opaque byte buffer plus its declared mime type"""
    data: bytes
    mime_type: str
    name: str = ""

    @classmethod
    def from_file(cls, path, mime_type: Optional[str] = None) -> "MediaResource":
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(data=path.read_bytes(), mime_type=mime_type, name=path.name)

    @property
    def extension(self) -> str:
        base_type = self.mime_type.split(";")[0].strip()
        ext = mimetypes.guess_extension(base_type)
        if ext:
            return ext
        if self.name and "." in self.name:
            return "." + self.name.rsplit(".", 1)[1]
        return ".bin"


def decode_with_moviepy(kind: TrackKind, path: str, with_audio: bool):
    """Open a media file with moviepy; the clip exposes duration, get_frame and close"""
    if kind == TrackKind.AUDIO:
        return AudioFileClip(path)
    return VideoFileClip(path, audio=with_audio)


class SourceTrack:
    """
    One timed media input.

    The track is created in LOADING state and becomes READY once open()
    has decoded its metadata. Playback position is derived from the clock
    the controller drives, so play/pause/seek are exact in virtual time.
    """

    def __init__(
        self,
        kind: TrackKind,
        resource: MediaResource,
        clock=None,
        decoder: Callable = decode_with_moviepy,
        temp_dir=TEMP_DIR,
        contributes_audio: Optional[bool] = None,
    ):
        self.kind = TrackKind(kind)
        self.resource = resource
        self.clock = clock or WallClock(FPS)
        self.decoder = decoder
        self.temp_dir = Path(temp_dir)
        if contributes_audio is None:
            # Video tracks are drawn muted unless asked otherwise
            contributes_audio = self.kind == TrackKind.AUDIO
        self.contributes_audio = contributes_audio

        self.ready_state = ReadyState.LOADING
        self.duration: Optional[float] = None
        self.media = None
        self._temp_path: Optional[Path] = None
        self._playing = False
        self._position = 0.0
        self._play_started = 0.0

    @property
    def label(self) -> str:
        return self.resource.name or f"{self.kind.value} track"

    @property
    def is_ready(self) -> bool:
        return self.ready_state == ReadyState.READY

    async def open(self) -> ReadyState:
        """Decode the resource; resolves READY or raises LoadError (track becomes FAILED)"""
        expected = self.kind.value + "/"
        if not self.resource.mime_type.startswith(expected):
            self.ready_state = ReadyState.FAILED
            raise LoadError(
                f"{self.label}: declared type {self.resource.mime_type!r} is not {self.kind.value}"
            )
        if not self.resource.data:
            self.ready_state = ReadyState.FAILED
            raise LoadError(f"{self.label}: resource is empty")

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self._temp_path = self.temp_dir / f"track_{uuid.uuid4().hex[:8]}{self.resource.extension}"
        self._temp_path.write_bytes(self.resource.data)

        loop = asyncio.get_running_loop()
        try:
            self.media = await loop.run_in_executor(
                None, self.decoder, self.kind, str(self._temp_path), self.contributes_audio
            )
        except Exception as e:
            self.ready_state = ReadyState.FAILED
            raise LoadError(f"{self.label}: could not decode ({e})") from e

        duration = getattr(self.media, "duration", None)
        if not duration or duration <= 0:
            self.ready_state = ReadyState.FAILED
            raise LoadError(f"{self.label}: no usable duration")

        self.duration = float(duration)
        self.ready_state = ReadyState.READY
        print(f"      [SourceTrack] {self.label} ready ({self.duration:.2f}s)")
        return self.ready_state

    def current_time(self) -> float:
        if not self.is_ready:
            return 0.0
        position = self._position
        if self._playing:
            position += self.clock.now() - self._play_started
        return min(max(position, 0.0), self.duration)

    def play(self):
        if not self.is_ready or self._playing:
            return
        self._play_started = self.clock.now()
        self._playing = True

    def pause(self):
        if not self.is_ready or not self._playing:
            return
        self._position = self.current_time()
        self._playing = False

    def seek(self, t: float):
        if not self.is_ready:
            return
        self._position = min(max(t, 0.0), self.duration)
        if self._playing:
            self._play_started = self.clock.now()

    def frame_at(self, t: Optional[float] = None) -> Optional[Image.Image]:
        """Sample the video frame at t (defaults to the current position)"""
        if not self.is_ready or self.kind != TrackKind.VIDEO:
            return None
        if t is None:
            t = self.current_time()
        # Reading exactly at the end of a clip returns no frame
        t = min(t, max(0.0, self.duration - 0.01))
        return Image.fromarray(self.media.get_frame(t)).convert("RGB")

    def audio_clip(self):
        """The moviepy audio clip this track contributes to the mix, if any"""
        if not self.is_ready or not self.contributes_audio:
            return None
        if self.kind == TrackKind.AUDIO:
            return self.media
        return getattr(self.media, "audio", None)

    def release(self):
        """Close the decoded clip and delete the temp copy, whatever state the track is in"""
        self._playing = False
        if self.media is not None:
            try:
                self.media.close()
            except OSError as e:
                print(f"      [SourceTrack] Error closing {self.label}: {e}")
            self.media = None
        if self._temp_path is not None:
            try:
                self._temp_path.unlink(missing_ok=True)
            except OSError as e:
                print(f"      [SourceTrack] Could not remove {self._temp_path}: {e}")
            self._temp_path = None

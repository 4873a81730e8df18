"""
Render controller - the single driver loop that prepares every asset,
records the composed frames and hands back the finished artifact.

One engine serves every kind of clip: plain code streams, narrated full
clips and avatar shorts only differ in which optional components the
RenderPlan attaches.
"""

import asyncio
import math
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from audio_mixer import AudioMixer
from avatar_sprite import Avatar, AvatarSprite, load_avatar_image
from capture_session import CaptureSession, FfmpegEncoderBackend, OutputArtifact
from caption_band import (
    Caption, CaptionBand, CaptionStyle, build_sentence_captions, build_word_captions,
)
from compositor import FrameCompositor, FrameTime
from config import RenderConfig
from errors import RunCancelled
from source_track import MediaResource, SourceTrack, TrackKind, decode_with_moviepy
from text_stream import ColorScheme, TextStreamRenderer, get_theme
from thumbnail_preroll import ThumbnailPreroll, ThumbnailPrerollLayer
from timing import FrameClock


class PlanKind(str, Enum):
    VIDEO = "video"
    FULLCLIP = "fullclip"
    SHORTS = "shorts"


FILENAME_PREFIXES = {
    PlanKind.VIDEO: "code-stream",
    PlanKind.FULLCLIP: "fullclip",
    PlanKind.SHORTS: "shorts",
}


@dataclass
class RenderPlan:
    """Which sources and overlays a run combines"""
    text: str = ""
    file_name: str = "snippet.txt"
    language: str = "text"
    theme: ColorScheme = field(default_factory=lambda: get_theme(None))
    main_video: Optional[MediaResource] = None
    video_fit: str = "fit"
    video_audio: bool = False
    narration: List[MediaResource] = field(default_factory=list)
    script: Optional[str] = None
    captions: List[Caption] = field(default_factory=list)
    caption_style: CaptionStyle = field(default_factory=CaptionStyle)
    auto_captions: Optional[str] = None
    avatar: Optional[Avatar] = None
    preroll: Optional[ThumbnailPreroll] = None

    @classmethod
    def for_text(cls, text: str, file_name: str = "snippet.txt", language: str = "text") -> "RenderPlan":
        return cls(text=text, file_name=file_name, language=language)

    def with_theme(self, theme: Union[str, ColorScheme, None]) -> "RenderPlan":
        self.theme = theme if isinstance(theme, ColorScheme) else get_theme(theme)
        return self

    def with_video(self, resource: MediaResource, fit: str = "fit", with_audio: bool = False) -> "RenderPlan":
        if fit not in ("fit", "fill"):
            raise ValueError(f"video fit must be 'fit' or 'fill', got {fit!r}")
        self.main_video = resource
        self.video_fit = fit
        self.video_audio = with_audio
        return self

    def with_narration(self, resource: MediaResource, script: Optional[str] = None) -> "RenderPlan":
        self.narration.append(resource)
        if script:
            self.script = script
        return self

    def with_captions(self, captions: Sequence[Caption], style: Optional[CaptionStyle] = None) -> "RenderPlan":
        self.captions = list(captions)
        if style is not None:
            self.caption_style = style
        return self

    def with_auto_captions(self, mode: str = "words", style: Optional[CaptionStyle] = None) -> "RenderPlan":
        """Build captions from the narration script once the narration duration is known"""
        if mode not in ("words", "sentences"):
            raise ValueError(f"caption mode must be 'words' or 'sentences', got {mode!r}")
        self.auto_captions = mode
        if style is not None:
            self.caption_style = style
        return self

    def with_avatar(self, avatar: Avatar) -> "RenderPlan":
        self.avatar = avatar
        return self

    def with_preroll(self, preroll: ThumbnailPreroll) -> "RenderPlan":
        self.preroll = preroll
        return self

    @property
    def kind(self) -> PlanKind:
        if self.avatar is not None:
            return PlanKind.SHORTS
        if self.narration:
            return PlanKind.FULLCLIP
        return PlanKind.VIDEO

    @property
    def hold_seconds(self) -> float:
        return self.preroll.hold_seconds if self.preroll is not None else 0.0

    def output_filename(self, timestamp: Optional[datetime] = None) -> str:
        stem = Path(self.file_name).stem or "clip"
        stem = re.sub(r"[^A-Za-z0-9_-]+", "-", stem).strip("-") or "clip"
        stamp = (timestamp or datetime.now()).strftime("%Y%m%d-%H%M%S")
        return f"{FILENAME_PREFIXES[self.kind]}-{stem}-{stamp}.mp4"

    def validate(self):
        if not self.text.strip() and self.main_video is None:
            raise ValueError("A render plan needs source text or a main video")


def compute_total_duration(
    hold_seconds: float,
    source_durations: Sequence[float],
    text_duration: Optional[float] = None,
) -> float:
    """Preroll hold plus the longest source (sources start together when the hold ends)"""
    if source_durations:
        content = max(source_durations)
    elif text_duration:
        content = text_duration
    else:
        raise ValueError("Nothing to record: no sources and no text")
    return hold_seconds + content


class RunStatus(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


_NEXT_STATUS = {
    RunStatus.IDLE: RunStatus.PREPARING,
    RunStatus.PREPARING: RunStatus.RECORDING,
    RunStatus.RECORDING: RunStatus.FINALIZING,
    RunStatus.FINALIZING: RunStatus.COMPLETED,
}


@dataclass
class RenderSession:
    status: RunStatus = RunStatus.IDLE
    elapsed_seconds: float = 0.0
    total_duration_seconds: float = 0.0
    current_step_index: int = 0
    step_count: int = 0
    progress_percent: int = 0
    message: str = ""
    error: Optional[str] = None
    history: List[RunStatus] = field(default_factory=lambda: [RunStatus.IDLE])

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED)

    def transition(self, status: RunStatus):
        """Move forward along Idle -> Preparing -> Recording -> Finalizing -> Completed|Failed"""
        allowed = status == RunStatus.FAILED and not self.is_terminal
        allowed = allowed or _NEXT_STATUS.get(self.status) == status
        if not allowed:
            raise RuntimeError(f"Invalid run status transition {self.status.value} -> {status.value}")
        self.status = status
        self.history.append(status)


class RenderController:
    """Drives one run. Not reentrant: a controller records exactly once."""

    def __init__(
        self,
        config: RenderConfig,
        plan: RenderPlan,
        encoder_backend=None,
        clock=None,
        progress_callback: Optional[Callable[[int, str], None]] = None,
        cancel_event: Optional[threading.Event] = None,
        decoder: Callable = decode_with_moviepy,
        mixer: Optional[AudioMixer] = None,
    ):
        plan.validate()
        self.config = config
        self.plan = plan
        self.clock = clock or FrameClock(config.fps)
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event
        self.decoder = decoder

        backend = encoder_backend or FfmpegEncoderBackend(
            video_bitrate=config.video_bitrate,
            audio_bitrate=config.audio_bitrate,
            preset=config.preset,
        )
        self.capture = CaptureSession(backend, config.frame_size, config.fps, config.slice_interval)
        self.session = RenderSession()

        self.narration_tracks: List[SourceTrack] = []
        self.video_track: Optional[SourceTrack] = None
        self.avatar_sprite: Optional[AvatarSprite] = None
        self.preroll_layer: Optional[ThumbnailPrerollLayer] = None
        self.text_stream: Optional[TextStreamRenderer] = None
        self.compositor: Optional[FrameCompositor] = None
        self.mixer = mixer or AudioMixer(config.temp_dir)
        self.audio_path = None
        self.frames_written = 0

    @property
    def tracks(self) -> List[SourceTrack]:
        tracks = list(self.narration_tracks)
        if self.video_track is not None:
            tracks.append(self.video_track)
        return tracks

    @property
    def primary_track(self) -> Optional[SourceTrack]:
        """Caption clock: first audio track, else the video track"""
        if self.narration_tracks:
            return self.narration_tracks[0]
        return self.video_track

    def report_progress(self, percent: int, message: str):
        """Report progress if callback is provided"""
        percent = max(percent, self.session.progress_percent)
        self.session.progress_percent = percent
        self.session.message = message
        print(f"      [{percent:3d}%] {message}")
        if self.progress_callback:
            self.progress_callback(percent, message)

    # ------------------------------------------------------------------
    # Preparing
    # ------------------------------------------------------------------

    def preparation_steps(self):
        steps = []
        for index, resource in enumerate(self.plan.narration):
            steps.append((f"Loading narration audio ({resource.name or index + 1})", self._load_narration, resource))
        if self.plan.main_video is not None:
            steps.append(("Loading video", self._load_video, self.plan.main_video))
        if self.plan.avatar is not None:
            steps.append(("Loading avatar image", self._load_avatar, self.plan.avatar))
        if self.plan.preroll is not None:
            steps.append(("Preparing thumbnail", self._prepare_preroll, self.plan.preroll))
        steps.append(("Mixing audio", self._mix_audio, None))
        steps.append(("Negotiating codec", self._negotiate, None))
        return steps

    async def prepare(self):
        steps = self.preparation_steps()
        self.session.step_count = len(steps)
        for index, (label, step, arg) in enumerate(steps, start=1):
            self._check_cancelled()
            self.session.current_step_index = index
            self.report_progress(0, f"Step {index}/{len(steps)}: {label}...")
            try:
                await step(arg)
            except Exception as e:
                self.session.error = f"Failed at step {index}/{len(steps)} ({label}): {e}"
                raise

        self.session.total_duration_seconds = self._total_duration()
        self.compositor = self._build_compositor()

    async def _load_narration(self, resource: MediaResource):
        track = SourceTrack(
            TrackKind.AUDIO, resource, clock=self.clock,
            decoder=self.decoder, temp_dir=self.config.temp_dir,
        )
        self.narration_tracks.append(track)
        await track.open()

    async def _load_video(self, resource: MediaResource):
        self.video_track = SourceTrack(
            TrackKind.VIDEO, resource, clock=self.clock, decoder=self.decoder,
            temp_dir=self.config.temp_dir, contributes_audio=self.plan.video_audio,
        )
        await self.video_track.open()

    async def _load_avatar(self, avatar: Avatar):
        # Never fatal: a failed load falls back to the drawn glyph
        await load_avatar_image(avatar, self.config.avatar_timeout)
        self.avatar_sprite = AvatarSprite(avatar, self.config.width, self.config.height)

    async def _prepare_preroll(self, preroll: ThumbnailPreroll):
        self.preroll_layer = ThumbnailPrerollLayer(preroll, self.config.width, self.config.height)
        self.preroll_layer.prepare()

    async def _mix_audio(self, _):
        total = self._total_duration()
        loop = asyncio.get_running_loop()
        self.audio_path = await loop.run_in_executor(
            None,
            self.mixer.mixdown,
            self.tracks,
            self.plan.hold_seconds,
            total,
            lambda msg: self.report_progress(0, msg),
        )

    async def _negotiate(self, _):
        self.capture.negotiate()

    def _text_duration(self) -> Optional[float]:
        if not self.plan.text:
            return None
        return len(self.plan.text) / self.config.chars_per_second

    def _total_duration(self) -> float:
        durations = [track.duration for track in self.tracks if track.is_ready]
        return compute_total_duration(self.plan.hold_seconds, durations, self._text_duration())

    def _build_compositor(self) -> FrameCompositor:
        width, height = self.config.frame_size
        if self.plan.main_video is None:
            self.text_stream = TextStreamRenderer(self.plan.text, self.plan.theme, width, height)
        if not self.plan.captions and self.plan.auto_captions and self.plan.script:
            self.plan.captions = self._auto_captions()
        captions = None
        if self.plan.captions:
            captions = CaptionBand(self.plan.captions, self.plan.caption_style, width, height)
        return FrameCompositor(
            width, height,
            theme=self.plan.theme,
            text_stream=self.text_stream,
            video_track=self.video_track,
            video_fit=self.plan.video_fit,
            avatar=self.avatar_sprite,
            captions=captions,
            preroll=self.preroll_layer,
        )

    def _auto_captions(self) -> List[Caption]:
        track = self.primary_track
        duration = track.duration if track is not None else self._text_duration()
        if self.plan.auto_captions == "sentences":
            captions = build_sentence_captions(self.plan.script, duration)
        else:
            captions = build_word_captions(self.plan.script, duration)
        print(f"      [RenderController] Generated {len(captions)} captions over {duration:.1f}s")
        return captions

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _reveal_count(self, content_time: float) -> int:
        if self.text_stream is None or content_time <= 0:
            return 0
        total_chars = self.text_stream.total_chars
        durations = [track.duration for track in self.tracks]
        if durations:
            # Spread the reveal so the text completes when the longest source ends
            fraction = content_time / max(durations)
            return min(total_chars, math.ceil(total_chars * fraction))
        return min(total_chars, math.ceil(content_time * self.config.chars_per_second))

    def _caption_time(self, content_time: float) -> float:
        track = self.primary_track
        if track is not None:
            return track.current_time()
        return max(content_time, 0.0)

    def _check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RunCancelled("Run cancelled")

    def _frames_due(self, seconds: float) -> int:
        """Frames the encoder must have received to cover [0, seconds] at the configured fps"""
        return math.floor(seconds * self.config.fps + 1e-6) + 1

    def _write_frames(self, surface, target: int):
        # A tick slower than 1/fps repeats the frame
        while self.frames_written < target:
            self.capture.write_frame(surface)
            self.frames_written += 1

    async def record(self):
        total = self.session.total_duration_seconds
        hold = self.plan.hold_seconds
        total_frames = math.ceil(total * self.config.fps - 1e-6)
        await self.capture.start(self.audio_path, self.clock.now())
        print(f"      [RenderController] Recording {total:.2f}s at {self.config.fps} fps")

        start = self.clock.now()
        tracks_started = False
        last_percent = -1
        surface = None
        while True:
            now = self.clock.now()
            elapsed = now - start
            self.session.elapsed_seconds = elapsed
            progress = min(elapsed / total, 1.0)
            # 100% is reserved for the finished artifact
            percent = min(int(progress * 100), 99)
            if percent != last_percent:
                last_percent = percent
                self.report_progress(percent, f"Recording: {elapsed:.1f}s / {total:.1f}s")

            if progress >= 1.0:
                if surface is not None:
                    self._write_frames(surface, total_frames)
                for track in self.tracks:
                    track.pause()
                await self.capture.stop(now)
                self.session.transition(RunStatus.FINALIZING)
                return

            if not tracks_started and elapsed >= hold:
                # Sources start from their own zero exactly when the preroll ends
                for track in self.tracks:
                    track.seek(elapsed - hold)
                    track.play()
                tracks_started = True

            self._check_cancelled()

            content_time = elapsed - hold
            if self.text_stream is not None:
                self.text_stream.advance(self._reveal_count(content_time))
            surface = self.compositor.paint(FrameTime(
                elapsed_ms=elapsed * 1000.0,
                content_seconds=self._caption_time(content_time),
                clock_ms=now * 1000.0,
            ))
            self._write_frames(surface, min(self._frames_due(elapsed), total_frames))
            self.capture.pump(now)
            await self.clock.tick()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> OutputArtifact:
        """Prepare, record and finalize; raises the single terminal error on failure"""
        print("=" * 50)
        print(f"CODESTREAM RENDER ({self.plan.kind.value})")
        print("=" * 50)
        self.session.transition(RunStatus.PREPARING)
        try:
            await self.prepare()
            self.session.transition(RunStatus.RECORDING)
            await self.record()
            artifact = self.capture.finalize(self.session.total_duration_seconds)
            self.session.transition(RunStatus.COMPLETED)
            self.report_progress(100, "Complete!")
            print(f"      [RenderController] {artifact.size_bytes / 1024:.1f} KB, "
                  f"{artifact.duration_seconds:.2f}s ({artifact.negotiated_mime_type})")
            return artifact
        except Exception as e:
            self._fail(e)
            raise
        finally:
            self.release()

    def _fail(self, error: Exception):
        for track in self.tracks:
            track.pause()
        self.capture.abort()
        message = self.session.error or f"{type(error).__name__}: {error}"
        self.session.error = message
        if not self.session.is_terminal:
            self.session.transition(RunStatus.FAILED)
        self.report_progress(self.session.progress_percent, f"Failed: {message}")

    def release(self):
        """Free every buffer the run owns, on success and failure alike"""
        for track in self.tracks:
            track.release()
        self.mixer.release()
        if self.avatar_sprite is not None:
            self.avatar_sprite.release()
        elif self.plan.avatar is not None:
            self.plan.avatar.image = None
        if self.preroll_layer is not None:
            self.preroll_layer.release()


async def render(config: RenderConfig, plan: RenderPlan, **kwargs) -> OutputArtifact:
    """Convenience wrapper: one controller, one run"""
    return await RenderController(config, plan, **kwargs).run()

"""
Audio mixer - merges every audio-producing source track into one mixdown for capture
"""

import uuid
from pathlib import Path
from typing import Callable, Optional, Sequence

from proglog import ProgressBarLogger
from moviepy import CompositeAudioClip

from config import AUDIO_FPS
from source_track import SourceTrack


class MixdownProgressLogger(ProgressBarLogger):
    """MoviePy-compatible logger that turns the audio write pass into progress messages.

    Only every 25% of the pass is reported to avoid spamming the console.
    """

    def __init__(self, message_cb: Callable[[str], None]):
        super().__init__()
        self.message_cb = message_cb
        self.current_total = 1
        self.last_reported_pct = -1

    def callback(self, **changes):
        pass

    def bars_callback(self, bar, attr, value, old_value=None):
        if attr == 'total' and isinstance(value, (int, float)) and value > 0:
            self.current_total = int(value)
            self.last_reported_pct = -1
            return
        if attr != 'index' or not isinstance(value, (int, float)):
            return

        report_pct = int(min(value / max(self.current_total, 1), 1.0) * 100)
        if report_pct <= self.last_reported_pct or report_pct % 25 != 0:
            return
        self.last_reported_pct = report_pct
        self.message_cb(f"Mixing audio: {report_pct}%")


class AudioMixer:
    """
    Collects the tracks' audio, offsets it by the preroll hold and writes
    one WAV file the encoder takes as its audio input.
    """

    def __init__(self, temp_dir, fps: int = AUDIO_FPS):
        self.temp_dir = Path(temp_dir)
        self.fps = fps
        self.mix_path: Optional[Path] = None
        self._composite = None

    def build(self, tracks: Sequence[SourceTrack], offset: float, total_duration: float):
        """The composite clip, or None when no track contributes audio"""
        clips = [track.audio_clip() for track in tracks]
        clips = [clip.with_start(offset) for clip in clips if clip is not None]
        if not clips:
            return None
        # Trimmed (or padded with silence) to exactly the run length
        return CompositeAudioClip(clips).with_duration(total_duration)

    def mixdown(
        self,
        tracks: Sequence[SourceTrack],
        offset: float,
        total_duration: float,
        message_cb: Optional[Callable[[str], None]] = None,
    ) -> Optional[Path]:
        """Write the mix to a temp WAV file; returns None when there is nothing to mix"""
        composite = self.build(tracks, offset, total_duration)
        if composite is None:
            print("      [AudioMixer] No audio tracks, recording silent video")
            return None

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.mix_path = self.temp_dir / f"mix_{uuid.uuid4().hex[:8]}.wav"
        logger = MixdownProgressLogger(message_cb or (lambda msg: print(f"      [AudioMixer] {msg}")))
        composite.write_audiofile(
            str(self.mix_path), fps=self.fps, codec="pcm_s16le", logger=logger
        )
        self._composite = composite
        print(f"      [AudioMixer] Mixed {len(composite.clips)} track(s) into {self.mix_path.name}")
        return self.mix_path

    def release(self):
        if self._composite is not None:
            self._composite.close()
            self._composite = None
        if self.mix_path is not None:
            try:
                self.mix_path.unlink(missing_ok=True)
            except OSError as e:
                print(f"      [AudioMixer] Could not remove {self.mix_path}: {e}")
            self.mix_path = None

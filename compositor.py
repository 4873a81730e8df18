"""
Frame compositor - paints every layer, in a fixed order, onto one surface per tick
"""

from dataclasses import dataclass
from typing import Optional

from PIL import Image

from avatar_sprite import AvatarSprite
from caption_band import CaptionBand
from source_track import SourceTrack
from text_stream import ColorScheme, THEMES, DEFAULT_THEME, TextStreamRenderer
from thumbnail_preroll import ThumbnailPrerollLayer, cover_fit


@dataclass
class FrameTime:
    """All the times one frame is painted for"""
    elapsed_ms: float        # since recording started (preroll included)
    content_seconds: float   # main-content time used for caption lookup
    clock_ms: float          # clock reading, drives the cursor blink


def fit_frame(frame: Image.Image, width: int, height: int, mode: str = "fit"):
    """Scale a video frame into the canvas; returns (image, (x, y))"""
    if mode == "fill":
        return cover_fit(frame, width, height), (0, 0)
    scale = min(width / frame.width, height / frame.height)
    draw_w = max(1, int(round(frame.width * scale)))
    draw_h = max(1, int(round(frame.height * scale)))
    resized = frame.resize((draw_w, draw_h), Image.Resampling.BILINEAR)
    return resized, ((width - draw_w) // 2, (height - draw_h) // 2)


class FrameCompositor:
    """
    Paint order: background -> main content -> avatar -> caption -> preroll.

    Main content is either the text stream or a video source track. While
    the preroll is active nothing but the background and the preroll card
    is painted.
    """

    def __init__(
        self,
        width: int,
        height: int,
        theme: Optional[ColorScheme] = None,
        text_stream: Optional[TextStreamRenderer] = None,
        video_track: Optional[SourceTrack] = None,
        video_fit: str = "fit",
        avatar: Optional[AvatarSprite] = None,
        captions: Optional[CaptionBand] = None,
        preroll: Optional[ThumbnailPrerollLayer] = None,
    ):
        if text_stream is None and video_track is None:
            raise ValueError("Compositor needs a text stream or a video track as main content")
        self.width = width
        self.height = height
        self.theme = theme or THEMES[DEFAULT_THEME]
        self.text_stream = text_stream
        self.video_track = video_track
        self.video_fit = video_fit
        self.avatar = avatar
        self.captions = captions
        self.preroll = preroll
        self.surface = Image.new("RGB", (width, height), self.theme.rgb("background"))

    def preroll_active(self, elapsed_ms: float) -> bool:
        return self.preroll is not None and self.preroll.is_active(elapsed_ms)

    def paint(self, frame_time: FrameTime) -> Image.Image:
        surface = self.surface
        surface.paste(self.theme.rgb("background"), (0, 0, self.width, self.height))

        if not self.preroll_active(frame_time.elapsed_ms):
            self._paint_main(surface, frame_time)
            if self.avatar is not None:
                self.avatar.render(surface, frame_time.elapsed_ms)
            if self.captions is not None:
                self.captions.render(surface, frame_time.content_seconds)

        if self.preroll is not None:
            self.preroll.render_if_active(surface, frame_time.elapsed_ms)
        return surface

    def _paint_main(self, surface: Image.Image, frame_time: FrameTime):
        if self.video_track is not None:
            frame = self.video_track.frame_at()
            if frame is not None:
                image, position = fit_frame(frame, self.width, self.height, self.video_fit)
                surface.paste(image, position)
        else:
            self.text_stream.render(surface, clock_ms=frame_time.clock_ms)

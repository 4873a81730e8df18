"""
Caption band overlay plus caption track helpers
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from PIL import Image, ImageColor, ImageDraw

from config import VIDEO_WIDTH, VIDEO_HEIGHT
from text_stream import load_font, wrap_text


@dataclass
class Caption:
    """One timed caption; active on the half-open window [start, end)"""
    text: str
    start: float
    end: float
    text_color: Optional[str] = None
    background_color: Optional[str] = None

    def contains(self, t: float) -> bool:
        return self.start <= t < self.end

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "start": self.start,
            "end": self.end,
            "text_color": self.text_color,
            "background_color": self.background_color,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Caption":
        return cls(
            text=data["text"],
            start=float(data["start"]),
            end=float(data["end"]),
            text_color=data.get("text_color"),
            background_color=data.get("background_color"),
        )


@dataclass
class CaptionStyle:
    font_size: int = 32
    text_color: str = "#FFFFFF"
    background_color: str = "#000000"
    margin: int = 40
    padding_x: int = 20
    padding_y: int = 10
    line_gap: int = 6
    baseline_offset: int = 150  # distance of the lowest plate's bottom edge from the frame bottom


def active_caption(captions: Sequence[Caption], t: float) -> Optional[Caption]:
    """The first caption whose window contains t (overlaps are the caller's problem)"""
    for caption in captions:
        if caption.contains(t):
            return caption
    return None


def build_word_captions(script: str, duration: float, words_per_caption: int = 4) -> List[Caption]:
    """Split a narration script into fixed-size word groups spread evenly over the duration"""
    words = script.split()
    if not words or duration <= 0:
        return []
    time_per_word = duration / len(words)
    captions = []
    for i in range(0, len(words), words_per_caption):
        group = words[i:i + words_per_caption]
        start = i * time_per_word
        end = min((i + len(group)) * time_per_word, duration)
        captions.append(Caption(" ".join(group), start, end))
    return captions


def build_sentence_captions(script: str, duration: float) -> List[Caption]:
    """One caption per sentence, each sentence getting an equal share of the duration"""
    sentences = [s.strip() for s in re.split(r"[.!?]+", script) if s.strip()]
    if not sentences or duration <= 0:
        return []
    per_sentence = duration / len(sentences)
    return [
        Caption(sentence, i * per_sentence, (i + 1) * per_sentence)
        for i, sentence in enumerate(sentences)
    ]


class CaptionBand:
    """Draws the active caption as one opaque plate per wrapped line, stacked up from a bottom baseline"""

    def __init__(
        self,
        captions: Sequence[Caption],
        style: Optional[CaptionStyle] = None,
        width: int = VIDEO_WIDTH,
        height: int = VIDEO_HEIGHT,
    ):
        self.captions = sorted(captions, key=lambda c: c.start)
        self.style = style or CaptionStyle()
        self.width = width
        self.height = height
        self.font = load_font(self.style.font_size, "bold")
        self.line_height = int(self.style.font_size * 1.2)

    @property
    def max_text_width(self) -> int:
        return self.width - 2 * self.style.margin - 2 * self.style.padding_x

    def layout(self, text: str) -> List[Tuple[str, Tuple[int, int, int, int]]]:
        """Wrapped lines with their plate boxes (left, top, right, bottom), top line first"""
        style = self.style
        lines = wrap_text(text, self.max_text_width, self.font.getlength)
        plate_height = self.line_height + 2 * style.padding_y
        bottom = self.height - style.baseline_offset

        boxes = []
        for line in reversed(lines):
            text_width = self.font.getlength(line)
            left = int((self.width - text_width) / 2 - style.padding_x)
            right = int((self.width + text_width) / 2 + style.padding_x)
            top = bottom - plate_height
            boxes.append((line, (left, top, right, bottom)))
            bottom = top - style.line_gap
        boxes.reverse()
        return boxes

    def render(self, surface: Image.Image, current_time: float) -> Optional[Caption]:
        caption = active_caption(self.captions, current_time)
        if caption is None or not caption.text.strip():
            return None

        text_color = ImageColor.getrgb(caption.text_color or self.style.text_color)[:3]
        plate_color = ImageColor.getrgb(caption.background_color or self.style.background_color)[:3]

        draw = ImageDraw.Draw(surface)
        for line, (left, top, right, bottom) in self.layout(caption.text):
            draw.rectangle([left, top, right, bottom], fill=plate_color)
            draw.text(
                ((left + right) / 2, (top + bottom) / 2), line,
                font=self.font, fill=text_color, anchor="mm",
            )
        return caption

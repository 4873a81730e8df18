"""
Thumbnail preroll - a static card held before the main content starts
"""

import io
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, UnidentifiedImageError

from config import VIDEO_WIDTH, VIDEO_HEIGHT, PREROLL_SECONDS
from errors import LoadError
from text_stream import load_font, wrap_text

BRAND_NAME = "CODESTREAM"


@dataclass
class ThumbnailPreroll:
    """Either an image (bytes) or a title for a generated card; held for hold_seconds"""
    image: Optional[bytes] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    hold_seconds: float = PREROLL_SECONDS
    gradient: Tuple[Tuple[int, int, int], Tuple[int, int, int]] = ((15, 15, 35), (80, 40, 120))
    accent: Tuple[int, int, int] = (255, 107, 157)

    def __post_init__(self):
        if self.image is None and not self.title:
            raise ValueError("A thumbnail preroll needs an image or a title")
        if self.hold_seconds <= 0:
            raise ValueError(f"hold_seconds must be positive, got {self.hold_seconds}")

    @property
    def hold_ms(self) -> float:
        return self.hold_seconds * 1000.0


def cover_fit(image: Image.Image, width: int, height: int) -> Image.Image:
    """Scale to fill the frame, then centre-crop - no black bars"""
    scale = max(width / image.width, height / image.height)
    new_w = max(width, int(round(image.width * scale)))
    new_h = max(height, int(round(image.height * scale)))
    image = image.resize((new_w, new_h), Image.Resampling.LANCZOS)
    x1 = (new_w - width) // 2
    y1 = (new_h - height) // 2
    return image.crop((x1, y1, x1 + width, y1 + height))


def add_vignette(img: Image.Image, strength: float = 0.5) -> Image.Image:
    """Darken the corners"""
    img_array = np.array(img, dtype=np.float32)
    rows, cols = img_array.shape[:2]

    X, Y = np.meshgrid(np.arange(0, cols), np.arange(0, rows))
    center_x = cols / 2
    center_y = rows / 2
    dist = np.sqrt((X - center_x) ** 2 + (Y - center_y) ** 2)
    max_dist = np.sqrt(center_x ** 2 + center_y ** 2)

    vignette = np.clip(1 - (dist / max_dist) * strength, 1 - strength, 1)
    img_array *= vignette[:, :, np.newaxis]
    return Image.fromarray(np.clip(img_array, 0, 255).astype(np.uint8))


class ThumbnailPrerollLayer:
    """Prepares the preroll card once and paints it while the hold is active"""

    def __init__(self, preroll: ThumbnailPreroll, width: int = VIDEO_WIDTH, height: int = VIDEO_HEIGHT):
        self.preroll = preroll
        self.width = width
        self.height = height
        self.card: Optional[Image.Image] = None

    def prepare(self) -> Image.Image:
        """Decode the supplied image or draw the title card; image decode failures are fatal"""
        if self.preroll.image is not None:
            try:
                image = Image.open(io.BytesIO(self.preroll.image))
                image.load()
            except (UnidentifiedImageError, OSError) as e:
                raise LoadError(f"Thumbnail image could not be decoded: {e}") from e
            self.card = cover_fit(image.convert("RGB"), self.width, self.height)
        else:
            self.card = self._draw_title_card()
        return self.card

    def is_active(self, elapsed_ms: float) -> bool:
        return elapsed_ms < self.preroll.hold_ms

    def render_if_active(self, surface: Image.Image, elapsed_ms: float) -> bool:
        if not self.is_active(elapsed_ms):
            return False
        if self.card is None:
            self.prepare()
        surface.paste(self.card, (0, 0))
        return True

    def release(self):
        self.card = None

    def _draw_gradient(self) -> Image.Image:
        img = Image.new("RGB", (self.width, self.height))
        draw = ImageDraw.Draw(img)
        color1, color2 = self.preroll.gradient
        for y in range(self.height):
            ratio = y / self.height
            r = int(color1[0] * (1 - ratio) + color2[0] * ratio)
            g = int(color1[1] * (1 - ratio) + color2[1] * ratio)
            b = int(color1[2] * (1 - ratio) + color2[2] * ratio)
            draw.line([(0, y), (self.width, y)], fill=(r, g, b))
        return add_vignette(img)

    def _draw_title_card(self) -> Image.Image:
        img = self._draw_gradient()
        draw = ImageDraw.Draw(img)
        accent = self.preroll.accent

        # Bordered frame
        inset = max(8, self.width // 18)
        draw.rounded_rectangle(
            [inset, inset, self.width - inset, self.height - inset],
            radius=30, outline=accent, width=6,
        )

        # Code brackets mark at the top
        mark_font = load_font(96, "mono")
        draw.text((self.width / 2, self.height * 0.22), "</>", font=mark_font, fill=accent, anchor="mm")

        # Title, wrapped and centred
        title_font = load_font(64, "bold")
        max_width = max(self.width // 2, self.width - 2 * inset - 80)
        lines = wrap_text(self.preroll.title.upper(), max_width, title_font.getlength)
        line_height = int(64 * 1.25)
        y = self.height / 2 - (len(lines) * line_height) / 2 + line_height / 2
        for line in lines:
            # Outline for readability
            for dx in range(-2, 3):
                for dy in range(-2, 3):
                    if dx or dy:
                        draw.text((self.width / 2 + dx, y + dy), line, font=title_font, fill=(0, 0, 0), anchor="mm")
            draw.text((self.width / 2, y), line, font=title_font, fill=(255, 255, 255), anchor="mm")
            y += line_height

        if self.preroll.subtitle:
            sub_font = load_font(32, "regular")
            draw.text((self.width / 2, y + 20), self.preroll.subtitle, font=sub_font, fill=(200, 200, 220), anchor="mm")

        # Branding strip at the bottom
        brand_font = load_font(36, "bold")
        brand_y = self.height - inset - 70
        draw.line([(inset + 60, brand_y - 40), (self.width - inset - 60, brand_y - 40)], fill=accent, width=3)
        draw.text((self.width / 2, brand_y), BRAND_NAME, font=brand_font, fill=accent, anchor="mm")
        return img

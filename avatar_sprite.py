"""
Avatar sprite overlay - a bobbing, slightly transparent character in one corner
"""

import asyncio
import io
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

import requests
from PIL import Image, ImageChops, ImageDraw

from config import VIDEO_WIDTH, VIDEO_HEIGHT, AVATAR_LOAD_TIMEOUT

BOB_SPEED = 0.003     # radians per millisecond
BOB_AMPLITUDE = 5     # pixels
AVATAR_OPACITY = 0.9
EDGE_MARGIN = 20


class AvatarPosition(str, Enum):
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"


@dataclass
class Avatar:
    """
    Avatar overlay description.

    source may be raw image bytes, a local path or an http(s) URL. After
    loading, image holds the decoded RGBA picture (or the fallback glyph).
    """
    source: Union[bytes, str, Path, None] = None
    position: AvatarPosition = AvatarPosition.BOTTOM_RIGHT
    size_percent: float = 25.0
    circular: bool = False
    name: str = "avatar"
    image: Optional[Image.Image] = None

    def __post_init__(self):
        self.position = AvatarPosition(self.position)
        if not 0 < self.size_percent <= 100:
            raise ValueError(f"size_percent must be in (0, 100], got {self.size_percent}")


def _read_image(source) -> Image.Image:
    if isinstance(source, bytes):
        data = source
    elif isinstance(source, str) and source.startswith(("http://", "https://")):
        response = requests.get(source, timeout=AVATAR_LOAD_TIMEOUT)
        response.raise_for_status()
        data = response.content
    else:
        data = Path(source).read_bytes()
    image = Image.open(io.BytesIO(data))
    image.load()
    return image.convert("RGBA")


def draw_fallback_glyph(size: int = 256) -> Image.Image:
    """A programmatically drawn penguin, used when the avatar image cannot be loaded"""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    s = size / 100.0

    # Body and belly
    draw.ellipse([18 * s, 8 * s, 82 * s, 96 * s], fill=(30, 30, 40, 255))
    draw.ellipse([30 * s, 30 * s, 70 * s, 92 * s], fill=(245, 245, 245, 255))
    # Eyes
    for cx in (40, 60):
        draw.ellipse([(cx - 6) * s, 24 * s, (cx + 6) * s, 36 * s], fill=(255, 255, 255, 255))
        draw.ellipse([(cx - 2.5) * s, 28 * s, (cx + 2.5) * s, 33 * s], fill=(0, 0, 0, 255))
    # Beak and feet
    draw.polygon([(44 * s, 40 * s), (56 * s, 40 * s), (50 * s, 48 * s)], fill=(255, 165, 0, 255))
    draw.ellipse([28 * s, 90 * s, 46 * s, 98 * s], fill=(255, 165, 0, 255))
    draw.ellipse([54 * s, 90 * s, 72 * s, 98 * s], fill=(255, 165, 0, 255))
    return img


async def load_avatar_image(avatar: Avatar, timeout: float = AVATAR_LOAD_TIMEOUT) -> Image.Image:
    """
    Decode the avatar image off the event loop, bounded by a timeout.

    A timeout or decode failure is not fatal to the run: the fallback
    glyph is used instead.
    """
    if avatar.source is None:
        avatar.image = draw_fallback_glyph()
        return avatar.image

    loop = asyncio.get_running_loop()
    try:
        avatar.image = await asyncio.wait_for(
            loop.run_in_executor(None, _read_image, avatar.source), timeout
        )
    except asyncio.TimeoutError:
        print(f"      [AvatarSprite] Loading {avatar.name} timed out after {timeout:.0f}s, using fallback glyph")
        avatar.image = draw_fallback_glyph()
    except (OSError, ValueError, requests.RequestException) as e:
        print(f"      [AvatarSprite] Could not load {avatar.name} ({e}), using fallback glyph")
        avatar.image = draw_fallback_glyph()
    return avatar.image


class AvatarSprite:
    """Paints the avatar at its corner preset with an idle bob"""

    def __init__(self, avatar: Avatar, width: int = VIDEO_WIDTH, height: int = VIDEO_HEIGHT):
        self.avatar = avatar
        self.width = width
        self.height = height
        self._sprite: Optional[Image.Image] = None

    @property
    def box_size(self) -> int:
        return int(self.width * self.avatar.size_percent / 100)

    def base_position(self) -> Tuple[int, int]:
        size = self.box_size
        left = EDGE_MARGIN
        right = self.width - size - EDGE_MARGIN
        top = EDGE_MARGIN
        bottom = self.height - size - EDGE_MARGIN
        return {
            AvatarPosition.TOP_LEFT: (left, top),
            AvatarPosition.TOP_RIGHT: (right, top),
            AvatarPosition.BOTTOM_LEFT: (left, bottom),
            AvatarPosition.BOTTOM_RIGHT: (right, bottom),
        }[self.avatar.position]

    def position_at(self, elapsed_ms: float) -> Tuple[int, int]:
        x, y = self.base_position()
        bob = math.sin(elapsed_ms * BOB_SPEED) * BOB_AMPLITUDE
        return x, int(round(y + bob))

    def _build_sprite(self) -> Image.Image:
        image = self.avatar.image if self.avatar.image is not None else draw_fallback_glyph()
        size = self.box_size
        sprite = image.convert("RGBA").resize((size, size), Image.Resampling.LANCZOS)

        alpha = sprite.getchannel("A").point(lambda a: int(a * AVATAR_OPACITY))
        if self.avatar.circular:
            mask = Image.new("L", (size, size), 0)
            ImageDraw.Draw(mask).ellipse([0, 0, size - 1, size - 1], fill=255)
            alpha = ImageChops.multiply(alpha, mask)
        sprite.putalpha(alpha)
        return sprite

    def render(self, surface: Image.Image, elapsed_ms: float):
        if self._sprite is None:
            self._sprite = self._build_sprite()
        surface.paste(self._sprite, self.position_at(elapsed_ms), self._sprite)

    def release(self):
        self._sprite = None
        self.avatar.image = None

"""
Tests for the thumbnail preroll layer
"""

import io

import pytest
from PIL import Image

from errors import LoadError
from thumbnail_preroll import ThumbnailPreroll, ThumbnailPrerollLayer, cover_fit


def jpeg_bytes(color=(0, 0, 255), size=(400, 300)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG")
    return buffer.getvalue()


class TestPrerollGating:

    def test_active_only_during_hold(self):
        layer = ThumbnailPrerollLayer(ThumbnailPreroll(title="Intro", hold_seconds=1.0), 90, 160)
        surface = Image.new("RGB", (90, 160))
        assert layer.render_if_active(surface, 0) is True
        assert layer.render_if_active(surface, 999.9) is True
        assert layer.render_if_active(surface, 1000.0) is False

    def test_inactive_render_leaves_surface_untouched(self):
        layer = ThumbnailPrerollLayer(ThumbnailPreroll(title="Intro"), 90, 160)
        surface = Image.new("RGB", (90, 160), (1, 2, 3))
        layer.render_if_active(surface, 5000)
        assert surface.getcolors() == [(90 * 160, (1, 2, 3))]

    def test_needs_image_or_title(self):
        with pytest.raises(ValueError):
            ThumbnailPreroll()


class TestPrerollContent:

    def test_image_is_cover_fitted(self):
        layer = ThumbnailPrerollLayer(ThumbnailPreroll(image=jpeg_bytes()), 90, 160)
        card = layer.prepare()
        assert card.size == (90, 160)
        r, g, b = card.getpixel((45, 80))
        assert b > 200 and r < 30

    def test_corrupt_image_is_a_load_error(self):
        layer = ThumbnailPrerollLayer(ThumbnailPreroll(image=b"garbage"), 90, 160)
        with pytest.raises(LoadError):
            layer.prepare()

    def test_title_card_is_drawn(self):
        layer = ThumbnailPrerollLayer(ThumbnailPreroll(title="Binary Search in Python"), 180, 320)
        card = layer.prepare()
        assert card.size == (180, 320)
        assert len(card.getcolors(180 * 320)) > 10

    def test_cover_fit_crops_instead_of_letterboxing(self):
        wide = Image.new("RGB", (400, 100), (255, 0, 0))
        fitted = cover_fit(wide, 100, 100)
        assert fitted.size == (100, 100)
        assert fitted.getpixel((0, 0)) == (255, 0, 0)
        assert fitted.getpixel((99, 99)) == (255, 0, 0)

"""
Tests for image_normalizer.py.

Covers:
  - target_size(): downscale math, no upscaling, 1px minimum
  - normalize(): JPEG output, size cap, aspect ratio, determinism
  - transparency flattened to white, EXIF orientation applied
  - camera pixel frames (no encoded bytes)
  - undecodable input → Failure with the unsupported-format message
  - data URI helpers and the request body shape
"""
from __future__ import annotations

import base64
import io

import numpy as np
import pytest
from PIL import Image

import image_normalizer as norm
from capture.base import RawImageFrame
from outcomes import Failure


def _file_frame(data: bytes, name: str = "item.png") -> RawImageFrame:
    return RawImageFrame(origin="file", data=data, name=name)


# ── target_size() ─────────────────────────────────────────────────────────────

class TestTargetSize:
    def test_landscape_capped_on_width(self):
        assert norm.target_size(4000, 3000, 1024) == (1024, 768)

    def test_portrait_capped_on_height(self):
        assert norm.target_size(3000, 4000, 1024) == (768, 1024)

    def test_square(self):
        assert norm.target_size(2048, 2048, 1024) == (1024, 1024)

    def test_small_image_unchanged(self):
        assert norm.target_size(640, 480, 1024) == (640, 480)

    def test_exact_limit_unchanged(self):
        assert norm.target_size(1024, 300, 1024) == (1024, 300)

    def test_short_side_rounds_half_up(self):
        # 1000 * 1024 / 2048 = 500.0; 1001 * 1024 / 2048 = 500.5 → 501
        assert norm.target_size(2048, 1001, 1024) == (1024, 501)

    def test_extreme_aspect_keeps_one_pixel(self):
        assert norm.target_size(1, 5000, 1024) == (1, 1024)


# ── normalize() ───────────────────────────────────────────────────────────────

class TestNormalize:
    def test_output_is_jpeg(self, image_bytes):
        result = norm.normalize(_file_frame(image_bytes(100, 80)))
        assert result.mime_type == "image/jpeg"
        assert result.binary_payload[:3] == b"\xff\xd8\xff"
        assert result.preview_uri.startswith("data:image/jpeg;base64,")

    def test_large_image_downscaled(self, image_bytes):
        result = norm.normalize(_file_frame(image_bytes(3000, 2001)))
        assert max(result.width, result.height) == 1024
        assert result.width == 1024
        assert abs(result.height - 2001 * 1024 / 3000) <= 1
        assert (result.source_width, result.source_height) == (3000, 2001)

    def test_small_image_keeps_size(self, image_bytes):
        result = norm.normalize(_file_frame(image_bytes(320, 200)))
        assert (result.width, result.height) == (320, 200)

    def test_preview_decodes_to_reported_size(self, image_bytes):
        result = norm.normalize(_file_frame(image_bytes(1500, 900)))
        _, data = norm.decode_data_uri(result.preview_uri)
        assert data == result.binary_payload
        with Image.open(io.BytesIO(data)) as img:
            assert img.size == (result.width, result.height)
            assert img.format == "JPEG"

    def test_same_input_same_bytes(self, image_bytes):
        frame = _file_frame(image_bytes(1200, 700))
        first  = norm.normalize(frame)
        second = norm.normalize(frame)
        assert first.binary_payload == second.binary_payload

    def test_custom_max_dimension(self, image_bytes):
        result = norm.normalize(_file_frame(image_bytes(800, 400)), max_dimension=200)
        assert (result.width, result.height) == (200, 100)

    def test_default_quality_recorded(self, image_bytes):
        result = norm.normalize(_file_frame(image_bytes(10, 10)))
        assert result.quality == pytest.approx(0.9)

    def test_transparent_png_flattened_to_white(self, image_bytes):
        data = image_bytes(40, 40, mode="RGBA", color=(0, 0, 0, 0))
        result = norm.normalize(_file_frame(data))
        with Image.open(io.BytesIO(result.binary_payload)) as img:
            r, g, b = img.convert("RGB").getpixel((20, 20))
        assert min(r, g, b) > 240

    def test_exif_orientation_applied(self):
        img = Image.new("RGB", (100, 50), (10, 120, 10))
        exif = img.getexif()
        exif[0x0112] = 6        # rotate 90° clockwise on display
        buf = io.BytesIO()
        img.save(buf, format="JPEG", exif=exif.tobytes())

        result = norm.normalize(_file_frame(buf.getvalue(), "rotated.jpg"))
        assert (result.width, result.height) == (50, 100)

    def test_camera_pixels(self):
        pixels = np.zeros((50, 80, 3), dtype=np.uint8)
        pixels[:, :, 1] = 255
        frame = RawImageFrame(origin="camera", pixels=pixels, name="capture.jpg")
        result = norm.normalize(frame)
        assert (result.width, result.height) == (80, 50)
        assert result.mime_type == "image/jpeg"

    def test_garbage_bytes_fail(self):
        result = norm.normalize(_file_frame(b"definitely not an image", "photo.heic"))
        assert isinstance(result, Failure)
        assert result.message == norm.UNSUPPORTED_FORMAT

    @pytest.mark.parametrize("quality", [0, -0.1, 1.5])
    def test_invalid_quality_rejected(self, image_bytes, quality):
        with pytest.raises(ValueError):
            norm.normalize(_file_frame(image_bytes(10, 10)), quality=quality)

    def test_invalid_max_dimension_rejected(self, image_bytes):
        with pytest.raises(ValueError):
            norm.normalize(_file_frame(image_bytes(10, 10)), max_dimension=0)


@pytest.mark.asyncio
class TestNormalizeAsync:
    async def test_matches_sync(self, image_bytes):
        frame = _file_frame(image_bytes(1100, 300))
        result = await norm.normalize_async(frame)
        assert result.binary_payload == norm.normalize(frame).binary_payload


# ── Data URIs and request body ────────────────────────────────────────────────

class TestDataUri:
    def test_round_trip(self):
        uri = norm.to_data_uri(b"\x00\x01abc", "image/png")
        assert norm.decode_data_uri(uri) == ("image/png", b"\x00\x01abc")

    def test_not_a_data_uri(self):
        with pytest.raises(ValueError):
            norm.decode_data_uri("https://example.com/a.jpg")

    def test_not_base64(self):
        with pytest.raises(ValueError):
            norm.decode_data_uri("data:text/plain,hello")

    def test_bad_base64(self):
        with pytest.raises(ValueError):
            norm.decode_data_uri("data:image/jpeg;base64,@@@")


class TestAnalysisRequest:
    def test_request_body_fields(self, image_bytes):
        image = norm.normalize(_file_frame(image_bytes(30, 20)))
        body = image.to_request().to_json()
        assert set(body) == {"base64ImageData", "imageMimeType"}
        assert body["imageMimeType"] == "image/jpeg"
        assert not body["base64ImageData"].startswith("data:")
        assert base64.b64decode(body["base64ImageData"]) == image.binary_payload

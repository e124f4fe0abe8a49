"""
image_normalizer.py — turn any captured frame into the canonical upload image.

Every image that reaches the analysis endpoint has gone through normalize():
  • decoded (file bytes via Pillow, camera frames from their pixel array)
  • EXIF orientation applied, transparency flattened onto white
  • longest side capped at MAX_IMAGE_DIMENSION (never upscaled)
  • re-encoded as JPEG at JPEG_QUALITY, whatever the input format

The same frame with the same parameters always yields the same bytes.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

from PIL import Image, ImageOps, UnidentifiedImageError

import config
from capture.base import RawImageFrame
from outcomes import Failure

logger = logging.getLogger(__name__)

OUTPUT_MIME   = "image/jpeg"
OUTPUT_FORMAT = "JPEG"

UNSUPPORTED_FORMAT = "Failed to load image. Unsupported format (e.g. HEIC)? Try JPEG or PNG."
PROCESSING_ERROR   = "Error processing image. Try a standard JPEG or PNG."


@dataclass(frozen=True)
class NormalizedImage:
    mime_type: str
    quality: float
    width: int
    height: int
    preview_uri: str            # data:image/jpeg;base64,...
    binary_payload: bytes
    source_width: int = 0
    source_height: int = 0

    @property
    def base64_data(self) -> str:
        """The payload as plain base64, without the data-URI prefix."""
        return base64.b64encode(self.binary_payload).decode("ascii")

    def to_request(self) -> "AnalysisRequest":
        return AnalysisRequest(image_base64=self.base64_data, mime_type=self.mime_type)


@dataclass(frozen=True)
class AnalysisRequest:
    image_base64: str
    mime_type: str

    def to_json(self) -> dict:
        return {"base64ImageData": self.image_base64, "imageMimeType": self.mime_type}


# ── Data URIs ─────────────────────────────────────────────────────────────────

def to_data_uri(payload: bytes, mime_type: str = OUTPUT_MIME) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode('ascii')}"


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """
    Split a base64 data URI into (mime_type, bytes).
    Raises ValueError for anything that is not a base64 data URI.
    """
    if not uri.startswith("data:") or "," not in uri:
        raise ValueError("not a data URI")
    header, _, body = uri.partition(",")
    if not header.endswith(";base64"):
        raise ValueError("data URI is not base64-encoded")
    mime_type = header[len("data:"):-len(";base64")] or "application/octet-stream"
    try:
        return mime_type, base64.b64decode(body, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"bad base64 in data URI: {exc}") from exc


# ── Geometry ──────────────────────────────────────────────────────────────────

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def target_size(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """
    Scale (width, height) so the longer side is max_dimension.
    Sources that already fit are returned unchanged.
    """
    if max(width, height) <= max_dimension:
        return width, height
    if width > height:
        return max_dimension, max(1, _round_half_up(height * max_dimension / width))
    return max(1, _round_half_up(width * max_dimension / height)), max_dimension


# ── Decoding ──────────────────────────────────────────────────────────────────

def _decode(raw: RawImageFrame) -> Image.Image:
    if raw.pixels is not None:
        return Image.fromarray(raw.pixels)
    img = Image.open(io.BytesIO(raw.data))
    img.load()
    return ImageOps.exif_transpose(img)


def _flatten_alpha_to_white(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        bg = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        return Image.alpha_composite(bg, rgba).convert("RGB")
    return img.convert("RGB")


# ── Public API ────────────────────────────────────────────────────────────────

def normalize(
    raw: RawImageFrame,
    max_dimension: Optional[int] = None,
    quality: Optional[float] = None,
) -> Union[NormalizedImage, Failure]:
    """
    Decode, downsample and re-encode one frame.

    Returns a NormalizedImage, or Failure when the frame cannot be decoded.
    quality is on the 0–1 scale (0.9 → Pillow quality 90).
    """
    max_dimension = config.MAX_IMAGE_DIMENSION if max_dimension is None else max_dimension
    quality = config.JPEG_QUALITY if quality is None else quality
    if max_dimension < 1:
        raise ValueError(f"max_dimension must be positive, got {max_dimension}")
    if not 0 < quality <= 1:
        raise ValueError(f"quality must be in (0, 1], got {quality}")

    try:
        img = _decode(raw)
    except (UnidentifiedImageError, OSError, ValueError, TypeError) as exc:
        logger.warning("Could not decode %s frame %r: %s", raw.origin, raw.name, exc)
        return Failure(UNSUPPORTED_FORMAT)

    try:
        src_w, src_h = img.size
        width, height = target_size(src_w, src_h, max_dimension)
        rgb = _flatten_alpha_to_white(img)
        if (width, height) != (src_w, src_h):
            rgb = rgb.resize((width, height), Image.Resampling.LANCZOS)

        buf = io.BytesIO()
        rgb.save(buf, format=OUTPUT_FORMAT, quality=_round_half_up(quality * 100))
        payload = buf.getvalue()
    except (OSError, ValueError) as exc:
        logger.error("Image processing failed for %r: %s", raw.name, exc)
        return Failure(PROCESSING_ERROR)

    logger.debug(
        "Normalized %s frame %dx%d → %dx%d (%d bytes)",
        raw.origin, src_w, src_h, width, height, len(payload),
    )
    return NormalizedImage(
        mime_type=OUTPUT_MIME,
        quality=quality,
        width=width,
        height=height,
        preview_uri=to_data_uri(payload),
        binary_payload=payload,
        source_width=src_w,
        source_height=src_h,
    )


async def normalize_async(
    raw: RawImageFrame,
    max_dimension: Optional[int] = None,
    quality: Optional[float] = None,
) -> Union[NormalizedImage, Failure]:
    """normalize() in a worker thread, so decoding never blocks the event loop."""
    return await asyncio.to_thread(normalize, raw, max_dimension, quality)

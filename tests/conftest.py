"""
Shared pytest fixtures.

Every test that touches the result store gets a clean temporary DATA_DIR
via the `tmp_data_dir` fixture so tests are fully isolated from each other
and from the real resell_lens.db.
"""
from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(autouse=True)
def tmp_data_dir(tmp_path, monkeypatch):
    """
    Redirect DATA_DIR to a fresh tmp directory for every test.
    This gives each test a clean SQLite file and image directory.
    """
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.setenv("DATA_DIR", str(data))

    # Patch the module-level paths that were already computed at import time
    import result_store
    monkeypatch.setattr(result_store, "DB_PATH", str(data / "resell_lens.db"))
    monkeypatch.setattr(result_store, "IMAGE_DIR", data / "analysis_images")
    monkeypatch.setattr(result_store, "_DATA_DIR", data)

    # Also reset the internal lock so tests don't share state
    import asyncio
    monkeypatch.setattr(result_store, "_lock", asyncio.Lock())

    yield data


@pytest.fixture
def image_bytes():
    """Factory that encodes a solid-colour test image."""
    from PIL import Image

    def _make(width: int, height: int, fmt: str = "PNG", mode: str = "RGB", color=None) -> bytes:
        if color is None:
            color = (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30)
        buf = io.BytesIO()
        Image.new(mode, (width, height), color).save(buf, format=fmt)
        return buf.getvalue()

    return _make

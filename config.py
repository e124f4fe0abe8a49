"""
Central configuration — reads from .env file.

Every value has a sensible default so the endpoint, the Telegram front end
and the tests can all import this module without a fully populated .env.
Code reads config.X at call time, so tests can monkeypatch attributes.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Gemini ────────────────────────────────────────────────────────────────────
# Only the analysis endpoint needs the key; clients never see it.
GOOGLE_API_KEY: str | None = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL: str          = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

# ── Analysis endpoint (server side) ───────────────────────────────────────────
ANALYZE_HOST: str = os.getenv("ANALYZE_HOST", "0.0.0.0")
ANALYZE_PORT: int = int(os.getenv("ANALYZE_PORT", "8080"))

# ── Analysis client ───────────────────────────────────────────────────────────
# Where the client POSTs images. Defaults to the endpoint started by main.py.
ANALYZE_ENDPOINT_URL: str = (
    os.getenv("ANALYZE_ENDPOINT_URL", "").strip()
    or f"http://127.0.0.1:{ANALYZE_PORT}/analyzeImage"
)
ANALYZE_TIMEOUT_SECS: float = float(os.getenv("ANALYZE_TIMEOUT_SECS", "60"))

# ── Image normalization ───────────────────────────────────────────────────────
MAX_IMAGE_DIMENSION: int = int(os.getenv("MAX_IMAGE_DIMENSION", "1024"))
JPEG_QUALITY: float      = float(os.getenv("JPEG_QUALITY", "0.9"))

# ── Camera ────────────────────────────────────────────────────────────────────
CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))

# ── History ───────────────────────────────────────────────────────────────────
# The UI stops waiting after this many seconds; the write itself keeps going.
SAVE_TIMEOUT_SECS: float = float(os.getenv("SAVE_TIMEOUT_SECS", "20"))

# ── Telegram front end (optional) ─────────────────────────────────────────────
TELEGRAM_BOT_TOKEN: str | None = os.getenv("TELEGRAM_BOT_TOKEN") or None

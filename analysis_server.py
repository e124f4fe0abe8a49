"""
analysis_server.py — the stateless analysis endpoint.

Runs as an aiohttp web server. Clients POST a normalized image; the server
forwards it to Gemini (the API key never leaves this process) and returns
the parsed result.

Endpoints:
  POST /analyzeImage   {base64ImageData, imageMimeType}
                       → 200 {analysis, candidates} | 200 {notice}
                       → 400 {error}  missing fields, bad base64, content blocked
                       → 405          any other method
                       → 500 {error}  model/format/SDK failures
  GET  /health         → plain-text health check

Every call is independent: no auth, no rate limiting, no deduplication.
"""
from __future__ import annotations

import json
import logging
from typing import Optional

from aiohttp import web

import config
from errors import FormatError, InputError, ModelError
from vision_model import GeminiAnalyzer

logger = logging.getLogger(__name__)

MISSING_FIELDS = "Missing base64ImageData or imageMimeType in request body."

ANALYZER_KEY = web.AppKey("analyzer", object)


# ── Middleware ─────────────────────────────────────────────────────────────────

@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Reflect the caller's Origin so a browser front end on any host can call us."""
    if request.method == "OPTIONS":
        response: web.StreamResponse = web.Response(status=204)
    else:
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            _add_cors_headers(request, exc)
            raise
    _add_cors_headers(request, response)
    return response


def _add_cors_headers(request: web.Request, response: web.StreamResponse) -> None:
    origin = request.headers.get("Origin")
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"


# ── Request handlers ───────────────────────────────────────────────────────────

async def handle_analyze(request: web.Request) -> web.Response:
    if request.method != "POST":
        return web.Response(status=405, text="Method Not Allowed", content_type="text/plain")

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    if not isinstance(body, dict):
        body = {}

    base64_image_data = body.get("base64ImageData")
    image_mime_type   = body.get("imageMimeType")
    if (
        not base64_image_data or not isinstance(base64_image_data, str)
        or not image_mime_type or not isinstance(image_mime_type, str)
    ):
        logger.error("Missing base64ImageData or imageMimeType in request body")
        return web.json_response({"error": MISSING_FIELDS}, status=400)

    analyzer = request.app[ANALYZER_KEY]
    try:
        reply = await analyzer.analyse(base64_image_data, image_mime_type)
    except InputError as exc:
        return web.json_response({"error": str(exc)}, status=exc.status)
    except ModelError as exc:
        logger.error("Gemini produced no usable content: %s", exc)
        return web.json_response(_error_body(str(exc), exc.candidates), status=exc.status)
    except FormatError as exc:
        logger.error("Gemini output could not be used: %s", exc)
        return web.json_response(_error_body(str(exc), exc.candidates), status=500)
    except Exception as exc:
        logger.error("Gemini API interaction failed: %s", exc, exc_info=True)
        return web.json_response(
            {"error": f"Gemini API interaction error: {exc}"}, status=500,
        )

    logger.info("Analysis served (notice=%s)", bool(reply.notice))
    return web.json_response(reply.to_json(), status=200)


async def handle_health(request: web.Request) -> web.Response:
    """Health check — returns 200 OK. Use with uptime monitors."""
    return web.Response(text="OK", content_type="text/plain")


def _error_body(message: str, candidates: list[dict]) -> dict:
    body: dict = {"error": message}
    if candidates:
        body["candidates"] = candidates
    return body


# ── App factory ────────────────────────────────────────────────────────────────

def build_web_app(analyzer: Optional[object] = None) -> web.Application:
    """
    analyzer is anything with `async analyse(base64, mime) -> ModelReply`;
    defaults to a GeminiAnalyzer built from config.
    """
    if analyzer is None:
        if not config.GOOGLE_API_KEY:
            raise RuntimeError("GOOGLE_API_KEY is not set — the analysis endpoint cannot start.")
        analyzer = GeminiAnalyzer(config.GOOGLE_API_KEY, config.GEMINI_MODEL)

    app = web.Application(middlewares=[cors_middleware], client_max_size=20 * 1024 ** 2)
    app[ANALYZER_KEY] = analyzer
    app.router.add_get("/health", handle_health)
    app.router.add_route("*", "/analyzeImage", handle_analyze)
    return app


async def start_server(analyzer: Optional[object] = None) -> web.AppRunner:
    """Start the web server. Returns runner so caller can shut it down cleanly."""
    app    = build_web_app(analyzer)
    runner = web.AppRunner(app, access_log=logger)
    await runner.setup()
    site = web.TCPSite(runner, config.ANALYZE_HOST, config.ANALYZE_PORT)
    await site.start()
    logger.info(
        "🔍 Analysis endpoint listening on %s:%d",
        config.ANALYZE_HOST, config.ANALYZE_PORT,
    )
    return runner

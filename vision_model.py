"""
Gemini product analysis — uses the google-genai SDK.

One call per request: a single user turn carrying the image and a short
instruction, a fixed system prompt asking for a strict JSON object, and the
Google Search tool so prices can be grounded in live listings.

The model's text is "best effort" JSON. interpret_response() turns whatever
came back into either a ModelReply or a typed error:

  text parses, has productName + description   → ModelReply(analysis=...)
  text parses, wrong shape                      → FormatError
  text does not parse                           → FormatError
  no text, prompt blocked                       → ModelError (400)
  no text, finish reason other than STOP        → ModelError (500)
  no text, no explanation / blank text          → ModelReply(notice=...)
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from google import genai
from google.genai import types as genai_types

import config
from errors import FormatError, InputError, ModelError

logger = logging.getLogger(__name__)

# ── Prompt ────────────────────────────────────────────────────────────────────

SYSTEM_PROMPT = """You are an expert product analyst. Analyze the provided image to identify the specific product.
Your goal is to return a single, valid JSON object with the following structure and content:
{
  "productName": "string (Full product name, including brand and model, e.g., 'Sony WH-1000XM4 Wireless Noise-Cancelling Headphones')",
  "description": "string (A detailed description of the item, its key features, and common uses. Be thorough.)",
  "averageSalePrice": "string (Estimated average current market sale price for this product when new or in like-new condition. Provide a range if appropriate, e.g., '$250 - $300 USD'. If unknown, state 'Unknown'.)",
  "resellPrice": "string (Estimated average resell price for this product in good used condition. Provide a range if appropriate, e.g., '$150 - $200 USD'. If unknown, state 'Unknown'.)"
}
Focus on the primary product in the image.
Ensure the output is ONLY the JSON object. Do not include any markdown formatting like ```json or explanatory text before or after the JSON.
Utilize web search capabilities if available to gather accurate information for pricing and product details."""

USER_PROMPT = "Analyze the product in this image according to your instructions."

# ── Messages returned to the client ───────────────────────────────────────────

PARSE_ERROR    = "Could not parse AI's JSON response. The AI might have returned text that is not valid JSON."
SHAPE_ERROR    = "AI's response was not in the expected JSON format."
NO_CONTENT     = "AI analysis returned no specific content from Gemini."
EMPTY_CONTENT  = "AI analysis resulted in empty content."
INVALID_BASE64 = "Invalid base64ImageData."

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


@dataclass
class ModelReply:
    """A usable answer: either a parsed analysis or an informational notice."""
    analysis: Optional[dict] = None
    notice: Optional[str] = None
    candidates: list[dict] = field(default_factory=list)
    latency_ms: int = 0

    def to_json(self) -> dict:
        body: dict[str, Any] = {}
        if self.analysis is not None:
            body["analysis"] = self.analysis
        if self.notice:
            body["notice"] = self.notice
        if self.candidates:
            body["candidates"] = self.candidates
        return body


# ── Text parsing ──────────────────────────────────────────────────────────────

def strip_code_fence(text: str) -> str:
    """Remove one ```/```json fence around the whole text, if present."""
    text = text.strip()
    match = _FENCE_RE.match(text)
    if match and match.group(1):
        return match.group(1).strip()
    return text


def parse_analysis_text(text: str, candidates: Optional[list[dict]] = None) -> dict:
    """
    Parse the model's text into the analysis object.
    Raises FormatError when it is not JSON or lacks the string fields we need.
    """
    cleaned = strip_code_fence(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("Non-JSON model response (%s): %s", exc, cleaned[:200])
        raise FormatError(PARSE_ERROR, candidates) from exc

    if (
        not isinstance(data, dict)
        or not isinstance(data.get("productName"), str)
        or not isinstance(data.get("description"), str)
    ):
        logger.warning("Model JSON not in the expected format: %.200r", data)
        raise FormatError(SHAPE_ERROR, candidates)
    return data


def strip_data_uri_prefix(data: str) -> str:
    """'data:image/jpeg;base64,AAAA' → 'AAAA'; plain base64 passes through."""
    if data.startswith("data:"):
        return data.split(",", 1)[1] if "," in data else ""
    return data


# ── Response interpretation ───────────────────────────────────────────────────

def _enum_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", None) or getattr(value, "name", None) or value)


def _candidate_to_json(candidate: Any) -> dict:
    """Project an SDK candidate onto the plain JSON the client understands."""
    out: dict[str, Any] = {}

    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []
    texts = [{"text": p.text} for p in parts if getattr(p, "text", None)]
    if texts:
        out["content"] = {"parts": texts}

    finish = _enum_name(getattr(candidate, "finish_reason", None))
    if finish:
        out["finishReason"] = finish

    metadata = getattr(candidate, "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    webs = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        if web is None or not getattr(web, "uri", None):
            continue
        entry = {"uri": web.uri}
        if getattr(web, "title", None):
            entry["title"] = web.title
        webs.append({"web": entry})
    if webs:
        out["groundingMetadata"] = {"groundingChunks": webs}
    return out


def interpret_response(response: Any) -> ModelReply:
    """Map a GenerateContentResponse onto ModelReply / ModelError / FormatError."""
    raw_candidates = getattr(response, "candidates", None) or []
    candidates = [_candidate_to_json(c) for c in raw_candidates]
    text = getattr(response, "text", None)

    if text is None:
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = _enum_name(getattr(feedback, "block_reason", None))
        if block_reason:
            detail = getattr(feedback, "block_reason_message", None) or ""
            message = f"Gemini content generation was blocked. Reason: {block_reason}. {detail}".strip()
            logger.warning("Gemini content blocked: %s", message)
            raise ModelError(message, status=400, candidates=candidates)

        finish = _enum_name(getattr(raw_candidates[0], "finish_reason", None)) if raw_candidates else None
        if finish and finish != "STOP":
            message = f"Gemini content generation failed or was stopped. Reason: {finish}."
            logger.warning("Gemini content generation stopped: %s", message)
            raise ModelError(message, status=500, candidates=candidates)

        logger.info("Gemini returned no specific content but no explicit error/block.")
        return ModelReply(notice=NO_CONTENT, candidates=candidates)

    if not text.strip():
        logger.warning("Gemini analysis returned empty string content.")
        return ModelReply(notice=EMPTY_CONTENT, candidates=candidates)

    analysis = parse_analysis_text(text, candidates)
    logger.info("Parsed analysis for %r", analysis.get("productName"))
    return ModelReply(analysis=analysis, candidates=candidates)


# ── Gemini client ─────────────────────────────────────────────────────────────

class GeminiAnalyzer:

    def __init__(self, api_key: str, model: Optional[str] = None):
        self.name     = "google"
        self.model_id = model or config.GEMINI_MODEL
        self._client  = genai.Client(api_key=api_key)

    @property
    def full_name(self) -> str:
        return f"{self.name}/{self.model_id}"

    async def analyse(self, base64_image_data: str, image_mime_type: str) -> ModelReply:
        """
        Run one grounded analysis call.
        Raises InputError for undecodable base64, ModelError / FormatError for
        unusable model output; SDK and network errors propagate unchanged.
        """
        try:
            image_bytes = base64.b64decode(strip_data_uri_prefix(base64_image_data), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InputError(INVALID_BASE64) from exc
        if not image_bytes:
            raise InputError(INVALID_BASE64)

        gen_config = genai_types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT,
            tools=[genai_types.Tool(google_search=genai_types.GoogleSearch())],
        )
        contents = [
            genai_types.Content(
                role="user",
                parts=[
                    genai_types.Part.from_bytes(data=image_bytes, mime_type=image_mime_type),
                    genai_types.Part.from_text(text=USER_PROMPT),
                ],
            )
        ]

        logger.info("Calling Gemini model %s (%d image bytes)", self.model_id, len(image_bytes))
        t0 = time.monotonic()
        response = await self._client.aio.models.generate_content(
            model=self.model_id,
            contents=contents,
            config=gen_config,
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        reply = interpret_response(response)
        reply.latency_ms = latency_ms
        logger.info("[%s] answered in %dms", self.full_name, latency_ms)
        return reply

"""
analysis_client.py — sends a normalized image to the analysis endpoint.

One POST per call, no retries, no streaming. analyze() never raises: every
transport problem, HTTP error and odd response body becomes an outcome.

Body mapping (2xx):
  analysis present  → Success (sources from candidates' grounding metadata)
  error present     → Failure
  notice present    → Notice
  none of the above → Failure
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

import config
from errors import TransportError
from image_normalizer import NormalizedImage
from outcomes import AnalysisOutcome, Failure, Notice, Success

logger = logging.getLogger(__name__)

NO_VALID_RESULT = "AI analysis did not return a valid result from the server."
UNREACHABLE     = "Failed to communicate with the analysis server."


def outcome_from_body(body: Any) -> AnalysisOutcome:
    """Map a decoded 2xx response body onto exactly one outcome."""
    if not isinstance(body, dict):
        return Failure(NO_VALID_RESULT)

    analysis = body.get("analysis")
    if analysis:
        if not isinstance(analysis, dict):
            return Failure(NO_VALID_RESULT)
        return Success.from_json(analysis, body.get("candidates"))
    if body.get("error"):
        return Failure(str(body["error"]))
    if body.get("notice"):
        return Notice(str(body["notice"]))
    return Failure(NO_VALID_RESULT)


class AnalysisClient:

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        timeout_secs: Optional[float] = None,
    ) -> None:
        self.endpoint_url = endpoint_url or config.ANALYZE_ENDPOINT_URL
        self._timeout = aiohttp.ClientTimeout(
            total=config.ANALYZE_TIMEOUT_SECS if timeout_secs is None else timeout_secs
        )

    async def analyze(self, image: NormalizedImage) -> AnalysisOutcome:
        try:
            body = await self._post(image.to_request().to_json())
        except TransportError as exc:
            logger.error("Analysis request failed: %s", exc)
            return Failure(str(exc) or UNREACHABLE)
        except Exception as exc:
            logger.error("Unexpected error calling the analysis server: %s", exc, exc_info=True)
            return Failure(str(exc) or UNREACHABLE)

        outcome = outcome_from_body(body)
        logger.info("Analysis outcome: %s", type(outcome).__name__)
        return outcome

    # ── HTTP helper ───────────────────────────────────────────────────────────

    async def _post(self, payload: dict) -> Any:
        """
        Single HTTP call. Returns the decoded body; non-2xx replies with a JSON
        body are folded into {"error": ...}. Raises TransportError otherwise.
        """
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.endpoint_url,
                    json=payload,
                    timeout=self._timeout,
                ) as resp:
                    if resp.status >= 300:
                        return await self._error_body(resp)
                    try:
                        return await resp.json(content_type=None)
                    except ValueError as exc:
                        raise TransportError(
                            f"Analysis server returned an unreadable response ({resp.status})."
                        ) from exc
        except asyncio.TimeoutError as exc:
            raise TransportError("Timed out waiting for the analysis server.") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(str(exc) or UNREACHABLE) from exc

    @staticmethod
    async def _error_body(resp: aiohttp.ClientResponse) -> dict:
        try:
            data = await resp.json(content_type=None)
        except ValueError as exc:
            raise TransportError(f"Server responded with {resp.status}: {resp.reason}") from exc
        logger.error("Server error response (%d): %.300r", resp.status, data)
        message = data.get("error") if isinstance(data, dict) else None
        return {"error": message or f"Server error: {resp.status}"}

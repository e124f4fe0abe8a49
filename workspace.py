"""
workspace.py — interaction-layer state for one user.

Ties capture, normalization, analysis and saving together the way a screen
would: one image (or one live camera) at a time, one analysis in flight,
and a save that stops waiting after SAVE_TIMEOUT_SECS.

    async with Workspace(client, session) as ws:
        await ws.select_file(FileSource(path="mug.jpg"))
        outcome = await ws.analyse()
        if isinstance(outcome, Success):
            await ws.save()

Leaving the `async with` block (or signing out) always releases the camera.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import config
import result_store
from analysis_client import AnalysisClient
from capture.base import CaptureSource
from capture.camera_source import CameraSource
from errors import InputError, StorageError
from image_normalizer import NormalizedImage, normalize_async
from outcomes import AnalysisOutcome, Failure, Notice, Success
from result_store import HistoryEntry
from session import SessionHolder, User

logger = logging.getLogger(__name__)

NO_IMAGE        = "No image selected to analyze."
ALREADY_RUNNING = "An analysis is already in progress."
NOT_SIGNED_IN   = "You must be logged in to save results."
NOTHING_TO_SAVE = "There is no analysis result to save."


class Workspace:

    def __init__(
        self,
        client: AnalysisClient,
        session: SessionHolder,
        camera_factory: Callable[[], CameraSource] = CameraSource,
    ) -> None:
        self._client = client
        self._session = session
        self._camera_factory = camera_factory
        self._camera: Optional[CameraSource] = None

        self.image: Optional[NormalizedImage] = None
        self.outcome: Optional[AnalysisOutcome] = None
        self.input_error: Optional[str] = None
        self.is_analysing = False
        self.is_saving = False

        self._unsubscribe = session.subscribe(self._on_user_changed)

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def camera_open(self) -> bool:
        return self._camera is not None and self._camera.is_streaming

    @property
    def can_analyse(self) -> bool:
        return self.image is not None and not self.is_analysing

    def _reset_results(self) -> None:
        self.outcome = None
        self.input_error = None

    def clear(self) -> None:
        """Drop the image, any result and any open camera."""
        self._release_camera()
        self.image = None
        self._reset_results()

    # ── Image sources ─────────────────────────────────────────────────────────

    async def select_file(self, source: CaptureSource) -> Optional[NormalizedImage]:
        """Read and normalize a file. Stops the camera first: one source at a time."""
        self._release_camera()
        self._reset_results()
        try:
            raw = await source.capture()
        except InputError as exc:
            return self._fail_input(str(exc))
        return await self._adopt(raw)

    async def start_camera(self) -> bool:
        """Open the camera. Clears any file preview. Returns False if unavailable."""
        self._release_camera()
        self.image = None
        self._reset_results()

        camera = self._camera_factory()
        try:
            await camera.open()
        except InputError as exc:
            logger.warning("Error accessing camera: %s", exc)
            self.input_error = str(exc)
            return False
        finally:
            if not camera.is_streaming:
                camera.stop()
        self._camera = camera
        return True

    async def capture(self) -> Optional[NormalizedImage]:
        """Snapshot the live camera into the current image, then release it."""
        camera = self._camera
        if camera is None:
            return self._fail_input("Camera is not open.")
        self.input_error = None
        try:
            raw = await camera.capture()
        except InputError as exc:
            return self._fail_input(str(exc))
        finally:
            self._release_camera()
        return await self._adopt(raw)

    def cancel_camera(self) -> None:
        self._release_camera()
        self.input_error = None

    async def _adopt(self, raw) -> Optional[NormalizedImage]:
        result = await normalize_async(raw)
        if isinstance(result, Failure):
            return self._fail_input(result.message)
        self.image = result
        self._reset_results()
        return result

    def _fail_input(self, message: str) -> None:
        self.image = None
        self.input_error = message
        return None

    def _release_camera(self) -> None:
        camera, self._camera = self._camera, None
        if camera is not None:
            camera.stop()

    # ── Analysis ──────────────────────────────────────────────────────────────

    async def analyse(self) -> AnalysisOutcome:
        if self.image is None:
            self.outcome = Failure(NO_IMAGE)
            return self.outcome
        if self.is_analysing:
            return Notice(ALREADY_RUNNING)

        self.is_analysing = True
        self.outcome = None
        try:
            self.outcome = await self._client.analyze(self.image)
        finally:
            self.is_analysing = False
        return self.outcome

    # ── Saving ────────────────────────────────────────────────────────────────

    async def save(
        self,
        user: Optional[User] = None,
        timeout_secs: Optional[float] = None,
        result: Optional[Success] = None,
        preview_uri: Optional[str] = None,
    ) -> str:
        """
        Save a Success to the user's history and return the entry id.

        Saves the current outcome and image unless an earlier `result` (and
        its `preview_uri`) is passed in, as a front end showing several
        result cards does.

        Waits at most timeout_secs (default SAVE_TIMEOUT_SECS). On timeout a
        StorageError is raised but the write keeps running; its late result
        is logged. The displayed outcome is never touched.
        """
        user = user or self._session.current_user
        if user is None:
            raise StorageError(NOT_SIGNED_IN)
        if result is None:
            result = self.outcome
            preview_uri = self.image.preview_uri if self.image else None
        if not isinstance(result, Success):
            raise StorageError(NOTHING_TO_SAVE)
        outcome = result

        entry = HistoryEntry(
            user_id=user.uid,
            product_name=outcome.product_name or "Unnamed Product",
            description=outcome.description or "No description available.",
            average_sale_price=outcome.average_sale_price or "Unknown",
            resell_price=outcome.resell_price or "Unknown",
        )
        timeout = config.SAVE_TIMEOUT_SECS if timeout_secs is None else timeout_secs

        task = asyncio.ensure_future(result_store.save(entry, preview_uri))
        self.is_saving = True
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            task.add_done_callback(_log_late_save)
            seconds = f"{timeout:g}"
            raise StorageError(f"Save operation timed out after {seconds} seconds") from None
        finally:
            self.is_saving = False

    # ── Teardown ──────────────────────────────────────────────────────────────

    def _on_user_changed(self, user: Optional[User]) -> None:
        if user is None:
            self.clear()

    async def close(self) -> None:
        self._unsubscribe()
        self._release_camera()

    async def __aenter__(self) -> "Workspace":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        await self.close()
        return False


def _log_late_save(task: asyncio.Future) -> None:
    if task.cancelled():
        logger.warning("Background save was cancelled after the timeout")
    elif task.exception() is not None:
        logger.error("Background save failed after the timeout: %s", task.exception())
    else:
        logger.info("Background save finished after the timeout: %s", task.result())

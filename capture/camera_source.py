"""
Live camera capture source — OpenCV VideoCapture on a local video device.

Lifecycle:
  CLOSED → OPENING → STREAMING → CLOSED

The device handle is exclusive and must be released on every exit path.
Use it as an async context manager, or pair every open() with stop():

    async with CameraSource() as camera:
        frame = await camera.capture()

capture() snapshots the current frame and leaves the stream running.
stop() is idempotent and never raises.
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Optional

import cv2

import config
from capture.base import CaptureSource, RawImageFrame
from errors import CameraFailure, CameraUnavailable, InputError

logger = logging.getLogger(__name__)

CAPTURE_ERROR = "Could not capture image."

# V4L2 exposes cameras as device nodes; elsewhere we can only try to open.
PROBE_DEVICE_NODES: bool = sys.platform.startswith("linux")
DEVICE_PATH = "/dev/video{index}"


class CameraState(str, Enum):
    CLOSED    = "closed"
    OPENING   = "opening"
    STREAMING = "streaming"


def _probe_device(index: int) -> None:
    """Tell 'no device' apart from 'no permission' before OpenCV hides both."""
    if not PROBE_DEVICE_NODES:
        return
    path = Path(DEVICE_PATH.format(index=index))
    if not path.exists():
        raise CameraUnavailable(CameraFailure.NOT_FOUND, str(path))
    if not os.access(path, os.R_OK | os.W_OK):
        raise CameraUnavailable(CameraFailure.PERMISSION_DENIED, str(path))


class CameraSource(CaptureSource):

    def __init__(self, device_index: Optional[int] = None) -> None:
        self.kind         = "camera"
        self.device_index = config.CAMERA_INDEX if device_index is None else device_index
        self.state        = CameraState.CLOSED
        self._cam: Optional[cv2.VideoCapture] = None

    @property
    def is_streaming(self) -> bool:
        return self.state is CameraState.STREAMING

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def open(self) -> None:
        """Acquire the device. Raises CameraUnavailable with a distinct reason."""
        if self.state is not CameraState.CLOSED:
            return
        self.state = CameraState.OPENING
        try:
            cam = await asyncio.to_thread(self._open_device)
        except CameraUnavailable:
            self.state = CameraState.CLOSED
            raise
        except cv2.error as exc:
            self.state = CameraState.CLOSED
            raise CameraUnavailable(CameraFailure.OTHER, str(exc)) from exc

        if self.state is not CameraState.OPENING:
            # stop() was called while the device was still opening
            cam.release()
            logger.info("Camera %d released: stopped while opening", self.device_index)
            return

        self._cam  = cam
        self.state = CameraState.STREAMING
        logger.info("Camera %d streaming", self.device_index)

    def _open_device(self) -> cv2.VideoCapture:
        _probe_device(self.device_index)
        cam = cv2.VideoCapture(self.device_index)
        if not cam.isOpened():
            cam.release()
            raise CameraUnavailable(
                CameraFailure.OTHER, f"device {self.device_index} did not open"
            )
        return cam

    def stop(self) -> None:
        """Release the device unconditionally."""
        cam, self._cam = self._cam, None
        was = self.state
        self.state = CameraState.CLOSED
        if cam is None:
            return
        try:
            cam.release()
        except cv2.error as exc:
            logger.warning("Camera %d release failed: %s", self.device_index, exc)
        if was is CameraState.STREAMING:
            logger.info("Camera %d closed", self.device_index)

    async def __aenter__(self) -> "CameraSource":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> bool:
        self.stop()
        return False

    # ── Capture ───────────────────────────────────────────────────────────────

    async def capture(self) -> RawImageFrame:
        cam = self._cam
        if not self.is_streaming or cam is None:
            raise InputError(CAPTURE_ERROR)

        ok, frame = await asyncio.to_thread(cam.read)
        if not ok or frame is None:
            raise InputError(CAPTURE_ERROR)

        # cvtColor allocates a new array, so the frame owns its pixels
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return RawImageFrame(origin=self.kind, pixels=rgb, name="capture.jpg")

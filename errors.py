"""
errors.py — exception taxonomy shared by every layer.

  InputError       bad/unreadable image, camera unavailable   (resolved locally)
  TransportError   network/HTTP failure reaching the endpoint  (→ Failure)
  ModelError       content blocked, non-STOP finish reason     (→ Failure)
  FormatError      model text is not the expected JSON         (→ Failure)
  StorageError     save/list/delete against the result store
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ResellLensError(Exception):
    """Base class for every error raised on purpose by this project."""

    status: int = 500   # HTTP status used when the error reaches the endpoint


class InputError(ResellLensError):
    status = 400


class CameraFailure(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND         = "not_found"
    OTHER             = "other"


_CAMERA_MESSAGES = {
    CameraFailure.PERMISSION_DENIED: "Camera access denied. Please grant permission.",
    CameraFailure.NOT_FOUND:         "No camera found.",
    CameraFailure.OTHER:             "Could not access camera.",
}


class CameraUnavailable(InputError):
    """Opening the video device failed; `reason` tells the caller why."""

    def __init__(self, reason: CameraFailure, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(_CAMERA_MESSAGES[reason])


class TransportError(ResellLensError):
    pass


class ModelError(ResellLensError):
    """The model answered but produced no usable text."""

    def __init__(
        self,
        message: str,
        status: int = 500,
        candidates: Optional[list[dict]] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.candidates = candidates or []


class FormatError(ResellLensError):
    """The model produced text that is not the JSON object we asked for."""

    def __init__(self, message: str, candidates: Optional[list[dict]] = None) -> None:
        super().__init__(message)
        self.candidates = candidates or []


class StorageError(ResellLensError):
    pass

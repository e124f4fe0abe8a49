"""
Shared types and base class for all capture sources.

A capture source produces one RawImageFrame per capture() call. What the
frame holds depends on where it came from:
  file    → the encoded bytes exactly as read (decoded later by the normalizer)
  camera  → an RGB pixel array snapshotted from the live stream
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class RawImageFrame:
    """An image of unknown format. Ephemeral: dropped once normalized."""
    origin: str                          # "file" | "camera"
    data: bytes = b""                    # encoded file contents
    pixels: Optional[np.ndarray] = None  # H×W×3 RGB, uint8
    name: str = ""                       # original file name, if any

    @property
    def is_decoded(self) -> bool:
        return self.pixels is not None


class CaptureSource(ABC):
    """Base class every image producer must implement."""

    kind: str   # e.g. "file", "camera"

    @abstractmethod
    async def capture(self) -> RawImageFrame:
        """Produce one frame. Raises InputError when nothing can be produced."""
        ...

"""
File capture source — a user-selected file on disk or an upload already in memory.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from capture.base import CaptureSource, RawImageFrame
from errors import InputError

logger = logging.getLogger(__name__)

READ_ERROR = "Error reading file."


class FileSource(CaptureSource):

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        data: Optional[bytes] = None,
        name: str = "",
    ) -> None:
        if (path is None) == (data is None):
            raise ValueError("FileSource needs exactly one of path or data")
        self.kind  = "file"
        self._path = Path(path) if path is not None else None
        self._data = data
        self.name  = name or (self._path.name if self._path else "upload")

    async def capture(self) -> RawImageFrame:
        if self._data is not None:
            data = self._data
        else:
            try:
                data = await asyncio.to_thread(self._path.read_bytes)
            except OSError as exc:
                logger.warning("Could not read %s: %s", self._path, exc)
                raise InputError(READ_ERROR) from exc

        if not data:
            raise InputError(READ_ERROR)
        return RawImageFrame(origin=self.kind, data=bytes(data), name=self.name)

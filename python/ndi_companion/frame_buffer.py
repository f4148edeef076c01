"""
  ==============================================================================

   This file is part of the YUP library.
   Copyright (c) 2025 - kunitoki@gmail.com

   YUP is an open source library subject to open-source licensing.

   The code included in this file is provided under the terms of the ISC license
   http://www.isc.org/downloads/software-support-policy/isc-license. Permission
   to use, copy, modify, and/or distribute this software for any purpose with or
   without fee is hereby granted provided that the above copyright notice and
   this permission notice appear in all copies.

   YUP IS PROVIDED "AS IS" WITHOUT ANY WARRANTY, AND ALL WARRANTIES, WHETHER
   EXPRESSED OR IMPLIED, INCLUDING MERCHANTABILITY AND FITNESS FOR PURPOSE, ARE
   DISCLAIMED.

  ==============================================================================

Latest-frame hand-off between the capture and transmission loops.

:class:`FrameBuffer` holds a single frame. Capture overwrites it and
transmission re-reads it, so nothing accumulates when one side is faster.
"""

from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Callable, Optional

from .decoder import BYTES_PER_PIXEL

__all__ = ["Frame", "FrameBuffer"]


TimeProvider = Callable[[], float]


@dataclass(frozen=True, slots=True)
class Frame:
    """A decoded RGBA snapshot of one output."""

    pixels: bytes
    width: int
    height: int
    captured_at: float

    def __post_init__ (self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Frame dimensions must be positive")

        if not isinstance(self.pixels, bytes):
            # Frames are shared across threads; only immutable payloads are accepted.
            object.__setattr__(self, "pixels", bytes(self.pixels))

        expected = self.width * self.height * BYTES_PER_PIXEL
        if len(self.pixels) != expected:
            raise ValueError(f"Frame payload is {len(self.pixels)} bytes; expected {expected}")

    @property
    def stride (self) -> int:
        return self.width * BYTES_PER_PIXEL


class FrameBuffer:
    """Single-slot, overwrite-on-write holder for the most recent :class:`Frame`."""

    def __init__ (self, time_provider: TimeProvider = time.monotonic) -> None:
        self._time_provider = time_provider
        self._lock = threading.Lock()
        self._frame: Optional[Frame] = None
        self._published = 0

    def publish (self, frame: Frame) -> None:
        with self._lock:
            self._frame = frame
            self._published += 1

    def latest (self) -> Optional[Frame]:
        with self._lock:
            return self._frame

    def age (self) -> Optional[float]:
        """Seconds since the held frame was captured, or ``None`` when empty."""

        frame = self.latest()
        if frame is None:
            return None
        return max(0.0, self._time_provider() - frame.captured_at)

    def reset (self) -> None:
        with self._lock:
            self._frame = None

    @property
    def frames_published (self) -> int:
        return self._published

    def __repr__ (self) -> str:
        frame = self.latest()
        held = f"{frame.width}x{frame.height}" if frame is not None else "empty"
        return f"FrameBuffer({held}, published={self._published})"

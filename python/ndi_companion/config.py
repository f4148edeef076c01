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
"""

from __future__ import annotations

from dataclasses import dataclass
import enum
import logging
import math
from typing import Any, Tuple

__all__ = [
    "CaptureMode",
    "OutputConfig",
    "MIN_WIDTH",
    "MAX_WIDTH",
    "MIN_HEIGHT",
    "MAX_HEIGHT",
    "DEFAULT_FRAME_RATE",
]

_logger = logging.getLogger(__name__)

MIN_WIDTH = 320
MAX_WIDTH = 7680
MIN_HEIGHT = 240
MAX_HEIGHT = 4320
DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
DEFAULT_FRAME_RATE = 30


class CaptureMode(str, enum.Enum):
    """How a capture loop obtains still images from the renderer."""

    POLLING = "polling"
    STREAM = "stream"


def _clamp (value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


@dataclass(frozen=True, slots=True)
class OutputConfig:
    """Desired state of one output.

    Values are validated and clamped here, once; pipelines and the
    orchestrator rely on them without re-checking. ``capture_mode=STREAM``
    cannot carry an alpha channel, so combining it with ``preserve_alpha`` is
    rejected.
    """

    identity: str
    enabled: bool = False
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    frame_rate: int = DEFAULT_FRAME_RATE
    source_label: str = ""
    url: str = ""
    capture_mode: CaptureMode = CaptureMode.POLLING
    preserve_alpha: bool = True

    def __post_init__ (self) -> None:
        if not self.identity:
            raise ValueError("Output identity must be a non-empty string")

        for name in ("width", "height", "frame_rate"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"{name} must be a number")
            if isinstance(value, float) and not math.isfinite(value):
                raise ValueError(f"{name} must be finite")

        frame_rate = int(round(self.frame_rate))
        if frame_rate <= 0:
            raise ValueError("frame_rate must be positive")

        width = _clamp(int(self.width), MIN_WIDTH, MAX_WIDTH)
        height = _clamp(int(self.height), MIN_HEIGHT, MAX_HEIGHT)
        if (width, height) != (self.width, self.height):
            _logger.debug(
                "Output %s geometry %sx%s clamped to %dx%d",
                self.identity,
                self.width,
                self.height,
                width,
                height,
            )

        try:
            mode = CaptureMode(self.capture_mode)
        except ValueError as exc:
            raise ValueError(f"Unknown capture mode: {self.capture_mode!r}") from exc

        if mode is CaptureMode.STREAM and self.preserve_alpha:
            raise ValueError("Stream capture does not carry an alpha channel; use polling to preserve transparency")

        object.__setattr__(self, "width", width)
        object.__setattr__(self, "height", height)
        object.__setattr__(self, "frame_rate", frame_rate)
        object.__setattr__(self, "capture_mode", mode)
        object.__setattr__(self, "enabled", bool(self.enabled))
        if not self.source_label:
            object.__setattr__(self, "source_label", f"LyricDisplay {self.identity}")

    @classmethod
    def default (cls, identity: str, **overrides: Any) -> "OutputConfig":
        """Build a config with every option at its default.

        * ``enabled``: ``False``
        * ``width`` x ``height``: 1920 x 1080, clamped to [320, 7680] x [240, 4320]
        * ``frame_rate``: 30
        * ``source_label``: ``"LyricDisplay <identity>"``
        * ``url``: empty; the renderer decides where to navigate
        * ``capture_mode``: :attr:`CaptureMode.POLLING`
        * ``preserve_alpha``: ``True``
        """

        return cls(identity=identity, **overrides)

    @property
    def geometry (self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def frame_interval (self) -> float:
        return 1.0 / self.frame_rate

    def requires_new_surface (self, other: "OutputConfig") -> bool:
        """Whether moving from ``self`` to ``other`` needs a fresh render surface."""

        return (
            self.geometry != other.geometry
            or self.url != other.url
            or self.capture_mode is not other.capture_mode
            or self.preserve_alpha != other.preserve_alpha
        )

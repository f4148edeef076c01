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

from fractions import Fraction
import logging
from typing import Any, Protocol, Tuple

from .config import OutputConfig

try:  # pragma: no cover - optional dependency handled lazily
    import cyndilib
except ImportError:  # pragma: no cover - exercised in tests via dependency injection
    cyndilib = None  # type: ignore

__all__ = ["SenderHandle", "SenderFactory", "CyndiLibSender", "cyndilib_sender_factory"]

_logger = logging.getLogger(__name__)


class SenderHandle(Protocol):
    """Protocol implemented by sender adapters used by output pipelines."""

    def send (self, buffer: memoryview, width: int, height: int, stride: int) -> None: ...

    def set_frame_rate (self, frame_rate: int) -> None: ...

    def close (self) -> None: ...


class SenderFactory(Protocol):
    """Opens a sender publishing under ``config.source_label``."""

    def __call__ (self, config: OutputConfig) -> SenderHandle: ...


class CyndiLibSender:
    """Concrete :class:`SenderHandle` that wraps :mod:`cyndilib` senders."""

    def __init__ (
        self,
        sender: Any,
        video_frame: Any,
        name: str,
        use_async: bool = True,
        resolution: Tuple[int, int] = (0, 0),
    ) -> None:
        self._sender = sender
        self._video_frame = video_frame
        self._name = name
        self._use_async = use_async
        self._resolution = resolution

    @property
    def name (self) -> str:
        return self._name

    def send (self, buffer: memoryview, width: int, height: int, stride: int) -> None:
        if (width, height) != self._resolution:
            self._video_frame.set_resolution(width, height)
            self._resolution = (width, height)

        contiguous = memoryview(buffer).cast("B")
        # The async variant returns once the SDK owns the buffer; pacing stays with the caller.
        if self._use_async:
            self._sender.write_video_async(contiguous)
        else:
            self._sender.write_video(contiguous)

    def set_frame_rate (self, frame_rate: int) -> None:
        try:
            self._video_frame.set_frame_rate(Fraction(frame_rate))
        except Exception:
            _logger.debug("Sender %s rejected frame rate change to %s", self._name, frame_rate, exc_info=True)

    def close (self) -> None:
        try:
            self._sender.close()
        except Exception:  # pragma: no cover - finalisation should not raise
            _logger.debug("NDI sender close failed", exc_info=True)
        _logger.info("NDI sender \"%s\" closed", self._name)

    def __repr__ (self) -> str:
        return f"CyndiLibSender(name={self._name!r}, resolution={self._resolution!r})"


def cyndilib_sender_factory (config: OutputConfig) -> SenderHandle:
    if cyndilib is None:  # pragma: no cover - executed only in production without injection
        raise ImportError("cyndilib is not installed; install cyndilib>=0.0.8 to stream over NDI")

    sender = cyndilib.Sender(config.source_label, clock_video=True, clock_audio=False)

    video_frame = cyndilib.VideoSendFrame()
    video_frame.set_fourcc(cyndilib.FourCC.RGBA)
    video_frame.set_resolution(config.width, config.height)
    video_frame.set_frame_rate(Fraction(config.frame_rate))

    sender.set_video_frame(video_frame)
    sender.open()

    _logger.info(
        "NDI sender initialized: \"%s\" (%dx%d @ %dfps)",
        config.source_label,
        config.width,
        config.height,
        config.frame_rate,
    )

    return CyndiLibSender(sender, video_frame, config.source_label, resolution=config.geometry)

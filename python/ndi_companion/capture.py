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

Continuous frame capture for a single output.

Polling (one ``capture_still`` per cycle) is the default because it is the
only strategy that keeps the alpha channel of transparent pages. Stream mode
consumes frames the renderer pushes through ``subscribe_stream``; each frame
is acknowledged only after it has been decoded, published and paced, so the
renderer never runs ahead of this loop.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import queue
import time
from typing import Any, Callable, Mapping, Optional

from .config import CaptureMode
from .decoder import DecodedImage, decode_png
from .errors import DecodeError
from .frame_buffer import Frame, FrameBuffer
from .logutil import ThrottledLog
from .pacing import PacedLoop, TimeProvider
from .renderer import Renderer

__all__ = ["CaptureLoop", "CaptureStats"]

_logger = logging.getLogger(__name__)

Decoder = Callable[[bytes], DecodedImage]

CAPTURE_FAILURE_LOG_EVERY = 100


@dataclass(slots=True)
class CaptureStats:
    frames_captured: int
    capture_failures: int
    running: bool
    mode: CaptureMode


@dataclass(slots=True)
class _StreamMessage:
    data: bytes
    metadata: Mapping[str, Any]
    ack: Callable[[], None]


class CaptureLoop(PacedLoop):
    """Pulls still images for one output and publishes the latest into a :class:`FrameBuffer`."""

    thread_prefix = "ndi-capture"

    def __init__ (
        self,
        identity: str,
        renderer: Renderer,
        frame_buffer: FrameBuffer,
        frame_rate: int,
        mode: CaptureMode = CaptureMode.POLLING,
        decoder: Decoder = decode_png,
        time_provider: TimeProvider = time.monotonic,
    ) -> None:
        super().__init__(identity, frame_rate, time_provider)
        self._renderer = renderer
        self._frame_buffer = frame_buffer
        self._requested_mode = CaptureMode(mode)
        self._mode = self._requested_mode
        self._decoder = decoder
        self._frames_captured = 0
        self._failures = ThrottledLog(_logger, CAPTURE_FAILURE_LOG_EVERY)
        # Bounded to one message: the renderer waits for an ack before pushing again.
        self._channel: "queue.Queue[Optional[_StreamMessage]]" = queue.Queue(maxsize=1)
        self._pending_ack: Optional[Callable[[], None]] = None
        self._unsubscribe: Optional[Callable[[], Any]] = None

    @property
    def mode (self) -> CaptureMode:
        return self._mode

    @property
    def frames_captured (self) -> int:
        return self._frames_captured

    def start (self) -> None:
        if self._thread is not None:
            return

        if self._requested_mode is CaptureMode.STREAM:
            self._subscribe()

        super().start()
        _logger.info(
            "Capture started for %s at %.0ffps (%s)",
            self._identity,
            1.0 / self._interval,
            self._mode.value,
        )

    def stop (self, timeout: Optional[float] = 5.0) -> None:
        super().stop(timeout)

        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception:
                _logger.debug("Unsubscribing stream capture for %s failed", self._identity, exc_info=True)

        self._drain_channel()
        _logger.info("Capture stopped for %s (%d frames captured)", self._identity, self._frames_captured)

    def stats (self) -> CaptureStats:
        return CaptureStats(
            frames_captured=self._frames_captured,
            capture_failures=self._failures.count,
            running=self.running,
            mode=self._mode,
        )

    def _subscribe (self) -> None:
        try:
            max_rate = max(1, round(1.0 / self._interval))
            self._unsubscribe = self._renderer.subscribe_stream(self._identity, max_rate, self._on_stream_frame)
        except Exception as exc:
            _logger.warning("Stream capture unavailable for %s (%s); falling back to polling", self._identity, exc)
            self._unsubscribe = None
            self._mode = CaptureMode.POLLING
        else:
            self._mode = CaptureMode.STREAM

    def _on_stream_frame (self, data: bytes, metadata: Mapping[str, Any], ack: Callable[[], None]) -> None:
        # Invoked on the renderer's thread.
        message = _StreamMessage(bytes(data), metadata, ack)
        try:
            self._channel.put_nowait(message)
            return
        except queue.Full:
            pass

        try:
            stale = self._channel.get_nowait()
        except queue.Empty:
            stale = None

        if stale is None and self.stopping:
            self._safe_ack(ack)
            return

        try:
            self._channel.put_nowait(message)
        except queue.Full:
            self._safe_ack(ack)
        if stale is not None:
            self._safe_ack(stale.ack)

    def _cycle (self) -> None:
        if self._mode is CaptureMode.STREAM:
            message = self._channel.get()
            if message is None:
                return
            self._pending_ack = message.ack
            self._process(message.data)
            return

        try:
            data = self._renderer.capture_still(self._identity)
        except Exception as exc:
            self._failures.record("Capture failed for %s: %s", self._identity, exc)
            return

        if data is None:
            self._failures.record("Renderer returned no image for %s", self._identity)
            return

        self._process(data)

    def _process (self, data: bytes) -> None:
        try:
            image = self._decoder(data)
        except DecodeError as exc:
            self._failures.record("PNG decode error for %s: %s", self._identity, exc)
            return

        if self.stopping:
            return

        frame = Frame(image.pixels, image.width, image.height, self._time_provider())
        self._frame_buffer.publish(frame)
        self._frames_captured += 1

    def _after_wait (self) -> None:
        ack, self._pending_ack = self._pending_ack, None
        if ack is not None:
            self._safe_ack(ack)

    def _wake (self) -> None:
        try:
            self._channel.put_nowait(None)
        except queue.Full:
            pass

    def _drain_channel (self) -> None:
        while True:
            try:
                message = self._channel.get_nowait()
            except queue.Empty:
                return
            if message is not None:
                self._safe_ack(message.ack)

    def _safe_ack (self, ack: Callable[[], None]) -> None:
        try:
            ack()
        except Exception:
            _logger.debug("Stream frame acknowledgement failed for %s", self._identity, exc_info=True)

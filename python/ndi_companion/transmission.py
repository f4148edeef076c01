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
import logging
import threading
import time
from typing import Optional

from .frame_buffer import FrameBuffer
from .logutil import ThrottledLog
from .pacing import PacedLoop, TimeProvider
from .sender import SenderHandle

__all__ = ["TransmissionLoop", "TransmissionStats"]

_logger = logging.getLogger(__name__)

SEND_FAILURE_LOG_EVERY = 300


@dataclass(slots=True)
class TransmissionStats:
    frames_sent: int
    frames_skipped: int
    send_failures: int
    running: bool


class TransmissionLoop(PacedLoop):
    """Sends whatever frame is currently held by a :class:`FrameBuffer` at a fixed cadence.

    The loop never waits for capture: a slow capture means the same frame is
    sent again, a fast one means intermediate frames are never seen.
    """

    thread_prefix = "ndi-send"

    def __init__ (
        self,
        identity: str,
        frame_buffer: FrameBuffer,
        sender: SenderHandle,
        frame_rate: int,
        time_provider: TimeProvider = time.monotonic,
    ) -> None:
        super().__init__(identity, frame_rate, time_provider)
        self._frame_buffer = frame_buffer
        self._sender = sender
        self._sender_lock = threading.Lock()
        self._frames_sent = 0
        self._frames_skipped = 0
        self._failures = ThrottledLog(_logger, SEND_FAILURE_LOG_EVERY, logging.ERROR)

    @property
    def frames_sent (self) -> int:
        return self._frames_sent

    @property
    def sender (self) -> SenderHandle:
        return self._sender

    def start (self) -> None:
        super().start()
        _logger.info("Frame output started for %s at %.0ffps", self._identity, 1.0 / self._interval)

    def stop (self, timeout: Optional[float] = 5.0) -> None:
        super().stop(timeout)
        _logger.info("Stopped sending for %s (%d frames sent)", self._identity, self._frames_sent)

    def replace_sender (self, sender: SenderHandle) -> SenderHandle:
        """Swap the sender between two sends and return the previous one."""

        with self._sender_lock:
            previous, self._sender = self._sender, sender
        return previous

    def stats (self) -> TransmissionStats:
        return TransmissionStats(
            frames_sent=self._frames_sent,
            frames_skipped=self._frames_skipped,
            send_failures=self._failures.count,
            running=self.running,
        )

    def _cycle (self) -> None:
        frame = self._frame_buffer.latest()
        if frame is None:
            self._frames_skipped += 1
            return

        with self._sender_lock:
            if self.stopping:
                return
            try:
                self._sender.send(memoryview(frame.pixels), frame.width, frame.height, frame.stride)
            except Exception as exc:
                self._failures.record("Frame send error for %s: %s", self._identity, exc)
                return

        self._frames_sent += 1

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

Self-pacing worker threads shared by the capture and transmission loops.

Each cycle measures its own duration and then waits for whatever is left of
the frame interval (never less than :data:`MIN_DELAY`). A slow cycle is
followed immediately by the next one instead of queueing extra work, and two
cycles of the same loop never run at once.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

__all__ = ["MIN_DELAY", "PacedLoop", "compute_delay"]

_logger = logging.getLogger(__name__)

MIN_DELAY = 0.001

TimeProvider = Callable[[], float]


def compute_delay (interval: float, elapsed: float) -> float:
    """Seconds to wait after a cycle that took ``elapsed`` seconds."""

    return max(MIN_DELAY, interval - elapsed)


class PacedLoop:
    """Runs :meth:`_cycle` on a daemon thread at ``frame_rate`` cycles per second.

    Subclasses implement :meth:`_cycle`; it must catch its own transient
    errors. Anything that still escapes is logged with a traceback and ends
    this loop only, leaving other loops untouched.
    """

    thread_prefix = "ndi-loop"

    def __init__ (self, identity: str, frame_rate: int, time_provider: TimeProvider = time.monotonic) -> None:
        self._identity = identity
        self._time_provider = time_provider
        self._interval = self._interval_for(frame_rate)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._cycles = 0

    @staticmethod
    def _interval_for (frame_rate: int) -> float:
        if frame_rate <= 0:
            raise ValueError("frame_rate must be positive")
        return 1.0 / frame_rate

    @property
    def identity (self) -> str:
        return self._identity

    @property
    def interval (self) -> float:
        return self._interval

    @property
    def running (self) -> bool:
        return self._running

    @property
    def cycles (self) -> int:
        return self._cycles

    def set_frame_rate (self, frame_rate: int) -> None:
        # Picked up by the next cycle; the current wait is not interrupted.
        self._interval = self._interval_for(frame_rate)

    def start (self) -> None:
        if self._thread is not None:
            return

        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(
            target=self._run,
            name=f"{self.thread_prefix}-{self._identity}",
            daemon=True,
        )
        self._thread.start()

    def stop (self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        self._wake()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                _logger.warning("%s for %s did not stop within %.1fs", type(self).__name__, self._identity, timeout or 0.0)
        self._thread = None
        self._running = False

    @property
    def stopping (self) -> bool:
        return self._stop_event.is_set()

    def run_cycle (self) -> float:
        """Run one cycle and return how long to wait before the next one."""

        started = self._time_provider()
        self._cycle()
        self._cycles += 1
        elapsed = self._time_provider() - started
        return compute_delay(self._interval, elapsed)

    def _run (self) -> None:
        try:
            while not self._stop_event.is_set():
                delay = self.run_cycle()
                self._stop_event.wait(delay)
                self._after_wait()
        except Exception:
            _logger.exception("%s for %s terminated unexpectedly", type(self).__name__, self._identity)
        finally:
            self._running = False

    def _cycle (self) -> None:
        raise NotImplementedError

    def _after_wait (self) -> None:
        pass

    def _wake (self) -> None:
        pass

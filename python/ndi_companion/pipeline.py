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

One output, end to end: render surface -> capture -> frame buffer -> sender.

The pipeline owns its loops, buffer and sender. The render surface belongs to
the renderer and is only released here. Geometry is fixed for the lifetime of
a pipeline; frame rate and source label can change in place.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import enum
import logging
import threading
import time
from typing import Any, Optional

from .capture import CaptureLoop, Decoder
from .config import CaptureMode, OutputConfig
from .decoder import decode_png
from .errors import PipelineCreationError
from .frame_buffer import FrameBuffer
from .pacing import TimeProvider
from .renderer import Renderer
from .sender import SenderFactory, SenderHandle
from .transmission import TransmissionLoop

__all__ = ["OutputPipeline", "PipelineState", "PipelineStats"]

_logger = logging.getLogger(__name__)


class PipelineState(str, enum.Enum):
    CREATING = "creating"
    ACTIVE = "active"
    UPDATING = "updating"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"


@dataclass(slots=True)
class PipelineStats:
    """Runtime statistics describing one output pipeline."""

    identity: str
    state: PipelineState
    width: int
    height: int
    frame_rate: int
    source_label: str
    capture_mode: CaptureMode
    frames_captured: int
    frames_sent: int
    capture_failures: int
    send_failures: int
    capture_running: bool
    transmission_running: bool
    has_frame: bool
    last_frame_age: Optional[float]


class OutputPipeline:
    """Capture and transmission loops plus the external resources of one output."""

    def __init__ (
        self,
        config: OutputConfig,
        renderer: Renderer,
        sender_factory: SenderFactory,
        decoder: Decoder = decode_png,
        time_provider: TimeProvider = time.monotonic,
    ) -> None:
        self._config = config
        self._renderer = renderer
        self._sender_factory = sender_factory
        self._decoder = decoder
        self._time_provider = time_provider
        self._lock = threading.RLock()
        self._state = PipelineState.CREATING
        self._frame_buffer = FrameBuffer(time_provider)
        self._sender: Optional[SenderHandle] = None
        self._capture: Optional[CaptureLoop] = None
        self._transmission: Optional[TransmissionLoop] = None
        self.created_at = time.time()

    @classmethod
    def create (
        cls,
        config: OutputConfig,
        renderer: Renderer,
        sender_factory: SenderFactory,
        **options: Any,
    ) -> "OutputPipeline":
        """Allocate the sender and render surface, then start both loops.

        Raises :class:`~ndi_companion.errors.PipelineCreationError` naming the
        failed stage; resources allocated before the failure are released.
        """

        pipeline = cls(config, renderer, sender_factory, **options)
        pipeline._start()
        return pipeline

    @property
    def identity (self) -> str:
        return self._config.identity

    @property
    def config (self) -> OutputConfig:
        return self._config

    @property
    def state (self) -> PipelineState:
        return self._state

    @property
    def frame_buffer (self) -> FrameBuffer:
        return self._frame_buffer

    def _start (self) -> None:
        config = self._config
        _logger.info(
            "Creating output \"%s\": %s (%dx%d @ %dfps)",
            config.identity,
            config.source_label,
            config.width,
            config.height,
            config.frame_rate,
        )

        with self._lock:
            try:
                sender = self._sender_factory(config)
            except Exception as exc:
                self._state = PipelineState.DESTROYED
                raise PipelineCreationError(config.identity, "sender", exc) from exc

            try:
                self._renderer.allocate_surface(config.identity, config.width, config.height, config.url)
            except Exception as exc:
                self._close_sender(sender)
                self._state = PipelineState.DESTROYED
                raise PipelineCreationError(config.identity, "surface", exc) from exc

            self._sender = sender
            self._capture = CaptureLoop(
                config.identity,
                self._renderer,
                self._frame_buffer,
                config.frame_rate,
                mode=config.capture_mode,
                decoder=self._decoder,
                time_provider=self._time_provider,
            )
            self._transmission = TransmissionLoop(
                config.identity,
                self._frame_buffer,
                sender,
                config.frame_rate,
                time_provider=self._time_provider,
            )

            self._capture.start()
            self._transmission.start()
            self._state = PipelineState.ACTIVE

        _logger.info("Output \"%s\" active", config.identity)

    def update_frame_rate (self, frame_rate: int) -> None:
        """Retime both loops and the sender.

        The sender is retimed first; if it refuses, the loops and the config
        keep the previous rate and the error propagates.
        """

        with self._lock:
            capture, transmission, sender = self._capture, self._transmission, self._sender
            if self._state is not PipelineState.ACTIVE or capture is None or transmission is None or sender is None:
                return
            if frame_rate == self._config.frame_rate:
                return

            self._state = PipelineState.UPDATING
            try:
                config = replace(self._config, frame_rate=frame_rate)
                sender.set_frame_rate(config.frame_rate)
                capture.set_frame_rate(config.frame_rate)
                transmission.set_frame_rate(config.frame_rate)
                self._config = config
            finally:
                self._state = PipelineState.ACTIVE

        _logger.info("Frame rate for %s set to %dfps", self.identity, frame_rate)

    def update_label (self, label: str) -> None:
        """Republish under ``label``; capture keeps running throughout."""

        with self._lock:
            transmission = self._transmission
            if self._state is not PipelineState.ACTIVE or transmission is None:
                return
            if label == self._config.source_label:
                return

            self._state = PipelineState.UPDATING
            try:
                config = replace(self._config, source_label=label)
                try:
                    sender = self._sender_factory(config)
                except Exception as exc:
                    raise PipelineCreationError(self.identity, "sender", exc) from exc

                previous = transmission.replace_sender(sender)
                self._sender = sender
                self._config = config
                self._close_sender(previous)
            finally:
                self._state = PipelineState.ACTIVE

        _logger.info("Source name for %s changed to \"%s\"", self.identity, label)

    def destroy (self) -> None:
        """Stop transmission, stop capture, release resources. Safe to call repeatedly."""

        with self._lock:
            if self._state in (PipelineState.DESTROYING, PipelineState.DESTROYED):
                return
            self._state = PipelineState.DESTROYING

            try:
                if self._transmission is not None:
                    self._transmission.stop()
                if self._capture is not None:
                    self._capture.stop()

                sender, self._sender = self._sender, None
                if sender is not None:
                    self._close_sender(sender)

                try:
                    self._renderer.release_surface(self.identity)
                except Exception:
                    _logger.exception("Failed to release render surface for %s", self.identity)
            finally:
                self._frame_buffer.reset()
                self._state = PipelineState.DESTROYED

        _logger.info("Output \"%s\" destroyed", self.identity)

    def stats (self) -> PipelineStats:
        capture = self._capture.stats() if self._capture is not None else None
        transmission = self._transmission.stats() if self._transmission is not None else None
        config = self._config

        return PipelineStats(
            identity=config.identity,
            state=self._state,
            width=config.width,
            height=config.height,
            frame_rate=config.frame_rate,
            source_label=config.source_label,
            capture_mode=capture.mode if capture is not None else config.capture_mode,
            frames_captured=capture.frames_captured if capture is not None else 0,
            frames_sent=transmission.frames_sent if transmission is not None else 0,
            capture_failures=capture.capture_failures if capture is not None else 0,
            send_failures=transmission.send_failures if transmission is not None else 0,
            capture_running=capture.running if capture is not None else False,
            transmission_running=transmission.running if transmission is not None else False,
            has_frame=self._frame_buffer.latest() is not None,
            last_frame_age=self._frame_buffer.age(),
        )

    def _close_sender (self, sender: SenderHandle) -> None:
        try:
            sender.close()
        except Exception:
            _logger.exception("Failed to close sender for %s", self._config.identity)

    def __repr__ (self) -> str:
        return f"OutputPipeline(identity={self.identity!r}, state={self._state.value!r})"

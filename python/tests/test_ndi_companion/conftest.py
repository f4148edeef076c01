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

from dataclasses import dataclass, replace
import io
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from PIL import Image

from ndi_companion.config import OutputConfig
from ndi_companion.errors import PipelineCreationError
from ndi_companion.pipeline import PipelineState, PipelineStats


def make_png (width: int, height: int, color: Tuple[int, int, int, int] = (10, 20, 30, 128), mode: str = "RGBA") -> bytes:
    image = Image.new(mode, (width, height), color if mode == "RGBA" else color[:3])
    stream = io.BytesIO()
    image.save(stream, format="PNG")
    return stream.getvalue()


class FakeClock:
    def __init__ (self, start: float = 0.0) -> None:
        self.now = start

    def __call__ (self) -> float:
        return self.now

    def advance (self, seconds: float) -> None:
        self.now += seconds


class FakeRenderer:
    def __init__ (self, png: Optional[bytes] = None) -> None:
        self.png = png if png is not None else make_png(4, 2)
        self.allocated: List[Tuple[str, int, int, str]] = []
        self.released: List[str] = []
        self.captures = 0
        self.fail_allocate = False
        self.capture_error: Optional[Exception] = None
        self.on_capture: Optional[Callable[[], None]] = None
        self.subscriptions: Dict[str, Callable[..., None]] = {}
        self.unsubscribed: List[str] = []
        self.fail_subscribe = False
        self._lock = threading.Lock()

    def allocate_surface (self, identity: str, width: int, height: int, navigation_target: str) -> Any:
        if self.fail_allocate:
            raise RuntimeError("no browser")
        self.allocated.append((identity, width, height, navigation_target))
        return object()

    def capture_still (self, identity: str) -> Optional[bytes]:
        with self._lock:
            self.captures += 1
        if self.on_capture is not None:
            self.on_capture()
        if self.capture_error is not None:
            raise self.capture_error
        return self.png

    def subscribe_stream (self, identity: str, max_rate: int, on_frame: Callable[..., None]) -> Callable[[], None]:
        if self.fail_subscribe:
            raise RuntimeError("screencast unsupported")
        self.subscriptions[identity] = on_frame

        def unsubscribe () -> None:
            self.unsubscribed.append(identity)

        return unsubscribe

    def release_surface (self, identity: str) -> None:
        self.released.append(identity)


@dataclass
class SentFrame:
    width: int
    height: int
    stride: int
    payload: bytes


class FakeSender:
    def __init__ (self, label: str) -> None:
        self.label = label
        self.sent: List[SentFrame] = []
        self.frame_rates: List[int] = []
        self.closed = 0
        self.fail = False
        self.fail_frame_rate = False

    def send (self, buffer: memoryview, width: int, height: int, stride: int) -> None:
        if self.fail:
            raise RuntimeError("network down")
        self.sent.append(SentFrame(width, height, stride, bytes(buffer)))

    def set_frame_rate (self, frame_rate: int) -> None:
        if self.fail_frame_rate:
            raise RuntimeError("sender refused")
        self.frame_rates.append(frame_rate)

    def close (self) -> None:
        self.closed += 1


class FakeSenderFactory:
    def __init__ (self) -> None:
        self.opened: List[FakeSender] = []
        self.fail = False

    def __call__ (self, config: OutputConfig) -> FakeSender:
        if self.fail:
            raise RuntimeError("NDI unavailable")
        sender = FakeSender(config.source_label)
        self.opened.append(sender)
        return sender


class FakePipeline:
    def __init__ (self, config: OutputConfig, log: List[Tuple[str, str]]) -> None:
        self._config = config
        self._log = log
        self.destroyed = False

    @property
    def config (self) -> OutputConfig:
        return self._config

    def update_frame_rate (self, frame_rate: int) -> None:
        self._log.append(("update_frame_rate", self._config.identity))
        self._config = replace(self._config, frame_rate=frame_rate)

    def update_label (self, label: str) -> None:
        self._log.append(("update_label", self._config.identity))
        self._config = replace(self._config, source_label=label)

    def destroy (self) -> None:
        self._log.append(("destroy", self._config.identity))
        self.destroyed = True

    def stats (self) -> PipelineStats:
        return PipelineStats(
            identity=self._config.identity,
            state=PipelineState.ACTIVE,
            width=self._config.width,
            height=self._config.height,
            frame_rate=self._config.frame_rate,
            source_label=self._config.source_label,
            capture_mode=self._config.capture_mode,
            frames_captured=10,
            frames_sent=7,
            capture_failures=0,
            send_failures=0,
            capture_running=True,
            transmission_running=True,
            has_frame=True,
            last_frame_age=0.01,
        )


class FakePipelineFactory:
    def __init__ (self) -> None:
        self.log: List[Tuple[str, str]] = []
        self.pipelines: Dict[str, FakePipeline] = {}
        self.failing: set[str] = set()

    def __call__ (self, config: OutputConfig) -> FakePipeline:
        self.log.append(("create", config.identity))
        if config.identity in self.failing:
            raise PipelineCreationError(config.identity, "surface", RuntimeError("boom"))
        pipeline = FakePipeline(config, self.log)
        self.pipelines[config.identity] = pipeline
        return pipeline


@pytest.fixture
def png () -> bytes:
    return make_png(4, 2)


@pytest.fixture
def png_factory () -> Callable[..., bytes]:
    return make_png


@pytest.fixture
def clock () -> FakeClock:
    return FakeClock(100.0)


@pytest.fixture
def renderer () -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def sender_factory () -> FakeSenderFactory:
    return FakeSenderFactory()


@pytest.fixture
def pipeline_factory () -> FakePipelineFactory:
    return FakePipelineFactory()

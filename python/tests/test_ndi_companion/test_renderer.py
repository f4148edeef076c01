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

from typing import Any, Dict, List, Optional

import pytest

import ndi_companion.renderer as renderer_module
from ndi_companion.errors import RendererError
from ndi_companion.renderer import BrowserRenderer


class _FakePlaywrightError(Exception):
    pass


class _FakeResponse:
    def __init__ (self, status: int) -> None:
        self.status = status


class _FakeRequestContext:
    def __init__ (self, status: int) -> None:
        self.status = status
        self.urls: List[str] = []
        self.disposed = False

    async def get (self, url: str, timeout: float) -> _FakeResponse:
        self.urls.append(url)
        return _FakeResponse(self.status)

    async def dispose (self) -> None:
        self.disposed = True


class _FakeRequestFactory:
    def __init__ (self, status: int) -> None:
        self.context = _FakeRequestContext(status)

    async def new_context (self) -> _FakeRequestContext:
        return self.context


class _FakePage:
    def __init__ (self, viewport: Dict[str, int]) -> None:
        self.viewport = viewport
        self.url: Optional[str] = None
        self.closed = False
        self.screenshot_error: Optional[Exception] = None
        self.screenshot_options: Dict[str, Any] = {}

    async def goto (self, url: str, wait_until: str, timeout: float) -> None:
        self.url = url

    async def screenshot (self, **options: Any) -> bytes:
        self.screenshot_options = options
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return b"png-bytes"

    def is_closed (self) -> bool:
        return self.closed

    async def close (self) -> None:
        self.closed = True


class _FakeBrowser:
    def __init__ (self) -> None:
        self.pages: List[_FakePage] = []
        self.closed = False

    async def new_page (self, viewport: Dict[str, int], device_scale_factor: int) -> _FakePage:
        page = _FakePage(viewport)
        self.pages.append(page)
        return page

    async def close (self) -> None:
        self.closed = True


class _FakeChromium:
    def __init__ (self) -> None:
        self.browser = _FakeBrowser()
        self.launch_options: Dict[str, Any] = {}

    async def launch (self, **options: Any) -> _FakeBrowser:
        self.launch_options = options
        return self.browser


class _FakePlaywright:
    def __init__ (self, status: int) -> None:
        self.chromium = _FakeChromium()
        self.request = _FakeRequestFactory(status)
        self.stopped = False

    async def stop (self) -> None:
        self.stopped = True


class _FakeAsyncPlaywright:
    def __init__ (self, playwright: _FakePlaywright) -> None:
        self._playwright = playwright

    async def start (self) -> _FakePlaywright:
        return self._playwright


@pytest.fixture
def playwright (monkeypatch: pytest.MonkeyPatch) -> _FakePlaywright:
    fake = _FakePlaywright(200)
    monkeypatch.setattr(renderer_module, "async_playwright", lambda: _FakeAsyncPlaywright(fake))
    monkeypatch.setattr(renderer_module, "PlaywrightError", _FakePlaywrightError)
    return fake


def test_unlaunched_renderer_rejects_surfaces () -> None:
    renderer = BrowserRenderer()

    with pytest.raises(RendererError):
        renderer.allocate_surface("output1", 1920, 1080, "http://127.0.0.1:4000/#/output1")
    with pytest.raises(RendererError):
        renderer.subscribe_stream("output1", 30, lambda data, metadata, ack: None)

    assert renderer.capture_still("output1") is None
    renderer.release_surface("output1")
    renderer.close()


def test_surface_lifecycle (playwright: _FakePlaywright) -> None:
    renderer = BrowserRenderer(health_url="http://127.0.0.1:4000/api/health", hydration_delay=0.0)
    renderer.launch(health_attempts=1, health_interval=0.0)

    try:
        assert playwright.request.context.urls == ["http://127.0.0.1:4000/api/health"]
        assert playwright.request.context.disposed
        assert "--no-sandbox" in playwright.chromium.launch_options["args"]

        renderer.allocate_surface("output1", 1280, 720, "http://127.0.0.1:4000/#/output1")
        page = playwright.chromium.browser.pages[0]
        assert page.viewport == {"width": 1280, "height": 720}
        assert page.url == "http://127.0.0.1:4000/#/output1"

        assert renderer.capture_still("output1") == b"png-bytes"
        assert page.screenshot_options == {"type": "png", "omit_background": True}

        renderer.release_surface("output1")
        assert page.closed
        assert renderer.capture_still("output1") is None
    finally:
        renderer.close()

    assert playwright.chromium.browser.closed
    assert playwright.stopped


def test_surface_requires_navigation_target (playwright: _FakePlaywright) -> None:
    renderer = BrowserRenderer(hydration_delay=0.0)
    renderer.launch()

    try:
        with pytest.raises(RendererError):
            renderer.allocate_surface("output1", 1280, 720, "")
    finally:
        renderer.close()


def test_closed_page_capture_returns_none (playwright: _FakePlaywright) -> None:
    renderer = BrowserRenderer(hydration_delay=0.0)
    renderer.launch()

    try:
        renderer.allocate_surface("output1", 1280, 720, "http://127.0.0.1:4000/#/output1")
        page = playwright.chromium.browser.pages[0]

        page.screenshot_error = _FakePlaywrightError("Target closed")
        assert renderer.capture_still("output1") is None

        page.screenshot_error = _FakePlaywrightError("Protocol error")
        with pytest.raises(RendererError):
            renderer.capture_still("output1")
    finally:
        renderer.close()


def test_launch_fails_when_backend_is_unhealthy (monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakePlaywright(503)
    monkeypatch.setattr(renderer_module, "async_playwright", lambda: _FakeAsyncPlaywright(fake))
    renderer = BrowserRenderer(health_url="http://127.0.0.1:4000/api/health")

    try:
        with pytest.raises(RendererError):
            renderer.launch(health_attempts=2, health_interval=0.0)
    finally:
        renderer.close()

    assert len(fake.request.context.urls) == 2
    assert fake.stopped

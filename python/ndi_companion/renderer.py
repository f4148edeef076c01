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

Offscreen renderer used to paint each output.

:class:`BrowserRenderer` drives headless Chromium through Playwright. All
Playwright objects live on one private asyncio loop running in a background
thread; the public methods are synchronous and safe to call from the capture
threads of every output at once.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from .errors import RendererError

try:  # pragma: no cover - optional dependency handled lazily
    from playwright.async_api import Error as PlaywrightError
    from playwright.async_api import async_playwright
except ImportError:  # pragma: no cover - exercised in tests via dependency injection
    async_playwright = None  # type: ignore
    PlaywrightError = RuntimeError  # type: ignore

__all__ = ["Renderer", "StreamFrameCallback", "BrowserRenderer"]

_logger = logging.getLogger(__name__)


StreamFrameCallback = Callable[[bytes, Mapping[str, Any], Callable[[], None]], None]


class Renderer(Protocol):
    """Protocol implemented by renderers consumed by output pipelines."""

    def allocate_surface (self, identity: str, width: int, height: int, navigation_target: str) -> Any: ...

    def capture_still (self, identity: str) -> Optional[bytes]: ...

    def subscribe_stream (self, identity: str, max_rate: int, on_frame: StreamFrameCallback) -> Callable[[], Any]: ...

    def release_surface (self, identity: str) -> None: ...


_CHROMIUM_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-zygote",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--disable-translate",
    "--mute-audio",
    "--hide-scrollbars",
)

_CLOSED_MARKERS = ("Target closed", "Session closed", "has been closed")


def _is_closed_error (exc: BaseException) -> bool:
    message = str(exc)
    return any(marker in message for marker in _CLOSED_MARKERS)


class _Surface:
    def __init__ (self, page: Any, width: int, height: int, url: str) -> None:
        self.page = page
        self.width = width
        self.height = height
        self.url = url


class BrowserRenderer:
    """Headless Chromium pages, one per output identity."""

    def __init__ (
        self,
        health_url: Optional[str] = None,
        headless: bool = True,
        navigation_timeout: float = 30.0,
        hydration_delay: float = 3.0,
        call_timeout: float = 60.0,
    ) -> None:
        self._health_url = health_url
        self._headless = headless
        self._navigation_timeout = navigation_timeout
        self._hydration_delay = hydration_delay
        self._call_timeout = call_timeout
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._playwright: Any = None
        self._browser: Any = None
        self._surfaces: Dict[str, _Surface] = {}

    def __enter__ (self) -> "BrowserRenderer":
        self.launch()
        return self

    def __exit__ (self, exc_type, exc, tb) -> None:
        self.close()

    def launch (self, health_attempts: int = 30, health_interval: float = 2.0) -> None:
        if async_playwright is None:  # pragma: no cover - executed only in production without injection
            raise ImportError("playwright is not installed; install playwright and run 'playwright install chromium'")

        if self._browser is not None:
            return

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="ndi-renderer", daemon=True)
        self._thread.start()

        timeout = self._call_timeout + health_attempts * (health_interval + 3.0)
        self._call(self._launch(health_attempts, health_interval), timeout=timeout)

    def allocate_surface (self, identity: str, width: int, height: int, navigation_target: str) -> _Surface:
        if self._browser is None:
            raise RendererError("Browser not launched")
        if not navigation_target:
            raise RendererError(f"No navigation target for output '{identity}'")

        self.release_surface(identity)
        timeout = self._call_timeout + self._navigation_timeout + self._hydration_delay
        surface = self._call(self._open_page(identity, width, height, navigation_target), timeout=timeout)
        self._surfaces[identity] = surface
        return surface

    def capture_still (self, identity: str) -> Optional[bytes]:
        surface = self._surfaces.get(identity)
        if surface is None:
            return None

        try:
            return self._call(surface.page.screenshot(type="png", omit_background=True))
        except PlaywrightError as exc:
            if not _is_closed_error(exc):
                raise RendererError(f"Frame capture failed for {identity}: {exc}") from exc
            return None

    def subscribe_stream (self, identity: str, max_rate: int, on_frame: StreamFrameCallback) -> Callable[[], Any]:
        surface = self._surfaces.get(identity)
        if surface is None:
            raise RendererError(f"No page for output: {identity}")

        session = self._call(self._start_screencast(identity, surface, on_frame))
        _logger.info("Screencast started for %s (max %dfps)", identity, max_rate)

        def unsubscribe () -> None:
            try:
                self._call(self._stop_screencast(session))
            except Exception:
                _logger.debug("Screencast for %s already closed", identity, exc_info=True)
            else:
                _logger.info("Screencast stopped for %s", identity)

        return unsubscribe

    def release_surface (self, identity: str) -> None:
        surface = self._surfaces.pop(identity, None)
        if surface is None:
            return

        try:
            self._call(self._close_page(surface.page))
        except Exception as exc:
            _logger.warning("Error closing page for %s: %s", identity, exc)
        _logger.info("Page released for %s", identity)

    def close (self) -> None:
        for identity in list(self._surfaces.keys()):
            self.release_surface(identity)

        loop = self._loop
        if loop is None:
            return

        try:
            self._call(self._shutdown())
        except Exception as exc:
            _logger.warning("Error closing browser: %s", exc)

        loop.call_soon_threadsafe(loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        loop.close()
        self._loop = None
        self._thread = None
        _logger.info("Browser renderer closed")

    def _call (self, coroutine: Any, timeout: Optional[float] = None) -> Any:
        if self._loop is None:
            coroutine.close()
            raise RendererError("Renderer loop is not running")

        future = asyncio.run_coroutine_threadsafe(coroutine, self._loop)
        return future.result(timeout if timeout is not None else self._call_timeout)

    async def _launch (self, health_attempts: int, health_interval: float) -> None:
        self._playwright = await async_playwright().start()

        if self._health_url and not await self._wait_for_backend(health_attempts, health_interval):
            raise RendererError("Backend is not available")

        _logger.info("Launching headless browser...")
        self._browser = await self._playwright.chromium.launch(headless=self._headless, args=list(_CHROMIUM_ARGS))
        _logger.info("Headless browser launched")

    async def _wait_for_backend (self, attempts: int, interval: float) -> bool:
        request = await self._playwright.request.new_context()
        try:
            for attempt in range(attempts):
                try:
                    response = await request.get(self._health_url, timeout=3000)
                    if response.status == 200:
                        _logger.info("Backend is ready (attempt %d)", attempt + 1)
                        return True
                except PlaywrightError:
                    pass

                if attempt < attempts - 1:
                    await asyncio.sleep(interval)
        finally:
            await request.dispose()

        _logger.error("Backend did not become ready at %s", self._health_url)
        return False

    async def _open_page (self, identity: str, width: int, height: int, url: str) -> _Surface:
        _logger.info("Creating page for %s at %dx%d, navigating to %s", identity, width, height, url)
        page = await self._browser.new_page(viewport={"width": width, "height": height}, device_scale_factor=1)
        try:
            await page.goto(url, wait_until="networkidle", timeout=self._navigation_timeout * 1000)
            # Lets the page hydrate and connect before the first capture.
            await asyncio.sleep(self._hydration_delay)
        except BaseException:
            await page.close()
            raise
        _logger.info("Page ready for %s", identity)
        return _Surface(page, width, height, url)

    async def _start_screencast (self, identity: str, surface: _Surface, on_frame: StreamFrameCallback) -> Any:
        session = await surface.page.context.new_cdp_session(surface.page)
        loop = asyncio.get_running_loop()

        def handle_frame (params: Mapping[str, Any]) -> None:
            session_id = params["sessionId"]

            def ack () -> None:
                asyncio.run_coroutine_threadsafe(
                    session.send("Page.screencastFrameAck", {"sessionId": session_id}),
                    loop,
                )

            try:
                on_frame(base64.b64decode(params["data"]), params.get("metadata", {}), ack)
            except Exception:
                _logger.exception("Screencast frame handler failed for %s", identity)

        session.on("Page.screencastFrame", handle_frame)
        await session.send(
            "Page.startScreencast",
            {
                "format": "png",
                "quality": 100,
                "maxWidth": surface.width,
                "maxHeight": surface.height,
                "everyNthFrame": 1,
            },
        )
        return session

    async def _stop_screencast (self, session: Any) -> None:
        await session.send("Page.stopScreencast")
        await session.detach()

    async def _close_page (self, page: Any) -> None:
        if not page.is_closed():
            await page.close()

    async def _shutdown (self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    def __repr__ (self) -> str:
        return f"BrowserRenderer(surfaces={sorted(self._surfaces)!r}, headless={self._headless!r})"

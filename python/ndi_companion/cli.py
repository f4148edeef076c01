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

import argparse
import logging
import signal
import sys
import threading
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .orchestrator import Orchestrator
from .renderer import BrowserRenderer
from .settings import SettingsManager

__all__ = ["main"]

_logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def _build_parser () -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Render LyricDisplay outputs headlessly and publish them over NDI")
    parser.add_argument("--host", default="127.0.0.1", help="LyricDisplay backend host (default: 127.0.0.1)")
    parser.add_argument("--port", type=_positive_int, default=4000, help="LyricDisplay backend port (default: 4000)")
    parser.add_argument("--frontend-url", help="Load output pages from this frontend (path routing) instead of the backend")
    parser.add_argument("--settings", help="Path to ndi-settings.json (default: the LyricDisplay user-data directory)")
    parser.add_argument("--no-headless", dest="headless", action="store_false", default=True, help="Show the browser window")
    parser.add_argument("--rest-host", default="127.0.0.1", help="Host interface for the optional REST status server")
    parser.add_argument("--rest-port", type=int, help="Port for the optional REST status server")
    parser.add_argument("--osc-host", default="127.0.0.1", help="Host interface for the optional OSC status server")
    parser.add_argument("--osc-port", type=int, help="Port for the optional OSC status server")
    parser.add_argument("--osc-namespace", default="/ndi", help="OSC namespace prefix (default: /ndi)")
    parser.add_argument("--log-level", default="INFO", help="Python logging level (default: INFO)")
    parser.add_argument("--status-interval", type=float, default=30.0, help="Seconds between status logs; set to 0 to disable")
    return parser


def _positive_int (value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{value}'") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("value must be positive")
    return parsed


def log_status (orchestrator: Orchestrator) -> None:
    stats = orchestrator.aggregated_stats()
    _logger.info(
        "Active outputs: %d | Frames captured: %d | Frames sent: %d",
        stats.output_count,
        stats.total_frames_captured,
        stats.total_frames_sent,
    )


class _StatusReporter:
    """Blocks the main thread, logging status until :meth:`stop` is called or a signal arrives."""

    def __init__ (self, orchestrator: Orchestrator, interval: float) -> None:
        self._orchestrator = orchestrator
        self._interval = interval
        self._stop_event = threading.Event()

    def stop (self) -> None:
        self._stop_event.set()

    def run (self) -> None:
        def _handle_signal (signum: int, frame: Optional[object]) -> None:  # pragma: no cover - signal handler
            _logger.info("Received signal %s; shutting down", signum)
            self._stop_event.set()

        handled = [signal.SIGINT, signal.SIGTERM]
        if hasattr(signal, "SIGHUP"):
            handled.append(signal.SIGHUP)
        originals = {signum: signal.getsignal(signum) for signum in handled}
        for signum in handled:
            signal.signal(signum, _handle_signal)

        wait = self._interval if self._interval > 0 else None
        try:
            while not self._stop_event.wait(wait):
                log_status(self._orchestrator)
        except KeyboardInterrupt:  # pragma: no cover - interactive guard
            _logger.info("Stopping due to keyboard interrupt")
        finally:
            for signum, original in originals.items():
                signal.signal(signum, original)


def main (argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    _logger.info("LyricDisplay NDI Companion v%s", VERSION)
    _logger.info("Backend: http://%s:%d", args.host, args.port)

    settings = SettingsManager(args.settings, host=args.host, port=args.port, frontend_url=args.frontend_url)
    settings.load()

    renderer = BrowserRenderer(health_url=f"http://{args.host}:{args.port}/api/health", headless=args.headless)
    try:
        renderer.launch()
    except Exception as exc:
        _logger.error("Failed to launch browser: %s", exc)
        renderer.close()
        return 1

    orchestrator = Orchestrator(renderer=renderer)

    def _on_settings_changed (new: Mapping[str, Any], old: Mapping[str, Any]) -> None:
        _logger.info("Settings changed, syncing outputs...")
        orchestrator.request_sync(settings.get_outputs())

    settings.add_listener(_on_settings_changed)
    settings.start_watching()

    orchestrator.sync_outputs(settings.get_outputs())

    enabled_count = len(settings.get_enabled_outputs())
    _logger.info("Started with %d enabled output(s)", enabled_count)
    if enabled_count == 0:
        _logger.info("No outputs enabled. Enable outputs in LyricDisplay NDI settings; watching for changes...")

    resync = _make_resync(orchestrator, settings)
    active_servers: List[Any] = []

    if args.rest_port is not None:
        from .rest_server import start_rest_server

        active_servers.append(start_rest_server(orchestrator, host=args.rest_host, port=args.rest_port, resync=resync))

    if args.osc_port is not None:
        from .osc_server import start_osc_server

        active_servers.append(
            start_osc_server(orchestrator, host=args.osc_host, port=args.osc_port, namespace=args.osc_namespace, resync=resync)
        )

    reporter = _StatusReporter(orchestrator, args.status_interval)

    try:
        reporter.run()
    finally:
        _logger.info("Shutting down...")
        reporter.stop()
        for server in active_servers:
            try:
                server.close()
            except Exception:  # pragma: no cover - shutdown best effort
                _logger.exception("Failed to stop status server cleanly")
        settings.close()
        orchestrator.shutdown_all()
        renderer.close()
        _logger.info("Shutdown complete")

    return 0


def _make_resync (orchestrator: Orchestrator, settings: SettingsManager) -> Callable[[], None]:
    def resync () -> None:
        settings.load()
        orchestrator.request_sync(settings.get_outputs())

    return resync


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())

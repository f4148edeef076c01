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

import json
import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .orchestrator import Orchestrator

__all__ = ["OscControlServer", "start_osc_server"]

_logger = logging.getLogger(__name__)


class OscControlServer:
    """Expose :class:`Orchestrator` status via Open Sound Control messages.

    ``/<namespace>/<output>/metrics`` is answered with a JSON payload of the
    output's frame counters, sent back to the requesting address.
    ``/<namespace>/status`` answers with the aggregated counters and
    ``/<namespace>/sync`` re-reads the settings and reconciles outputs.
    """

    def __init__ (
        self,
        orchestrator: Orchestrator,
        host: str = "127.0.0.1",
        port: int = 5001,
        namespace: str = "/ndi",
        resync: Optional[Callable[[], None]] = None,
    ) -> None:
        try:  # pragma: no cover - exercised when python-osc is installed
            from pythonosc.dispatcher import Dispatcher
            from pythonosc.osc_server import ThreadingOSCUDPServer
            from pythonosc.udp_client import SimpleUDPClient
        except ImportError as exc:  # pragma: no cover - import guard
            raise ImportError("python-osc is required for the OSC status server; install python-osc>=1.8") from exc

        self._orchestrator = orchestrator
        self._host = host
        self._port = port
        self._resync = resync
        base_namespace = namespace.strip("/")
        self._namespace = f"/{base_namespace}" if base_namespace else "/ndi"
        self._dispatcher = Dispatcher()
        self._dispatcher.map(f"{self._namespace}/status", self._handle_status, needs_reply_address=True)
        self._dispatcher.map(f"{self._namespace}/sync", self._handle_sync)
        self._dispatcher.map(
            f"{self._namespace}/*/metrics",
            self._handle_metrics,
            needs_reply_address=True,
        )
        self._server_factory = ThreadingOSCUDPServer
        self._client_factory = SimpleUDPClient
        self._server: Any = None
        self._thread: threading.Thread | None = None
        self._client_cache: Dict[Tuple[str, int], Any] = {}

    def __enter__ (self) -> "OscControlServer":
        self.start()
        return self

    def __exit__ (self, exc_type, exc, tb) -> None:
        self.close()

    def start (self) -> None:
        if self._server is not None:
            return

        self._server = self._server_factory((self._host, self._port), self._dispatcher)
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, name="ndi-osc-status", daemon=True)
        self._thread.start()
        _logger.info("OSC status server listening on %s:%d%s", self._host, self._port, self._namespace)

    def close (self) -> None:
        if self._server is None:
            self._client_cache.clear()
            return

        _logger.info("Stopping OSC status server on %s:%d%s", self._host, self._port, self._namespace)
        self._server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self._server = None
        self._thread = None
        self._client_cache.clear()

    def _handle_metrics (self, client_address: Tuple[str, int], address: str, *args: Any) -> None:
        identity = self._extract_output(address)
        if identity is None:
            _logger.warning("Ignoring OSC metrics request for malformed address '%s'", address)
            return

        try:
            stats = self._orchestrator.get_stats(identity)
        except KeyError:
            _logger.warning("OSC metrics target output '%s' not found", identity)
            return

        payload = {
            "frames_captured": stats.frames_captured,
            "frames_sent": stats.frames_sent,
            "capture_failures": stats.capture_failures,
            "send_failures": stats.send_failures,
            "last_frame_age": stats.last_frame_age,
            "state": stats.state.value,
        }
        _logger.debug("OSC metrics for %s: %s", identity, payload)
        self._reply(client_address, f"{self._namespace}/{identity}/metrics", payload)

    def _handle_status (self, client_address: Tuple[str, int], address: str, *args: Any) -> None:
        stats = self._orchestrator.aggregated_stats()
        payload = {
            "output_count": stats.output_count,
            "total_frames_captured": stats.total_frames_captured,
            "total_frames_sent": stats.total_frames_sent,
        }
        self._reply(client_address, f"{self._namespace}/status", payload)

    def _handle_sync (self, address: str, *args: Any) -> None:
        if self._resync is None:
            _logger.warning("OSC resync requested but no resync handler is configured")
            return

        try:
            self._resync()
        except Exception:  # pragma: no cover - runtime guard
            _logger.exception("OSC resync failed")

    def _reply (self, client_address: Tuple[str, int], message_path: str, payload: Mapping[str, Any]) -> None:
        try:
            host, port = client_address
        except Exception:  # pragma: no cover - defensive parsing guard
            _logger.debug("OSC reply address malformed: %r", client_address)
            return

        cache_key = (str(host), int(port))
        client = self._client_cache.get(cache_key)
        if client is None:
            try:
                client = self._client_factory(cache_key[0], cache_key[1])
            except Exception:  # pragma: no cover - client construction best effort
                _logger.exception("Failed to create OSC reply client for %s", cache_key)
                return
            self._client_cache[cache_key] = client

        try:
            client.send_message(message_path, json.dumps(payload))
        except Exception:  # pragma: no cover - best effort reply
            _logger.exception("Failed to send OSC response to %s", cache_key)

    def _extract_output (self, address: str) -> str | None:
        parts = address.strip("/").split("/")
        if len(parts) < 3:
            return None
        if parts[0] != self._namespace.strip("/"):
            return None
        return parts[1]

    def __repr__ (self) -> str:
        return f"OscControlServer(host={self._host!r}, port={self._port!r}, namespace={self._namespace!r})"


def start_osc_server (
    orchestrator: Orchestrator,
    host: str = "127.0.0.1",
    port: int = 5001,
    namespace: str = "/ndi",
    resync: Optional[Callable[[], None]] = None,
) -> OscControlServer:
    """Create and start an :class:`OscControlServer` instance."""

    server = OscControlServer(orchestrator, host=host, port=port, namespace=namespace, resync=resync)
    server.start()
    return server

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

import dataclasses
import logging
import threading
from typing import Any, Callable, Dict, Optional

from .orchestrator import Orchestrator
from .pipeline import PipelineStats

__all__ = ["RestControlServer", "start_rest_server", "stats_payload"]

_logger = logging.getLogger(__name__)


def stats_payload (stats: PipelineStats) -> Dict[str, Any]:
    payload = dataclasses.asdict(stats)
    payload["state"] = stats.state.value
    payload["capture_mode"] = stats.capture_mode.value
    return payload


class RestControlServer:
    """Expose :class:`Orchestrator` status over a small Flask REST API."""

    def __init__ (
        self,
        orchestrator: Orchestrator,
        host: str = "127.0.0.1",
        port: int = 5000,
        resync: Optional[Callable[[], None]] = None,
    ) -> None:
        try:  # pragma: no cover - exercised when Flask is available
            from flask import Flask, jsonify
            from werkzeug.serving import make_server
        except ImportError as exc:  # pragma: no cover - import guard
            raise ImportError("Flask is required for the REST status server; install flask>=2.3") from exc

        self._orchestrator = orchestrator
        self._host = host
        self._port = port
        self._resync = resync
        self._app = Flask(__name__)
        self._jsonify = jsonify
        self._make_server = make_server
        self._server = None
        self._thread: Optional[threading.Thread] = None

        self._register_routes()

    @property
    def app (self) -> Any:
        return self._app

    def __enter__ (self) -> "RestControlServer":
        self.start()
        return self

    def __exit__ (self, exc_type, exc, tb) -> None:
        self.close()

    def start (self) -> None:
        if self._server is not None:
            return

        self._server = self._make_server(self._host, self._port, self._app)
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._serve_forever, name="ndi-rest-status", daemon=True)
        self._thread.start()
        _logger.info("REST status server listening on http://%s:%d", self._host, self._port)

    def close (self) -> None:
        if self._server is None:
            return

        _logger.info("Stopping REST status server on http://%s:%d", self._host, self._port)
        self._server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self._server = None
        self._thread = None

    def _serve_forever (self) -> None:
        assert self._server is not None
        try:
            self._server.serve_forever()
        except Exception:  # pragma: no cover - background server loop
            _logger.exception("REST status server terminated unexpectedly")

    def _register_routes (self) -> None:
        app = self._app

        @app.get("/health")
        def health () -> Any:
            return self._jsonify({"status": "ok"})

        @app.get("/outputs")
        def list_outputs () -> Any:
            outputs = {
                identity: stats_payload(stats)
                for identity, stats in self._orchestrator.get_all_stats().items()
            }
            aggregate = dataclasses.asdict(self._orchestrator.aggregated_stats())
            return self._jsonify({"outputs": outputs, "aggregate": aggregate})

        @app.get("/outputs/<identity>")
        def get_output (identity: str) -> Any:
            try:
                stats = self._orchestrator.get_stats(identity)
            except KeyError:
                return self._jsonify({"error": f"Output '{identity}' not found"}), 404
            return self._jsonify({"identity": identity, "stats": stats_payload(stats)})

        @app.post("/outputs/sync")
        def sync_outputs () -> Any:
            if self._resync is None:
                return self._jsonify({"error": "Resync is not available"}), 501

            try:
                self._resync()
            except Exception as exc:  # pragma: no cover - runtime guard
                _logger.exception("REST resync failed")
                return self._jsonify({"error": str(exc)}), 500

            return self._jsonify({"status": "queued"}), 202

    def __repr__ (self) -> str:
        return f"RestControlServer(host={self._host!r}, port={self._port!r})"


def start_rest_server (
    orchestrator: Orchestrator,
    host: str = "127.0.0.1",
    port: int = 5000,
    resync: Optional[Callable[[], None]] = None,
) -> RestControlServer:
    """Create and start a :class:`RestControlServer` instance."""

    server = RestControlServer(orchestrator, host=host, port=port, resync=resync)
    server.start()
    return server

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

import importlib
import json
import sys
import types
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import pytest

from ndi_companion.orchestrator import AggregatedStats
from ndi_companion.pipeline import PipelineState


@dataclass
class _FakeStats:
    frames_captured: int = 12
    frames_sent: int = 9
    capture_failures: int = 1
    send_failures: int = 0
    last_frame_age: float = 0.02
    state: PipelineState = PipelineState.ACTIVE


class _FakeOrchestrator:
    def __init__ (self) -> None:
        self.stats = _FakeStats()

    def get_stats (self, identity: str) -> _FakeStats:
        if identity != "output1":
            raise KeyError(identity)
        return self.stats

    def aggregated_stats (self) -> AggregatedStats:
        return AggregatedStats(output_count=1, total_frames_captured=12, total_frames_sent=9)


class _FakeDispatcher:
    def __init__ (self) -> None:
        self.records: List[Dict[str, Any]] = []

    def map (self, address: str, handler: Any, *args: Any, needs_reply_address: bool = False) -> Dict[str, Any]:
        record = {
            "address": address,
            "handler": handler,
            "args": args,
            "needs_reply_address": needs_reply_address,
        }
        self.records.append(record)
        return record


class _FakeThreadingOSCUDPServer:
    def __init__ (self, bind: Tuple[str, int], dispatcher: _FakeDispatcher) -> None:
        self.bind = bind
        self.dispatcher = dispatcher
        self.daemon_threads = False
        self.shut_down = False

    def serve_forever (self) -> None:
        pass

    def shutdown (self) -> None:
        self.shut_down = True


class _FakeSimpleUDPClient:
    def __init__ (self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.messages: List[Tuple[str, Any]] = []

    def send_message (self, address: str, payload: Any) -> None:
        self.messages.append((address, payload))


def _install_pythonosc_stubs (monkeypatch: pytest.MonkeyPatch) -> None:
    package = types.ModuleType("pythonosc")
    package.__path__ = []  # type: ignore[attr-defined]

    dispatcher_module = types.ModuleType("pythonosc.dispatcher")
    dispatcher_module.Dispatcher = _FakeDispatcher

    osc_server_module = types.ModuleType("pythonosc.osc_server")
    osc_server_module.ThreadingOSCUDPServer = _FakeThreadingOSCUDPServer

    udp_client_module = types.ModuleType("pythonosc.udp_client")
    udp_client_module.SimpleUDPClient = _FakeSimpleUDPClient

    monkeypatch.setitem(sys.modules, "pythonosc", package)
    monkeypatch.setitem(sys.modules, "pythonosc.dispatcher", dispatcher_module)
    monkeypatch.setitem(sys.modules, "pythonosc.osc_server", osc_server_module)
    monkeypatch.setitem(sys.modules, "pythonosc.udp_client", udp_client_module)


@pytest.fixture
def osc_module (monkeypatch: pytest.MonkeyPatch) -> Any:
    monkeypatch.delitem(sys.modules, "ndi_companion.osc_server", raising=False)
    _install_pythonosc_stubs(monkeypatch)
    return importlib.import_module("ndi_companion.osc_server")


def _handler (server: Any, suffix: str) -> Dict[str, Any]:
    dispatcher: _FakeDispatcher = server._dispatcher  # type: ignore[assignment]
    records = [record for record in dispatcher.records if record["address"].endswith(suffix)]
    assert records, f"Expected {suffix} route to be registered"
    return records[0]


def test_metrics_requests_receive_json_response (osc_module: Any) -> None:
    orchestrator = _FakeOrchestrator()
    server = osc_module.OscControlServer(orchestrator, host="0.0.0.0", port=9000)

    route = _handler(server, "/metrics")
    assert route["address"] == "/ndi/*/metrics"
    assert route["needs_reply_address"] is True

    client_address = ("127.0.0.1", 5005)
    route["handler"](client_address, "/ndi/output1/metrics")

    client: _FakeSimpleUDPClient = server._client_cache[client_address]  # type: ignore[index]
    message_path, payload = client.messages[-1]
    assert message_path == "/ndi/output1/metrics"
    assert json.loads(payload) == {
        "frames_captured": 12,
        "frames_sent": 9,
        "capture_failures": 1,
        "send_failures": 0,
        "last_frame_age": 0.02,
        "state": "active",
    }

    orchestrator.stats.frames_sent = 15
    route["handler"](client_address, "/ndi/output1/metrics")
    assert len(server._client_cache) == 1  # type: ignore[arg-type]
    assert json.loads(client.messages[-1][1])["frames_sent"] == 15

    server.close()
    assert server._client_cache == {}  # type: ignore[attr-defined]


def test_metrics_for_unknown_output_are_ignored (osc_module: Any) -> None:
    server = osc_module.OscControlServer(_FakeOrchestrator())

    _handler(server, "/metrics")["handler"](("127.0.0.1", 5005), "/ndi/stage/metrics")

    assert server._client_cache == {}  # type: ignore[attr-defined]


def test_status_reply_contains_aggregate (osc_module: Any) -> None:
    server = osc_module.OscControlServer(_FakeOrchestrator(), namespace="lyrics/")

    route = _handler(server, "/status")
    assert route["address"] == "/lyrics/status"
    route["handler"](("10.0.0.2", 7000), "/lyrics/status")

    client = server._client_cache[("10.0.0.2", 7000)]  # type: ignore[index]
    assert json.loads(client.messages[-1][1]) == {
        "output_count": 1,
        "total_frames_captured": 12,
        "total_frames_sent": 9,
    }


def test_sync_message_triggers_resync (osc_module: Any) -> None:
    calls: List[str] = []
    server = osc_module.OscControlServer(_FakeOrchestrator(), resync=lambda: calls.append("sync"))

    _handler(server, "/sync")["handler"]("/ndi/sync")

    assert calls == ["sync"]


def test_start_and_close_manage_server_thread (osc_module: Any) -> None:
    server = osc_module.start_osc_server(_FakeOrchestrator(), port=9100)
    backend = server._server  # type: ignore[attr-defined]

    assert backend.bind == ("127.0.0.1", 9100)
    assert backend.daemon_threads is True

    server.close()
    assert backend.shut_down

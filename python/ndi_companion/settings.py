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

Reads and watches ``ndi-settings.json`` written by the LyricDisplay app.

A missing or corrupt file is never fatal: the defaults (every output
disabled) are used instead, and an output entry that fails validation is
logged and left out of the snapshot.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
import sys
import threading
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional, Tuple

from .config import DEFAULT_FRAME_RATE, CaptureMode, OutputConfig

__all__ = [
    "SettingsManager",
    "SettingsListener",
    "build_output_url",
    "default_settings",
    "default_settings_path",
    "resolve_resolution",
]

_logger = logging.getLogger(__name__)

APP_DIRECTORY = "lyric-display-app"
SETTINGS_FILENAME = "ndi-settings.json"

RESOLUTION_PRESETS: Mapping[str, Tuple[int, int]] = {
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "4k": (3840, 2160),
}

_SOURCE_NAMES = {
    "output1": "LyricDisplay Output 1",
    "output2": "LyricDisplay Output 2",
    "stage": "LyricDisplay Stage",
}

SettingsListener = Callable[[Mapping[str, Any], Mapping[str, Any]], None]


def default_settings_path () -> Path:
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA") or Path.home() / "AppData" / "Roaming")
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path.home() / ".config"
    return base / APP_DIRECTORY / SETTINGS_FILENAME


def default_output_settings (key: str) -> Dict[str, Any]:
    return {
        "enabled": False,
        "resolution": "1080p",
        "customWidth": 1920,
        "customHeight": 1080,
        "framerate": DEFAULT_FRAME_RATE,
        "sourceName": _SOURCE_NAMES.get(key, f"LyricDisplay {key}"),
    }


def default_settings () -> Dict[str, Any]:
    return {
        "installed": False,
        "version": "",
        "installPath": "",
        "autoLaunch": False,
        "outputs": {key: default_output_settings(key) for key in _SOURCE_NAMES},
    }


def resolve_resolution (settings: Mapping[str, Any]) -> Tuple[int, int]:
    """Width and height for an output entry; unknown presets fall back to 1080p."""

    resolution = settings.get("resolution")
    if resolution == "custom":
        width = settings.get("customWidth")
        height = settings.get("customHeight")
        if width and height:
            return int(width), int(height)

    return RESOLUTION_PRESETS.get(resolution, RESOLUTION_PRESETS["1080p"])


def build_output_url (key: str, host: str, port: int, frontend_url: Optional[str] = None) -> str:
    """Page URL for an output.

    A frontend dev server routes by path (``<frontend>/<key>``); the bundled
    backend serves the built app with hash routing (``http://host:port/#/<key>``).
    """

    if frontend_url:
        return f"{frontend_url.rstrip('/')}/{key}"
    return f"http://{host}:{port}/#/{key}"


class SettingsManager:
    """Loads output settings and notifies listeners when the file changes."""

    def __init__ (
        self,
        settings_path: Optional[os.PathLike[str] | str] = None,
        host: str = "127.0.0.1",
        port: int = 4000,
        frontend_url: Optional[str] = None,
        poll_interval: float = 0.1,
        stability_threshold: float = 0.3,
    ) -> None:
        self._path = Path(settings_path) if settings_path is not None else default_settings_path()
        self._host = host
        self._port = port
        self._frontend_url = frontend_url
        self._poll_interval = poll_interval
        self._stability_threshold = stability_threshold
        self._settings: Dict[str, Any] = default_settings()
        self._listeners: List[SettingsListener] = []
        self._stop_event = threading.Event()
        self._watcher: Optional[threading.Thread] = None
        self._baseline: Optional[Tuple[float, int]] = None
        self._has_baseline = False

    @property
    def path (self) -> Path:
        return self._path

    @property
    def settings (self) -> Mapping[str, Any]:
        return self._settings

    def __enter__ (self) -> "SettingsManager":
        return self

    def __exit__ (self, exc_type, exc, tb) -> None:
        self.close()

    def load (self) -> Mapping[str, Any]:
        # Later changes are measured against the file as it was when read.
        self._baseline = self._stat()
        self._has_baseline = True

        if not self._path.exists():
            _logger.warning("Settings file not found at: %s", self._path)
            self._settings = default_settings()
            return self._settings

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, MutableMapping):
                raise ValueError("settings document must be a JSON object")
        except (OSError, ValueError) as exc:
            _logger.error("Failed to load settings: %s", exc)
            self._settings = default_settings()
            return self._settings

        self._settings = dict(raw)
        _logger.info("Loaded settings from: %s", self._path)
        return self._settings

    def add_listener (self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    def remove_listener (self, listener: SettingsListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def get_output_settings (self, key: str) -> Mapping[str, Any]:
        outputs = self._settings.get("outputs")
        if isinstance(outputs, Mapping) and isinstance(outputs.get(key), Mapping):
            return outputs[key]
        return default_output_settings(key)

    def get_outputs (self) -> List[OutputConfig]:
        """Every valid output entry, enabled or not, as an :class:`OutputConfig` snapshot."""

        outputs = self._settings.get("outputs")
        if not isinstance(outputs, Mapping):
            return []

        configs: List[OutputConfig] = []
        for key, entry in outputs.items():
            if not isinstance(entry, Mapping):
                _logger.error("Ignoring output %s: settings entry is not an object", key)
                continue
            try:
                configs.append(self._build_output(str(key), entry))
            except (TypeError, ValueError) as exc:
                _logger.error("Ignoring output %s: %s", key, exc)
        return configs

    def get_enabled_outputs (self) -> List[OutputConfig]:
        return [config for config in self.get_outputs() if config.enabled]

    def output_url (self, key: str) -> str:
        return build_output_url(key, self._host, self._port, self._frontend_url)

    def start_watching (self) -> None:
        if self._watcher is not None:
            return

        if not self._has_baseline:
            self._baseline = self._stat()
            self._has_baseline = True

        self._stop_event.clear()
        self._watcher = threading.Thread(
            target=self._watch,
            args=(self._baseline,),
            name="ndi-settings-watch",
            daemon=True,
        )
        self._watcher.start()
        _logger.info("Watching for changes: %s", self._path)

    def stop_watching (self) -> None:
        if self._watcher is None:
            return

        self._stop_event.set()
        self._watcher.join(timeout=2.0)
        self._watcher = None
        _logger.info("Stopped watching settings file")

    def close (self) -> None:
        self.stop_watching()
        self._listeners.clear()

    def reload (self) -> None:
        """Re-read the file and notify listeners with ``(new, old)``."""

        old = copy.deepcopy(self._settings)
        new = self.load()
        for listener in list(self._listeners):
            try:
                listener(new, old)
            except Exception:
                _logger.exception("Settings listener failed")

    def _build_output (self, key: str, entry: Mapping[str, Any]) -> OutputConfig:
        width, height = resolve_resolution(entry)
        capture_mode = CaptureMode(entry.get("captureMode", CaptureMode.POLLING.value))
        preserve_alpha = entry.get("preserveAlpha", capture_mode is CaptureMode.POLLING)

        return OutputConfig(
            identity=key,
            enabled=bool(entry.get("enabled", False)),
            width=width,
            height=height,
            frame_rate=entry.get("framerate") or DEFAULT_FRAME_RATE,
            source_label=entry.get("sourceName") or _SOURCE_NAMES.get(key, f"LyricDisplay {key}"),
            url=self.output_url(key),
            capture_mode=capture_mode,
            preserve_alpha=bool(preserve_alpha),
        )

    def _stat (self) -> Optional[Tuple[float, int]]:
        try:
            stat = self._path.stat()
        except OSError:
            return None
        return (stat.st_mtime, stat.st_size)

    def _watch (self, last_seen: Optional[Tuple[float, int]]) -> None:
        while not self._stop_event.wait(self._poll_interval):
            current = self._stat()
            if current == last_seen:
                continue

            # Wait for the writer to finish before reloading.
            while not self._stop_event.wait(self._stability_threshold):
                settled = self._stat()
                if settled == current:
                    break
                current = settled

            if self._stop_event.is_set():
                return

            last_seen = current
            if current is None:
                continue

            _logger.info("Settings file changed, reloading...")
            self.reload()
